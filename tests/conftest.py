# tests/conftest.py
"""
Pytest configuration and shared fixtures for purchase engine tests.

Team used by most tests:

    Main tree                      Separate tree     Chain
    1 DIRECTOR                     20 STAR_2         30 STAR_5  (root)
    ├── 2 STAR_4                   └── 21 VIP        └── 31 STAR_4  (A)
    │   ├── 4 VIP                      └── 22 NORMAL     └── 32 STAR_1  (B)
    │   │   └── 5 NORMAL                                     └── 33 VIP  (C)
    │   ├── 6 STAR_3                                             └── 34 NORMAL  (D)
    │   ├── 7 STAR_3
    │   ├── 8 STAR_3
    │   └── 9 STAR_3
    └── 3 STAR_1
        └── 10 STAR_2

Run:
    pytest tests -v
"""
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from models.base import Base
from purchase_system.config.levels import LevelRegistry
from purchase_system.config.settings import Settings
from purchase_system.engine import PurchaseEngine
from purchase_system.ledger import InMemoryOrderLedger
from purchase_system.stores.memory_store import InMemoryTeamStore

# =============================================================================
# CONSTANTS
# =============================================================================

PRODUCT_ID = 100
LOW_STOCK_PRODUCT_ID = 101
STAR_ONLY_PRODUCT_ID = 102
INACTIVE_PRODUCT_ID = 103
MISSING_PRODUCT_ID = 404

TEAM = [
    # (id, level, parentId)
    (1, "DIRECTOR", None),
    (2, "STAR_4", 1),
    (3, "STAR_1", 1),
    (4, "VIP", 2),
    (5, "NORMAL", 4),
    (6, "STAR_3", 2),
    (7, "STAR_3", 2),
    (8, "STAR_3", 2),
    (9, "STAR_3", 2),
    (10, "STAR_2", 3),
    (20, "STAR_2", None),
    (21, "VIP", 20),
    (22, "NORMAL", 21),
    (30, "STAR_5", None),
    (31, "STAR_4", 30),
    (32, "STAR_1", 31),
    (33, "VIP", 32),
    (34, "NORMAL", 33),
]


# =============================================================================
# STORE AND SETTINGS FIXTURES
# =============================================================================

def build_team_store(latency: float = 0.0) -> InMemoryTeamStore:
    store = InMemoryTeamStore(latency=latency)
    for user_id, level, parent_id in TEAM:
        store.add_member(user_id, level, parentId=parent_id)

    store.add_product(PRODUCT_ID, stock=50)
    store.add_product(LOW_STOCK_PRODUCT_ID, stock=1)
    store.add_product(STAR_ONLY_PRODUCT_ID, stock=50, minLevel="STAR_1", purchaseLimit=3)
    store.add_product(INACTIVE_PRODUCT_ID, stock=50, status="DISCONTINUED")
    return store


@pytest.fixture
def team_store():
    """Fresh in-memory team for each test."""
    return build_team_store()


@pytest.fixture
def settings():
    """Production defaults without store deadlines."""
    return Settings(store_timeout=None)


@pytest.fixture
def registry(settings):
    return LevelRegistry.from_settings(settings)


@pytest.fixture
def purchase_engine(team_store, settings):
    """Engine over the in-memory team."""
    return PurchaseEngine(team_store, settings=settings)


@pytest.fixture
def make_engine(team_store):
    """Factory: engine over the shared team with settings overrides."""
    def _make(**overrides):
        return PurchaseEngine(team_store, settings=Settings(store_timeout=None).with_overrides(**overrides))
    return _make


@pytest.fixture
def ledger():
    return InMemoryOrderLedger()


@pytest.fixture
def make_order():
    """Factory for order dicts."""
    counter = {"next": 1}

    def _make(buyer_id, seller_id, amount="1000.00", products=None):
        order_id = f"ORD-{counter['next']}"
        counter['next'] += 1
        return {
            "orderId": order_id,
            "buyerId": buyer_id,
            "sellerId": seller_id,
            "orderAmount": Decimal(str(amount)),
            "products": products if products is not None else [{"productId": PRODUCT_ID, "quantity": 1}],
        }
    return _make


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture
def db_engine():
    """In-memory SQLite engine with all tables, shared with store worker threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(db_engine):
    """Create database session for each test."""
    Session = sessionmaker(bind=db_engine)
    session = Session()
    yield session
    session.rollback()
    session.close()
