# purchase_system/__init__.py
"""
Purchase System - purchase authorization and multi-level commissions.
"""

# Engine and services
from purchase_system.engine import PurchaseEngine
from purchase_system.services.purchase_validator import PurchaseValidator
from purchase_system.services.path_finder import SupplyChainPathFinder
from purchase_system.services.commission_service import CommissionCalculator
from purchase_system.services.performance_monitor import PerformanceMonitor

# Models and configuration
from purchase_system.config.levels import CommissionType, LevelRegistry, MembershipLevel
from purchase_system.config.settings import Settings
from purchase_system.types import (
    CommissionBreakdown,
    CommissionLineItem,
    CommissionOrder,
    CommissionRole,
    PurchaseValidationResult,
    SupplyPath,
    SupplyPathNode,
    SupplyRole,
)

# Stores
from purchase_system.stores.base import ProductCatalog, TeamHierarchyStore
from purchase_system.stores.memory_store import InMemoryTeamStore
from purchase_system.ledger import InMemoryOrderLedger, OrderLedger

# Errors
from purchase_system.errors import (
    CommissionCalculationFailed,
    ConfigurationError,
    HierarchyIntegrityError,
    InfrastructureTimeout,
    IntegrityError,
    NotFoundError,
    PurchaseSystemError,
    UnknownLevel,
    ValidationError,
)

# Events
from purchase_system.events.event_bus import eventBus, EventBus, PurchaseEvents

__all__ = [
    # Engine and services
    'PurchaseEngine',
    'PurchaseValidator',
    'SupplyChainPathFinder',
    'CommissionCalculator',
    'PerformanceMonitor',

    # Config
    'CommissionType',
    'LevelRegistry',
    'MembershipLevel',
    'Settings',

    # Types
    'CommissionBreakdown',
    'CommissionLineItem',
    'CommissionOrder',
    'CommissionRole',
    'PurchaseValidationResult',
    'SupplyPath',
    'SupplyPathNode',
    'SupplyRole',

    # Stores
    'ProductCatalog',
    'TeamHierarchyStore',
    'InMemoryTeamStore',
    'OrderLedger',
    'InMemoryOrderLedger',

    # Errors
    'CommissionCalculationFailed',
    'ConfigurationError',
    'HierarchyIntegrityError',
    'InfrastructureTimeout',
    'IntegrityError',
    'NotFoundError',
    'PurchaseSystemError',
    'UnknownLevel',
    'ValidationError',

    # Events
    'eventBus',
    'EventBus',
    'PurchaseEvents',
]
