# purchase_system/types.py
"""
Immutable value types passed between the engine services.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from purchase_system.config.levels import MembershipLevel

ACTIVE = "ACTIVE"
PATH_NOT_FOUND = "PATH_NOT_FOUND"

# Breakdown warnings
CAPPED_TO_MAX_FRACTION = "CAPPED_TO_MAX_FRACTION"
FALLBACK_FLAT_RATE = "FALLBACK_FLAT_RATE"


class SupplyRole(Enum):
    """
    Role of a node on a supply path.

    Each member carries its settings key and its line item label.
    """
    SUPPLIER = ("supplier", "Supplier commission")
    INTERMEDIARY = ("intermediary", "Intermediary commission")

    def __init__(self, rateKey: str, label: str):
        self.rateKey = rateKey
        self.label = label


class CommissionRole(Enum):
    """Role shown on a commission line item."""
    SUPPLIER = "supplier"
    INTERMEDIARY = "intermediary"
    PEER = "peer"
    TEAM_BONUS = "team_bonus"
    PLATFORM_DEFAULT = "platform_default"

    @classmethod
    def from_supply_role(cls, role: SupplyRole) -> "CommissionRole":
        return cls(role.rateKey)


# ═══════════════════════════════════════════════════════════════════════════
# STORE RECORDS
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class UserRecord:
    """Read-only projection of a team member."""
    id: int
    level: MembershipLevel
    parentId: Optional[int] = None
    status: str = ACTIVE
    ancestorPath: Tuple[int, ...] = ()
    directCount: int = 0
    teamCount: int = 0

    @property
    def isActive(self) -> bool:
        return self.status == ACTIVE


@dataclass(frozen=True)
class ProductRecord:
    """Read-only projection of a catalog product."""
    id: int
    status: str = ACTIVE
    stock: int = 0
    purchaseLimit: Optional[int] = None
    minLevel: Optional[MembershipLevel] = None

    @property
    def isActive(self) -> bool:
        return self.status == ACTIVE


# ═══════════════════════════════════════════════════════════════════════════
# VALIDATION
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PurchaseValidationResult:
    isValid: bool
    canPurchase: bool
    reasons: Tuple[str, ...] = ()
    restrictions: Tuple[str, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # Results are cached and shared; callers get a read-only view
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isValid": self.isValid,
            "canPurchase": self.canPurchase,
            "reasons": list(self.reasons),
            "restrictions": list(self.restrictions),
            "metadata": dict(self.metadata),
        }


# ═══════════════════════════════════════════════════════════════════════════
# SUPPLY PATH
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SupplyPathNode:
    userId: int
    role: SupplyRole
    level: MembershipLevel
    distanceFromSeller: int


@dataclass(frozen=True)
class SupplyPath:
    """
    Route from buyer to seller through the hierarchy.

    path excludes the buyer and ends at the lowest common ancestor.
    """
    path: Tuple[SupplyPathNode, ...] = ()
    totalDistance: int = 0
    isValid: bool = True
    lcaId: Optional[int] = None
    failure: Optional[str] = None

    @classmethod
    def empty(cls) -> "SupplyPath":
        return cls()

    @classmethod
    def not_found(cls) -> "SupplyPath":
        return cls(isValid=False, failure=PATH_NOT_FOUND)

    @property
    def intermediary(self) -> Optional[SupplyPathNode]:
        for node in self.path:
            if node.role is SupplyRole.INTERMEDIARY:
                return node
        return None


# ═══════════════════════════════════════════════════════════════════════════
# COMMISSIONS
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class CommissionOrder:
    """Completed order handed to the commission calculator."""
    orderId: Any
    buyerId: int
    sellerId: int
    orderAmount: Decimal
    products: Tuple[Any, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CommissionOrder":
        amount = data.get("orderAmount")
        return cls(
            orderId=data.get("orderId"),
            buyerId=data.get("buyerId"),
            sellerId=data.get("sellerId"),
            orderAmount=Decimal(str(amount)) if amount is not None else None,
            products=tuple(data.get("products") or ()),
        )


@dataclass(frozen=True)
class CommissionLineItem:
    userId: int
    level: Optional[MembershipLevel]
    role: CommissionRole
    rate: Decimal
    amount: Decimal
    description: str = ""


@dataclass(frozen=True)
class CommissionBreakdown:
    orderId: Any
    commissions: Tuple[CommissionLineItem, ...]
    totalCommission: Decimal
    calculatedAt: datetime
    warnings: Tuple[str, ...] = ()
    isFallback: bool = False

    @property
    def wasCapped(self) -> bool:
        return CAPPED_TO_MAX_FRACTION in self.warnings

    def amounts_by_user(self) -> Dict[int, Decimal]:
        totals: Dict[int, Decimal] = {}
        for item in self.commissions:
            totals[item.userId] = totals.get(item.userId, Decimal("0")) + item.amount
        return totals

    def to_records(self) -> List[Dict[str, Any]]:
        """Line items as plain dicts for a ledger writer."""
        return [
            {
                "orderId": self.orderId,
                "userId": item.userId,
                "level": item.level.value if item.level else None,
                "role": item.role.value,
                "rate": item.rate,
                "amount": item.amount,
                "description": item.description,
            }
            for item in self.commissions
        ]
