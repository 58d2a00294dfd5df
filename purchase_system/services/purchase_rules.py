# purchase_system/services/purchase_rules.py
"""
Purchase permission rules.

Each rule looks at a RuleContext and returns a RuleVerdict. The validator
runs DEFAULT_RULES in this order and never stops early:

1. users_exist            structural  buyer and seller must exist
2. quantity               structural  positive integer
3. product                structural  product must exist
                          business    product active, enough stock
4. director_override      override    DIRECTOR buyers skip rules 5-7
5. account_status         business    buyer and seller ACTIVE
6. team_hierarchy         business    lineage and rank checks
7. purchase_restrictions  business    per-level and per-product limits

Structural failures make the result invalid. Business failures only make
canPurchase false.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Tuple

from purchase_system.config.levels import LevelRegistry, MembershipLevel
from purchase_system.config.settings import Settings
from purchase_system.types import ProductRecord, SupplyPath, UserRecord

logger = logging.getLogger(__name__)

# Reason texts
USER_NOT_FOUND = "user not found"
INVALID_QUANTITY = "invalid quantity"
PRODUCT_NOT_FOUND = "product not found"
PRODUCT_NOT_AVAILABLE = "product not available"
INSUFFICIENT_STOCK = "insufficient stock"
BUYER_INACTIVE = "buyer account is not active"
SELLER_INACTIVE = "seller account is not active"
SELF_PURCHASE = "cannot purchase from yourself"
DOWNLINE_PURCHASE = "cannot purchase from downline"
OUTSIDE_TEAM = "must purchase within team"

# Restriction tags
DIRECTOR_OVERRIDE = "director_override"


class RuleOutcome(Enum):
    PASS = "pass"
    REJECT = "reject"
    STRUCTURAL = "structural"
    OVERRIDE = "override"


@dataclass(frozen=True)
class RuleVerdict:
    outcome: RuleOutcome
    reasons: Tuple[str, ...] = ()
    restrictions: Tuple[str, ...] = ()

    @classmethod
    def passed(cls, *restrictions: str) -> "RuleVerdict":
        return cls(RuleOutcome.PASS, restrictions=restrictions)

    @classmethod
    def reject(cls, *reasons: str, restrictions: Tuple[str, ...] = ()) -> "RuleVerdict":
        return cls(RuleOutcome.REJECT, reasons=reasons, restrictions=restrictions)

    @classmethod
    def structural(cls, *reasons: str) -> "RuleVerdict":
        return cls(RuleOutcome.STRUCTURAL, reasons=reasons)

    @classmethod
    def override(cls, *restrictions: str) -> "RuleVerdict":
        return cls(RuleOutcome.OVERRIDE, restrictions=restrictions)


@dataclass
class RuleContext:
    """Everything a rule may look at for one validation call."""
    buyerId: int
    sellerId: int
    productId: Any
    quantity: Any
    buyer: Optional[UserRecord]
    seller: Optional[UserRecord]
    product: Optional[ProductRecord]
    settings: Settings
    registry: LevelRegistry
    pathFinder: Any
    timeout: Optional[float] = None
    path: Optional[SupplyPath] = None
    overridden: bool = False
    # Largest quantity the verdict holds for; None when quantity never mattered
    quantityCeiling: Optional[int] = None

    @property
    def quantityValid(self) -> bool:
        return is_valid_quantity(self.quantity)

    @property
    def usersFound(self) -> bool:
        return self.buyer is not None and self.seller is not None

    def cap_quantity(self, limit: int) -> None:
        if self.quantityCeiling is None or limit < self.quantityCeiling:
            self.quantityCeiling = limit

    async def resolve_path(self) -> SupplyPath:
        if self.path is None:
            self.path = await self.pathFinder.findOptimalSupplyPath(
                self.buyerId, self.sellerId, timeout=self.timeout
            )
        return self.path


def is_valid_quantity(quantity: Any) -> bool:
    return isinstance(quantity, int) and not isinstance(quantity, bool) and quantity > 0


class PurchaseRule(ABC):
    """Base class for validation rules."""

    name: str = "rule"
    # Structural rules still run after an override
    structural: bool = False

    @abstractmethod
    async def evaluate(self, ctx: RuleContext) -> RuleVerdict:
        ...

    def __repr__(self):
        return f"<{type(self).__name__}({self.name})>"


# ═══════════════════════════════════════════════════════════════════════════
# STRUCTURAL RULES
# ═══════════════════════════════════════════════════════════════════════════

class UsersExistRule(PurchaseRule):
    name = "users_exist"
    structural = True

    async def evaluate(self, ctx: RuleContext) -> RuleVerdict:
        reasons = []
        if ctx.buyer is None:
            reasons.append(f"{USER_NOT_FOUND}: buyer {ctx.buyerId}")
        if ctx.seller is None:
            reasons.append(f"{USER_NOT_FOUND}: seller {ctx.sellerId}")
        if reasons:
            return RuleVerdict.structural(*reasons)
        return RuleVerdict.passed()


class QuantityRule(PurchaseRule):
    name = "quantity"
    structural = True

    async def evaluate(self, ctx: RuleContext) -> RuleVerdict:
        if not ctx.quantityValid:
            return RuleVerdict.structural(f"{INVALID_QUANTITY}: {ctx.quantity!r}")
        return RuleVerdict.passed()


class ProductRule(PurchaseRule):
    """Existence is structural; availability and stock are business checks."""

    name = "product"
    structural = True

    async def evaluate(self, ctx: RuleContext) -> RuleVerdict:
        product = ctx.product
        if product is None:
            return RuleVerdict.structural(f"{PRODUCT_NOT_FOUND}: {ctx.productId}")

        if not product.isActive:
            return RuleVerdict.reject(PRODUCT_NOT_AVAILABLE)

        ctx.cap_quantity(product.stock)
        if ctx.quantityValid and product.stock < ctx.quantity:
            return RuleVerdict.reject(
                f"{INSUFFICIENT_STOCK}: requested {ctx.quantity}, available {product.stock}"
            )
        return RuleVerdict.passed()


# ═══════════════════════════════════════════════════════════════════════════
# BUSINESS RULES
# ═══════════════════════════════════════════════════════════════════════════

class DirectorOverrideRule(PurchaseRule):
    """DIRECTOR buyers may buy from anyone; later business rules are skipped."""

    name = "director_override"

    async def evaluate(self, ctx: RuleContext) -> RuleVerdict:
        if ctx.buyer is not None and ctx.buyer.level is MembershipLevel.DIRECTOR:
            logger.debug(f"Director override for buyer {ctx.buyerId}")
            return RuleVerdict.override(DIRECTOR_OVERRIDE)
        return RuleVerdict.passed()


class AccountStatusRule(PurchaseRule):
    name = "account_status"

    async def evaluate(self, ctx: RuleContext) -> RuleVerdict:
        reasons = []
        if ctx.buyer is not None and not ctx.buyer.isActive:
            reasons.append(BUYER_INACTIVE)
        if ctx.seller is not None and not ctx.seller.isActive:
            reasons.append(SELLER_INACTIVE)
        if reasons:
            return RuleVerdict.reject(*reasons)
        return RuleVerdict.passed()


class TeamHierarchyRule(PurchaseRule):
    """
    Lineage and rank rules.

    - buyer == seller: rejected
    - no common ancestor within max depth: "must purchase within team",
      plus "cannot purchase from downline" when the buyer outranks the seller
    - buyer outranks seller: allowed only through an intermediary (the LCA,
      distinct from both) that outranks the buyer
    - buyer rank <= seller rank: allowed when lineage is shared

    Equal rank never passes on its own: equal-rank members in different
    lineages are rejected without looking for another route.
    """

    name = "team_hierarchy"

    async def evaluate(self, ctx: RuleContext) -> RuleVerdict:
        if not ctx.usersFound:
            return RuleVerdict.passed()

        if ctx.buyerId == ctx.sellerId:
            return RuleVerdict.reject(SELF_PURCHASE)

        registry = ctx.registry
        buyerAbove = registry.compare(ctx.buyer.level, ctx.seller.level) > 0
        path = await ctx.resolve_path()

        if not path.isValid:
            reasons = [OUTSIDE_TEAM]
            if buyerAbove:
                reasons.append(DOWNLINE_PURCHASE)
            return RuleVerdict.reject(*reasons)

        if not buyerAbove:
            return RuleVerdict.passed()

        intermediary = path.intermediary
        if (
                intermediary is not None
                and intermediary.userId not in (ctx.buyerId, ctx.sellerId)
                and registry.compare(intermediary.level, ctx.buyer.level) > 0
        ):
            logger.debug(
                f"Buyer {ctx.buyerId} allowed to buy from {ctx.sellerId} "
                f"via intermediary {intermediary.userId}"
            )
            return RuleVerdict.passed(f"via_intermediary:{intermediary.userId}")

        return RuleVerdict.reject(DOWNLINE_PURCHASE)


class PurchaseRestrictionRule(PurchaseRule):
    """Per-level quantity limit, per-product limit and minimum level."""

    name = "purchase_restrictions"

    async def evaluate(self, ctx: RuleContext) -> RuleVerdict:
        if ctx.buyer is None:
            return RuleVerdict.passed()

        limits = [ctx.settings.level_quantity_limits.get(ctx.buyer.level)]
        product = ctx.product
        if product is not None and product.purchaseLimit is not None:
            limits.append(product.purchaseLimit)
        limits = [limit for limit in limits if limit is not None]

        restrictions = []
        reasons = []

        if limits:
            maxQuantity = min(limits)
            ctx.cap_quantity(maxQuantity)
            restrictions.append(f"max_quantity:{maxQuantity}")
            if ctx.quantityValid and ctx.quantity > maxQuantity:
                reasons.append(f"quantity exceeds limit of {maxQuantity}")

        if product is not None and product.minLevel is not None:
            restrictions.append(f"min_level:{product.minLevel.value}")
            if not ctx.registry.isAtLeast(ctx.buyer.level, product.minLevel):
                reasons.append(f"requires level {product.minLevel.value} or above")

        if reasons:
            return RuleVerdict.reject(*reasons, restrictions=tuple(restrictions))
        return RuleVerdict.passed(*restrictions)


DEFAULT_RULES: Tuple[PurchaseRule, ...] = (
    UsersExistRule(),
    QuantityRule(),
    ProductRule(),
    DirectorOverrideRule(),
    AccountStatusRule(),
    TeamHierarchyRule(),
    PurchaseRestrictionRule(),
)
