# purchase_system/config/levels.py
"""
Membership levels and per-level rate tables.

Levels are ordered NORMAL (rank 0) to DIRECTOR (rank 7). The default tables
below are what production ships with; Settings can override any of them.
"""
from enum import Enum
from decimal import Decimal
from typing import Dict, List, Optional, Union
import logging

from purchase_system.errors import UnknownLevel, ValidationError

logger = logging.getLogger(__name__)


class MembershipLevel(Enum):
    """Membership level enumeration."""
    NORMAL = "NORMAL"
    VIP = "VIP"
    STAR_1 = "STAR_1"
    STAR_2 = "STAR_2"
    STAR_3 = "STAR_3"
    STAR_4 = "STAR_4"
    STAR_5 = "STAR_5"
    DIRECTOR = "DIRECTOR"


class CommissionType(Enum):
    """Kinds of commission a level can earn."""
    DIRECT_SALES = "DIRECT_SALES"
    REFERRAL = "REFERRAL"
    TEAM_BONUS = "TEAM_BONUS"


LevelLike = Union[MembershipLevel, str]

# Lowest to highest
LEVEL_ORDER: List[MembershipLevel] = list(MembershipLevel)

_RANKS: Dict[MembershipLevel, int] = {
    level: index for index, level in enumerate(LEVEL_ORDER)
}

# ═══════════════════════════════════════════════════════════════════════════
# DEFAULT TABLES
# ═══════════════════════════════════════════════════════════════════════════

# Price multiplier applied to retail price
DEFAULT_DISCOUNTS: Dict[MembershipLevel, Decimal] = {
    MembershipLevel.NORMAL: Decimal("1.00"),
    MembershipLevel.VIP: Decimal("0.95"),
    MembershipLevel.STAR_1: Decimal("0.90"),
    MembershipLevel.STAR_2: Decimal("0.85"),
    MembershipLevel.STAR_3: Decimal("0.80"),
    MembershipLevel.STAR_4: Decimal("0.75"),
    MembershipLevel.STAR_5: Decimal("0.70"),
    MembershipLevel.DIRECTOR: Decimal("0.65"),
}

DEFAULT_COMMISSION_RATES: Dict[CommissionType, Dict[MembershipLevel, Decimal]] = {
    CommissionType.DIRECT_SALES: {
        MembershipLevel.NORMAL: Decimal("0"),
        MembershipLevel.VIP: Decimal("0.15"),
        MembershipLevel.STAR_1: Decimal("0.18"),
        MembershipLevel.STAR_2: Decimal("0.20"),
        MembershipLevel.STAR_3: Decimal("0.22"),
        MembershipLevel.STAR_4: Decimal("0.25"),
        MembershipLevel.STAR_5: Decimal("0.30"),
        MembershipLevel.DIRECTOR: Decimal("0.35"),
    },
    # Referral is flat across levels
    CommissionType.REFERRAL: {level: Decimal("0.10") for level in LEVEL_ORDER},
    CommissionType.TEAM_BONUS: {
        MembershipLevel.NORMAL: Decimal("0"),
        MembershipLevel.VIP: Decimal("0.01"),
        MembershipLevel.STAR_1: Decimal("0.02"),
        MembershipLevel.STAR_2: Decimal("0.03"),
        MembershipLevel.STAR_3: Decimal("0.05"),
        MembershipLevel.STAR_4: Decimal("0.07"),
        MembershipLevel.STAR_5: Decimal("0.10"),
        MembershipLevel.DIRECTOR: Decimal("0.15"),
    },
}

# Added on top of the role rate for every supply path node
DEFAULT_LEVEL_BONUS_RATES: Dict[MembershipLevel, Decimal] = {
    MembershipLevel.NORMAL: Decimal("0"),
    MembershipLevel.VIP: Decimal("0"),
    MembershipLevel.STAR_1: Decimal("0.02"),
    MembershipLevel.STAR_2: Decimal("0.03"),
    MembershipLevel.STAR_3: Decimal("0.04"),
    MembershipLevel.STAR_4: Decimal("0.05"),
    MembershipLevel.STAR_5: Decimal("0.06"),
    MembershipLevel.DIRECTOR: Decimal("0.08"),
}


def parse_level(value: LevelLike) -> MembershipLevel:
    """
    Convert user input to MembershipLevel.

    Accepts enum members and level names in any case ("star_3", "Star_3").

    Raises:
        UnknownLevel: If value is not a known level
    """
    if isinstance(value, MembershipLevel):
        return value

    if isinstance(value, str):
        try:
            return MembershipLevel(value.strip().upper())
        except ValueError:
            pass

    raise UnknownLevel(value)


class LevelRegistry:
    """
    Stateless lookup over the ordered levels and their rate tables.

    Usage:
        registry = LevelRegistry()
        registry.compare("VIP", MembershipLevel.STAR_1)   # -1
        registry.commissionRate("STAR_2", CommissionType.TEAM_BONUS)
    """

    def __init__(
            self,
            discounts: Optional[Dict[MembershipLevel, Decimal]] = None,
            commissionRates: Optional[Dict[CommissionType, Dict[MembershipLevel, Decimal]]] = None,
            levelBonusRates: Optional[Dict[MembershipLevel, Decimal]] = None
    ):
        self._discounts = dict(discounts or DEFAULT_DISCOUNTS)
        self._commissionRates = {
            kind: dict(table)
            for kind, table in (commissionRates or DEFAULT_COMMISSION_RATES).items()
        }
        self._levelBonusRates = dict(levelBonusRates or DEFAULT_LEVEL_BONUS_RATES)

    @classmethod
    def from_settings(cls, settings) -> "LevelRegistry":
        """Build registry from the tables carried by Settings."""
        return cls(
            discounts=settings.discounts,
            commissionRates=settings.commission_rates,
            levelBonusRates=settings.level_bonus_rates,
        )

    @staticmethod
    def parse(value: LevelLike) -> MembershipLevel:
        return parse_level(value)

    @staticmethod
    def levels() -> List[MembershipLevel]:
        """All levels, lowest first."""
        return list(LEVEL_ORDER)

    def rank(self, level: LevelLike) -> int:
        return _RANKS[parse_level(level)]

    def compare(self, a: LevelLike, b: LevelLike) -> int:
        """
        Compare two levels.

        Returns:
            -1 if a < b, 0 if equal, 1 if a > b
        """
        rankA = self.rank(a)
        rankB = self.rank(b)
        if rankA < rankB:
            return -1
        if rankA > rankB:
            return 1
        return 0

    def isAtLeast(self, level: LevelLike, required: LevelLike) -> bool:
        return self.rank(level) >= self.rank(required)

    def discountFor(self, level: LevelLike) -> Decimal:
        """Price multiplier for level (1.00 means no discount)."""
        return self._discounts.get(parse_level(level), Decimal("1.00"))

    def commissionRate(self, level: LevelLike, commissionType: Union[CommissionType, str]) -> Decimal:
        """
        Commission rate for level and commission type.

        Raises:
            UnknownLevel: If level is malformed
            ValidationError: If commission type is unknown
        """
        parsed = parse_level(level)
        kind = _parse_commission_type(commissionType)
        return self._commissionRates.get(kind, {}).get(parsed, Decimal("0"))

    def levelBonusRate(self, level: LevelLike) -> Decimal:
        return self._levelBonusRates.get(parse_level(level), Decimal("0"))


def _parse_commission_type(value: Union[CommissionType, str]) -> CommissionType:
    if isinstance(value, CommissionType):
        return value
    if isinstance(value, str):
        try:
            return CommissionType(value.strip().upper())
        except ValueError:
            pass
    raise ValidationError(f"Unknown commission type: {value!r}")
