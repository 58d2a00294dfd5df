# purchase_system/config/settings.py
"""
Engine settings.

Every tunable the services use lives here and is handed to them at
construction time. Settings.from_env() loads overrides from .env.
"""
import os
import json
import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from typing import Dict, FrozenSet, Optional

from dotenv import load_dotenv

from purchase_system.config.levels import (
    CommissionType,
    MembershipLevel,
    DEFAULT_DISCOUNTS,
    DEFAULT_COMMISSION_RATES,
    DEFAULT_LEVEL_BONUS_RATES,
    parse_level,
)
from purchase_system.errors import ConfigurationError, UnknownLevel

logger = logging.getLogger(__name__)


def _default_role_rates() -> Dict[str, Decimal]:
    return {
        "supplier": Decimal("0.15"),
        "intermediary": Decimal("0.05"),
    }


def _default_quantity_limits() -> Dict[MembershipLevel, int]:
    limits = {level: 20 for level in MembershipLevel}
    limits[MembershipLevel.NORMAL] = 5
    limits[MembershipLevel.VIP] = 10
    return limits


@dataclass(frozen=True)
class Settings:
    """
    Immutable engine configuration.

    Usage:
        settings = Settings()                       # production defaults
        settings = Settings.from_env()              # .env overrides
        settings = settings.with_overrides(max_traversal_depth=3)
    """

    # ═══════════════════════════════════════════════════════════════════════
    # DATABASE
    # ═══════════════════════════════════════════════════════════════════════

    database_url: str = "sqlite:///purchase_system.db"

    # ═══════════════════════════════════════════════════════════════════════
    # RATE TABLES
    # ═══════════════════════════════════════════════════════════════════════

    role_rates: Dict[str, Decimal] = field(default_factory=_default_role_rates)
    level_bonus_rates: Dict[MembershipLevel, Decimal] = field(
        default_factory=lambda: dict(DEFAULT_LEVEL_BONUS_RATES)
    )
    discounts: Dict[MembershipLevel, Decimal] = field(
        default_factory=lambda: dict(DEFAULT_DISCOUNTS)
    )
    commission_rates: Dict[CommissionType, Dict[MembershipLevel, Decimal]] = field(
        default_factory=lambda: {k: dict(v) for k, v in DEFAULT_COMMISSION_RATES.items()}
    )

    # Peer reward: pool is order amount * rate, only for buyers at these levels
    peer_reward_rate: Decimal = Decimal("0.01")
    peer_reward_levels: FrozenSet[MembershipLevel] = frozenset({
        MembershipLevel.STAR_3,
        MembershipLevel.STAR_4,
        MembershipLevel.STAR_5,
    })

    max_commission_fraction: Decimal = Decimal("0.30")
    fallback_commission_rate: Decimal = Decimal("0.05")

    # Preview walks the seller upline with a decaying team bonus rate
    preview_depth: int = 5
    preview_decay: Decimal = Decimal("0.8")

    # ═══════════════════════════════════════════════════════════════════════
    # PURCHASE RESTRICTIONS
    # ═══════════════════════════════════════════════════════════════════════

    level_quantity_limits: Dict[MembershipLevel, int] = field(
        default_factory=_default_quantity_limits
    )

    # ═══════════════════════════════════════════════════════════════════════
    # TRAVERSAL, CACHES, DEADLINES
    # ═══════════════════════════════════════════════════════════════════════

    max_traversal_depth: int = 10
    validation_cache_ttl: float = 30.0
    validation_cache_size: int = 10000
    path_cache_ttl: float = 300.0
    path_cache_size: int = 1000
    quantity_bucket_size: int = 1
    store_timeout: Optional[float] = 2.0

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Check value ranges.

        Raises:
            ConfigurationError: If any value is out of range
        """
        for role in ("supplier", "intermediary"):
            if role not in self.role_rates:
                raise ConfigurationError(f"role_rates missing '{role}'")
            if self.role_rates[role] < 0:
                raise ConfigurationError(f"role_rates['{role}'] must be >= 0")

        if not Decimal("0") < self.max_commission_fraction <= Decimal("1"):
            raise ConfigurationError("max_commission_fraction must be in (0, 1]")
        if not Decimal("0") <= self.peer_reward_rate < Decimal("1"):
            raise ConfigurationError("peer_reward_rate must be in [0, 1)")
        if not Decimal("0") <= self.fallback_commission_rate <= self.max_commission_fraction:
            raise ConfigurationError(
                "fallback_commission_rate must be between 0 and max_commission_fraction"
            )
        if self.max_traversal_depth < 1:
            raise ConfigurationError("max_traversal_depth must be >= 1")
        if self.validation_cache_size < 1 or self.path_cache_size < 1:
            raise ConfigurationError("cache sizes must be >= 1")
        if self.validation_cache_ttl < 0 or self.path_cache_ttl < 0:
            raise ConfigurationError("cache TTLs must be >= 0")
        if self.quantity_bucket_size < 1:
            raise ConfigurationError("quantity_bucket_size must be >= 1")
        if self.store_timeout is not None and self.store_timeout <= 0:
            raise ConfigurationError("store_timeout must be positive or None")
        if self.preview_depth < 0:
            raise ConfigurationError("preview_depth must be >= 0")

    def role_rate(self, role: str) -> Decimal:
        return self.role_rates[role]

    def with_overrides(self, **changes) -> "Settings":
        """Copy with some fields replaced (validated again)."""
        return replace(self, **changes)

    # ═══════════════════════════════════════════════════════════════════════
    # ENVIRONMENT LOADING
    # ═══════════════════════════════════════════════════════════════════════

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "Settings":
        """
        Load settings from .env file and process environment.

        Args:
            dotenv_path: Explicit .env location (default: search upwards)

        Returns:
            Settings with environment overrides applied

        Raises:
            ConfigurationError: If a variable cannot be parsed
        """
        load_dotenv(dotenv_path)

        logger.info("Loading purchase engine settings from environment...")

        overrides = {}

        try:
            if os.getenv("DATABASE_URL"):
                overrides["database_url"] = os.getenv("DATABASE_URL")

            _read_int(overrides, "max_traversal_depth", "PURCHASE_MAX_DEPTH")
            _read_int(overrides, "path_cache_size", "PURCHASE_PATH_CACHE_SIZE")
            _read_int(overrides, "validation_cache_size", "PURCHASE_VALIDATION_CACHE_SIZE")
            _read_int(overrides, "quantity_bucket_size", "PURCHASE_QUANTITY_BUCKET")
            _read_int(overrides, "preview_depth", "PURCHASE_PREVIEW_DEPTH")
            _read_float(overrides, "validation_cache_ttl", "PURCHASE_VALIDATION_CACHE_TTL")
            _read_float(overrides, "path_cache_ttl", "PURCHASE_PATH_CACHE_TTL")
            _read_float(overrides, "store_timeout", "PURCHASE_STORE_TIMEOUT")
            _read_decimal(overrides, "max_commission_fraction", "PURCHASE_MAX_COMMISSION_FRACTION")
            _read_decimal(overrides, "peer_reward_rate", "PURCHASE_PEER_REWARD_RATE")
            _read_decimal(overrides, "fallback_commission_rate", "PURCHASE_FALLBACK_RATE")
            _read_decimal(overrides, "preview_decay", "PURCHASE_PREVIEW_DECAY")

            peer_levels = os.getenv("PURCHASE_PEER_REWARD_LEVELS")
            if peer_levels is not None:
                overrides["peer_reward_levels"] = frozenset(
                    parse_level(x) for x in peer_levels.split(",") if x.strip()
                )

            role_rates = os.getenv("PURCHASE_ROLE_RATES")
            if role_rates:
                parsed = json.loads(role_rates)
                rates = _default_role_rates()
                rates.update({
                    str(k).lower(): Decimal(str(v)) for k, v in parsed.items()
                })
                overrides["role_rates"] = rates

            bonus_rates = os.getenv("PURCHASE_LEVEL_BONUS_RATES")
            if bonus_rates:
                parsed = json.loads(bonus_rates)
                table = dict(DEFAULT_LEVEL_BONUS_RATES)
                table.update({
                    parse_level(k): Decimal(str(v)) for k, v in parsed.items()
                })
                overrides["level_bonus_rates"] = table

        except (ValueError, InvalidOperation, UnknownLevel, AttributeError) as e:
            # json.JSONDecodeError is a ValueError
            logger.error(f"Failed to parse purchase engine settings: {e}")
            raise ConfigurationError(f"Invalid purchase engine settings: {e}") from e

        settings = cls(**overrides)
        logger.info(
            f"Settings loaded: depth={settings.max_traversal_depth}, "
            f"maxCommission={settings.max_commission_fraction}, "
            f"storeTimeout={settings.store_timeout}"
        )
        return settings


def _read_int(target: dict, name: str, env_key: str) -> None:
    raw = os.getenv(env_key)
    if raw is not None and raw.strip():
        target[name] = int(raw)


def _read_float(target: dict, name: str, env_key: str) -> None:
    raw = os.getenv(env_key)
    if raw is not None and raw.strip():
        target[name] = float(raw)


def _read_decimal(target: dict, name: str, env_key: str) -> None:
    raw = os.getenv(env_key)
    if raw is not None and raw.strip():
        target[name] = Decimal(raw.strip())
