# purchase_system/services/commission_service.py
"""
Commission calculation service - supply path and peer commissions.

Pure computation: returns an immutable CommissionBreakdown and never writes
anything. Persisting the breakdown together with the order status change is
the OrderLedger's job.
"""
import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Union

from purchase_system.config.levels import (
    CommissionType,
    LevelLike,
    LevelRegistry,
    parse_level,
)
from purchase_system.config.settings import Settings
from purchase_system.errors import CommissionCalculationFailed, NotFoundError, ValidationError
from purchase_system.services.path_finder import SupplyChainPathFinder
from purchase_system.stores.base import TimedHierarchyStore
from purchase_system.types import (
    CAPPED_TO_MAX_FRACTION,
    FALLBACK_FLAT_RATE,
    CommissionBreakdown,
    CommissionLineItem,
    CommissionOrder,
    CommissionRole,
    SupplyPath,
    UserRecord,
)
from purchase_system.utils.chain_walker import ChainWalker
from purchase_system.utils.money import CENT, ZERO, scale_to_cap, split_evenly, to_decimal, to_money

logger = logging.getLogger(__name__)

OrderLike = Union[CommissionOrder, Dict[str, Any]]


class CommissionCalculator:
    """Service for calculating order commissions."""

    def __init__(
            self,
            store: TimedHierarchyStore,
            settings: Settings,
            pathFinder: SupplyChainPathFinder,
            registry: Optional[LevelRegistry] = None
    ):
        self.store = store
        self.settings = settings
        self.pathFinder = pathFinder
        self.registry = registry or LevelRegistry.from_settings(settings)

    async def calculateCommission(
            self,
            order: OrderLike,
            timeout: Optional[float] = None
    ) -> CommissionBreakdown:
        """
        Calculate all commissions for a completed order.

        Args:
            order: CommissionOrder or dict with orderId, buyerId, sellerId,
                orderAmount, products
            timeout: Deadline per store call (default from settings)

        Returns:
            CommissionBreakdown whose line items sum to totalCommission

        Raises:
            CommissionCalculationFailed: Missing buyer/seller/product data or
                non-positive amount
            InfrastructureTimeout: Store did not answer in time
            HierarchyIntegrityError: Cyclic or corrupted hierarchy
        """
        order = self._coerce_order(order)

        buyer, seller = await asyncio.gather(
            self.store.get_user(order.buyerId, timeout=timeout),
            self.store.get_user(order.sellerId, timeout=timeout),
        )
        if buyer is None:
            raise CommissionCalculationFailed(f"buyer {order.buyerId} not found", order.orderId)
        if seller is None:
            raise CommissionCalculationFailed(f"seller {order.sellerId} not found", order.orderId)

        # 1. Resolve supply path
        path = await self.pathFinder.findOptimalSupplyPath(
            order.buyerId, order.sellerId, timeout=timeout
        )
        if not path.isValid:
            logger.warning(
                f"No supply path for order {order.orderId} "
                f"({order.buyerId} <- {order.sellerId}), using flat platform rate"
            )
            return self.fallbackCommission(order, reason=path.failure, sellerLevel=seller.level)

        # 2. Path commissions
        items = self._path_commissions(order, path)

        # 3. Peer reward
        items.extend(await self._peer_rewards(order, buyer, timeout))

        # 4. Cap and total
        breakdown = self._finalize(order.orderId, items, amount=order.orderAmount)

        logger.info(
            f"Calculated commission for order {order.orderId}: "
            f"{len(breakdown.commissions)} items, total {breakdown.totalCommission}"
            + (" (capped)" if breakdown.wasCapped else "")
        )
        return breakdown

    def _path_commissions(self, order: CommissionOrder, path: SupplyPath) -> List[CommissionLineItem]:
        items = []
        for node in path.path:
            rate = self.settings.role_rate(node.role.rateKey) + self.registry.levelBonusRate(node.level)
            amount = to_money(order.orderAmount * rate)
            if amount <= ZERO:
                continue
            items.append(CommissionLineItem(
                userId=node.userId,
                level=node.level,
                role=CommissionRole.from_supply_role(node.role),
                rate=rate,
                amount=amount,
                description=f"{node.role.label} ({node.level.value}, {node.distanceFromSeller} from seller)",
            ))
        return items

    async def _peer_rewards(
            self,
            order: CommissionOrder,
            buyer: UserRecord,
            timeout: Optional[float]
    ) -> List[CommissionLineItem]:
        """
        Split the peer pool evenly across the buyer's peers.

        Peers are ordered by ascending id; the first one gets the leftover
        cents.
        """
        if buyer.level not in self.settings.peer_reward_levels:
            return []

        peers = sorted(await self.store.get_peers(buyer.id, buyer.level, timeout=timeout))
        if not peers:
            return []

        rate = self.settings.peer_reward_rate
        pool = to_money(order.orderAmount * rate)
        shares = split_evenly(pool, len(peers))

        logger.debug(f"Peer pool {pool} for order {order.orderId} split across {peers}")

        return [
            CommissionLineItem(
                userId=peerId,
                level=buyer.level,
                role=CommissionRole.PEER,
                rate=rate,
                amount=share,
                description=f"Peer reward ({index + 1}/{len(peers)})",
            )
            for index, (peerId, share) in enumerate(zip(peers, shares))
            if share > ZERO
        ]

    def fallbackCommission(
            self,
            order: OrderLike,
            reason: Optional[str] = None,
            sellerLevel: Optional[LevelLike] = None
    ) -> CommissionBreakdown:
        """
        Single flat-rate line item for the seller.

        Used when no supply path resolves or when calculation failed for an
        order that is already completed.
        """
        order = self._coerce_order(order, requireProducts=False)
        rate = self.settings.fallback_commission_rate
        level = parse_level(sellerLevel) if sellerLevel is not None else None

        item = CommissionLineItem(
            userId=order.sellerId,
            level=level,
            role=CommissionRole.PLATFORM_DEFAULT,
            rate=rate,
            amount=to_money(order.orderAmount * rate),
            description=f"Platform default rate ({reason or 'fallback'})",
        )

        logger.warning(
            f"Fallback commission for order {order.orderId}: "
            f"{item.amount} to seller {order.sellerId} ({reason})"
        )
        return self._finalize(
            order.orderId,
            [item],
            amount=order.orderAmount,
            extraWarnings=(FALLBACK_FLAT_RATE,),
            isFallback=True
        )

    async def previewCommission(
            self,
            sellerId: int,
            sellerLevel: LevelLike,
            totalAmount: Any,
            timeout: Optional[float] = None
    ) -> CommissionBreakdown:
        """
        Estimate team bonus for the seller's upline without a real order.

        The n-th ancestor (0-based) gets
        team_bonus_rate(sellerLevel) * preview_decay ** n. Items of one cent
        or less are dropped.

        Raises:
            NotFoundError: If seller does not exist
            ValidationError: If totalAmount is not positive
            UnknownLevel: If sellerLevel is malformed
        """
        level = parse_level(sellerLevel)
        amount = self._parse_amount(totalAmount)
        if amount is None:
            raise ValidationError(f"Preview amount must be positive, got {totalAmount!r}")

        chain = await self.store.get_ancestor_chain(sellerId, timeout=timeout)
        chain = ChainWalker.validate_chain(chain, sellerId)
        if not chain:
            raise NotFoundError("User", sellerId)

        baseRate = self.registry.commissionRate(level, CommissionType.TEAM_BONUS)
        upline = list(reversed(chain))[1:self.settings.preview_depth + 1]

        items = []
        for i, ancestorId in enumerate(upline):
            rate = baseRate * (self.settings.preview_decay ** i)
            share = to_money(amount * rate)
            if share <= CENT:
                continue
            ancestor = await self.store.get_user(ancestorId, timeout=timeout)
            items.append(CommissionLineItem(
                userId=ancestorId,
                level=ancestor.level if ancestor else None,
                role=CommissionRole.TEAM_BONUS,
                rate=rate,
                amount=share,
                description=f"Team bonus preview (upline {i + 1})",
            ))

        return self._finalize(None, items, amount=amount)

    def _finalize(
            self,
            orderId: Any,
            items: List[CommissionLineItem],
            amount: Decimal,
            extraWarnings=(),
            isFallback: bool = False
    ) -> CommissionBreakdown:
        warnings = list(extraWarnings)
        cap = amount * self.settings.max_commission_fraction
        total = sum((item.amount for item in items), ZERO)

        if total > cap:
            scaled = scale_to_cap([item.amount for item in items], cap)
            items = [
                CommissionLineItem(
                    userId=item.userId,
                    level=item.level,
                    role=item.role,
                    rate=item.rate,
                    amount=newAmount,
                    description=f"{item.description} [scaled]",
                )
                for item, newAmount in zip(items, scaled)
                # Zero only when the cap has fewer cents than line items
                if newAmount > ZERO
            ]
            logger.warning(
                f"Commission for order {orderId} capped: {total} > {cap} "
                f"({self.settings.max_commission_fraction} of {amount})"
            )
            warnings.append(CAPPED_TO_MAX_FRACTION)

        return CommissionBreakdown(
            orderId=orderId,
            commissions=tuple(items),
            totalCommission=sum((item.amount for item in items), ZERO),
            calculatedAt=datetime.now(timezone.utc),
            warnings=tuple(warnings),
            isFallback=isFallback,
        )

    def _coerce_order(self, order: OrderLike, requireProducts: bool = True) -> CommissionOrder:
        if isinstance(order, dict):
            raw = order
            orderId = raw.get("orderId")
            values = {
                "buyerId": raw.get("buyerId"),
                "sellerId": raw.get("sellerId"),
                "orderAmount": raw.get("orderAmount"),
                "products": raw.get("products"),
            }
        else:
            orderId = order.orderId
            values = {
                "buyerId": order.buyerId,
                "sellerId": order.sellerId,
                "orderAmount": order.orderAmount,
                "products": order.products,
            }

        if values["buyerId"] is None:
            raise CommissionCalculationFailed("missing buyer", orderId)
        if values["sellerId"] is None:
            raise CommissionCalculationFailed("missing seller", orderId)
        if requireProducts and not values["products"]:
            raise CommissionCalculationFailed("missing product data", orderId)

        amount = self._parse_amount(values["orderAmount"])
        if amount is None:
            raise CommissionCalculationFailed(
                f"order amount must be positive, got {values['orderAmount']!r}", orderId
            )
        return CommissionOrder(
            orderId=orderId,
            buyerId=values["buyerId"],
            sellerId=values["sellerId"],
            orderAmount=amount,
            products=tuple(values["products"] or ()),
        )

    @staticmethod
    def _parse_amount(value: Any) -> Optional[Decimal]:
        if value is None or isinstance(value, bool):
            return None
        try:
            amount = to_decimal(value)
        except (InvalidOperation, ValueError, TypeError):
            return None
        if not amount.is_finite() or amount <= 0:
            return None
        return amount
