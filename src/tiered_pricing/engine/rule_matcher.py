"""
Rule Matcher - Selects candidate pricing rules and applies them to a base price.

Used by the price resolver for each precedence level:
customer override, group override, group discount policy.
"""
from datetime import datetime
from typing import Optional, Sequence, TypeVar

from .models import (
    DiscountTier,
    FixedDiscount,
    PercentageDiscount,
    PriceTier,
    PricingGroup,
    ProductPrice,
    TieredDiscount,
    as_local_naive,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)

TierT = TypeVar('TierT', PriceTier, DiscountTier)


def normalize_tiers(tiers: Sequence[TierT], owner_id: str = "") -> tuple[TierT, ...]:
    """
    Return tiers ascending by min_quantity with unique breakpoints.

    Stored tier lists are expected to be well formed already. Anything else
    is repaired (sorted; for a repeated breakpoint the later entry is kept)
    and logged rather than rejected.
    """
    if not tiers:
        return ()

    by_min: dict[int, TierT] = {}
    for tier in tiers:
        by_min[tier.min_quantity] = tier
    ordered = tuple(by_min[m] for m in sorted(by_min))

    if len(ordered) != len(tiers) or any(a is not b for a, b in zip(ordered, tiers)):
        logger.warning("Tiers on %s are not strictly ascending; normalised", owner_id or "record")
    if ordered[0].min_quantity < 1:
        logger.warning("First tier on %s starts below quantity 1", owner_id or "record")
    return ordered


def select_tier(tiers: Sequence[TierT], quantity: int, owner_id: str = "") -> Optional[TierT]:
    """Pick the tier with the largest min_quantity <= quantity, or None."""
    selected = None
    for tier in normalize_tiers(tiers, owner_id):
        if tier.min_quantity > quantity:
            break
        selected = tier
    return selected


def _recency_key(record: ProductPrice):
    # Records without a timestamp rank oldest; id keeps the order total
    updated_at = as_local_naive(record.updated_at)
    return (updated_at is not None, updated_at or datetime.min, record.id)


def _is_live(record: ProductPrice, now: datetime) -> bool:
    try:
        return record.is_valid_at(now)
    except TypeError:
        logger.warning("Override %s has an unusable validity window; skipped", record.id, exc_info=True)
        return False


class RuleMatcher:
    """
    Matches stored override records and group policies against a request.

    Stateless apart from the logger; `now` is passed in per call so one
    resolution sees a single clock reading.
    """

    def find_customer_override(
        self,
        overrides: Sequence[ProductPrice],
        customer_id: str,
        now: datetime,
    ) -> Optional[ProductPrice]:
        """Most recent valid override bound to this customer."""
        candidates = [
            o for o in overrides
            if o.customer_id == customer_id and _is_live(o, now)
        ]
        for o in candidates:
            if o.pricing_group_id is not None:
                logger.warning(
                    "Override %s binds both customer %s and group %s; using customer binding",
                    o.id, o.customer_id, o.pricing_group_id,
                )
        return self._pick_latest(candidates, f"customer {customer_id}")

    def find_group_override(
        self,
        overrides: Sequence[ProductPrice],
        group_id: str,
        now: datetime,
    ) -> Optional[ProductPrice]:
        """Most recent valid override bound to this group (and to no customer)."""
        candidates = [
            o for o in overrides
            if not o.is_customer_specific
            and o.pricing_group_id == group_id
            and _is_live(o, now)
        ]
        return self._pick_latest(candidates, f"group {group_id}")

    def _pick_latest(self, candidates: list[ProductPrice], scope: str) -> Optional[ProductPrice]:
        """
        Resolve same-level duplicates: the most recently updated record wins.

        Several live overrides for one product at one level is a data
        anomaly, so the choice is logged.
        """
        if not candidates:
            return None
        try:
            chosen = max(candidates, key=_recency_key)
        except TypeError:
            logger.warning("Unusable updated_at among overrides at %s; ordering by id", scope, exc_info=True)
            chosen = max(candidates, key=lambda o: o.id)
        if len(candidates) > 1:
            logger.warning(
                "%d overrides for product %s at %s; most recently updated %s wins",
                len(candidates), chosen.product_id, scope, chosen.id,
            )
        return chosen

    def apply_override(
        self,
        record: ProductPrice,
        quantity: int,
    ) -> tuple[float, Optional[int], list[str]]:
        """
        Resolve the unit price an override pins for this quantity.

        Returns (unit_price, tier_min_quantity, trace_messages). A tiered
        record whose tiers do not reach down to the quantity uses its flat price.
        """
        traces = []
        tier = select_tier(record.tiered_pricing, quantity, record.id)
        if tier is not None:
            traces.append(f"Override {record.id} tier from qty {tier.min_quantity}: ${tier.price:.2f}")
            return tier.price, tier.min_quantity, traces

        if record.tiered_pricing:
            traces.append(f"Override {record.id} has no tier for qty {quantity}; using flat price")
        traces.append(f"Override {record.id} set price to ${record.price:.2f}")
        return record.price, None, traces

    def apply_group_policy(
        self,
        group: PricingGroup,
        quantity: int,
        base_price: float,
    ) -> tuple[Optional[float], Optional[int], list[str]]:
        """
        Compute the discount amount a group's policy grants.

        Returns (discount_amount, tier_min_quantity, trace_messages);
        discount_amount is None when the policy does not apply at this
        quantity, so the caller falls through to the base price.
        """
        traces = []
        policy = group.policy

        if isinstance(policy, PercentageDiscount):
            discount = base_price * policy.value / 100.0
            traces.append(f"Group {group.id} applied {policy.value}% discount")
            return discount, None, traces

        elif isinstance(policy, FixedDiscount):
            traces.append(f"Group {group.id} applied ${policy.amount:.2f} discount")
            return policy.amount, None, traces

        elif isinstance(policy, TieredDiscount):
            tier = select_tier(policy.tiers, quantity, group.id)
            if tier is None:
                traces.append(f"Group {group.id} has no discount tier for qty {quantity}")
                return None, None, traces
            discount = base_price * tier.discount_value / 100.0
            traces.append(
                f"Group {group.id} tier from qty {tier.min_quantity}: {tier.discount_value}% discount"
            )
            return discount, tier.min_quantity, traces

        raise TypeError(f"Unknown discount policy {policy!r} on group {group.id}")
