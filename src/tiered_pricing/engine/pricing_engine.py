"""
Pricing Engine - Tiered / customer-group price resolution with traceability.

The resolver applies exactly one pricing rule per request, never combining
discounts. The engine wraps it with a short-lived result cache and exposes
the calculate_price operation to callers.
"""
import asyncio
import math
import numbers
from datetime import datetime
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from ..config.settings import Settings, get_settings
from ..utils.logger import get_logger
from .cache import CacheKey, InMemoryResultCache, ResultCache
from .errors import InvalidQuantity, PricingError, RuleLookupFailed
from .models import (
    PriceCalculationRequest,
    PriceCalculationResult,
    PricingGroup,
    RuleKind,
)
from .rule_matcher import RuleMatcher

logger = get_logger(__name__)

T = TypeVar('T')

CUSTOMER_PRICE_LABEL = "Customer price"


def validate_quantity(quantity) -> int:
    """Reject anything but a positive integer."""
    if isinstance(quantity, bool) or not isinstance(quantity, numbers.Integral) or quantity < 1:
        raise InvalidQuantity(quantity)
    return int(quantity)


class PriceResolver:
    """
    Selects and applies one pricing rule for a request.

    Resolution order (first currently-valid match wins):
    1. Customer-specific product override
    2. Pricing-group product override for the customer's group
    3. Pricing-group discount policy (percentage / fixed / tiered)
    4. Base price, no discount
    """

    def __init__(self, store, clock: Callable[[], datetime] = datetime.now, matcher: Optional[RuleMatcher] = None):
        self.store = store
        self.clock = clock
        self.matcher = matcher or RuleMatcher()

    async def _lookup(self, operation: str, call: Awaitable[T]) -> T:
        """Await a store read, surfacing storage failures as RuleLookupFailed."""
        try:
            return await call
        except PricingError:
            raise
        except Exception as e:
            raise RuleLookupFailed(operation, str(e)) from e

    async def resolve(self, request: PriceCalculationRequest) -> PriceCalculationResult:
        """
        Resolve the unit price for a request.

        Raises InvalidQuantity before any lookup, RuleLookupFailed when the
        store cannot be read.
        """
        quantity = validate_quantity(request.quantity)
        # One clock reading per resolution
        now = self.clock()
        base_price = float(request.base_price)
        if not math.isfinite(base_price) or base_price < 0:
            logger.warning("Base price %r for %s clamped to 0", request.base_price, request.product_id)
            base_price = 0.0
        customer_id = request.customer_id
        traces = [("Request", f"Product {request.product_id}, qty {quantity}", f"${base_price:.2f}")]

        if not customer_id:
            traces.append(("Customer", "Anonymous request, no customer rules", None))
            return self._compose(base_price, 0.0, None, None, None, traces)

        overrides, group = await asyncio.gather(
            self._lookup(
                'get_product_price_overrides',
                self.store.get_product_price_overrides(request.product_id),
            ),
            self._lookup(
                'get_customer_group_membership',
                self.store.get_customer_group_membership(customer_id),
            ),
        )
        traces.append(("Rule Lookup", f"{len(overrides)} override records for product", None))

        # 1. Customer-specific override
        record = self.matcher.find_customer_override(overrides, customer_id, now)
        if record is not None:
            unit_price, tier_min, messages = self.matcher.apply_override(record, quantity)
            traces.extend(("Customer Override", m, None) for m in messages)
            return self._compose(
                base_price, base_price - unit_price,
                CUSTOMER_PRICE_LABEL, RuleKind.CUSTOMER_OVERRIDE, tier_min, traces,
            )
        traces.append(("Customer Override", f"No valid override for customer {customer_id}", None))

        group = self._active_group(group, customer_id)
        if group is None:
            traces.append(("Group Lookup", "No active pricing group", None))
            return self._compose(base_price, 0.0, None, None, None, traces)
        traces.append(("Group Lookup", "Customer belongs to group", group.id))

        # 2. Group override
        record = self.matcher.find_group_override(overrides, group.id, now)
        if record is not None:
            unit_price, tier_min, messages = self.matcher.apply_override(record, quantity)
            traces.extend(("Group Override", m, None) for m in messages)
            return self._compose(
                base_price, base_price - unit_price,
                f"Group price: {group.name}", RuleKind.GROUP_OVERRIDE, tier_min, traces,
            )
        traces.append(("Group Override", f"No valid override for group {group.id}", None))

        # 3. Group discount policy
        discount, tier_min, messages = self.matcher.apply_group_policy(group, quantity, base_price)
        traces.extend(("Group Discount", m, None) for m in messages)
        if discount is not None:
            return self._compose(
                base_price, discount, group.name, RuleKind.GROUP_DISCOUNT, tier_min, traces,
            )

        # 4. No rule
        traces.append(("Fallback", "No rule applies, using base price", None))
        return self._compose(base_price, 0.0, None, None, None, traces)

    def _active_group(self, group: Optional[PricingGroup], customer_id: str) -> Optional[PricingGroup]:
        if group is not None and not group.is_active:
            logger.warning("Store returned inactive group %s for customer %s; ignoring", group.id, customer_id)
            return None
        return group

    def _compose(
        self,
        original_price: float,
        discount: float,
        applied_rule: Optional[str],
        rule_kind: Optional[RuleKind],
        tier_min: Optional[int],
        traces: list,
    ) -> PriceCalculationResult:
        """Build a result that satisfies price == original - discount >= 0."""
        if not math.isfinite(discount):
            logger.warning("Rule '%s' yields a non-finite discount; using base price", applied_rule)
            traces.append(("Fallback", f"Rule '{applied_rule}' is unusable, using base price", None))
            discount, applied_rule, rule_kind, tier_min = 0.0, None, None, None
        elif discount < 0:
            logger.warning(
                "Rule '%s' prices above the base price ($%.2f); no discount applied",
                applied_rule, original_price,
            )
            discount = 0.0
        discount = min(round(discount, 2), original_price)
        price = original_price - discount
        percentage = round(discount * 100 / original_price, 2) if original_price > 0 else 0.0

        result = PriceCalculationResult(
            price=price,
            original_price=original_price,
            discount_amount=discount,
            discount_percentage=percentage,
            applied_rule=applied_rule,
            rule_kind=rule_kind,
            selected_tier=tier_min,
        )
        for step, description, value in traces:
            result.add_trace(step, description, value)
        result.add_trace("Result", f"Discount ${discount:.2f} ({percentage}%)", f"${price:.2f}")
        return result


class PricingEngine:
    """
    Caller-facing pricing operation: result cache in front of the resolver.

    Cache failures never block a resolution; the result is computed fresh
    and a best-effort repopulation is attempted.
    """

    def __init__(
        self,
        store,
        cache: Optional[ResultCache] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.settings = settings or get_settings()
        self.resolver = PriceResolver(store, clock=clock)
        self.cache = cache if cache is not None else InMemoryResultCache(self.settings.cache_max_entries)
        self.cache_ttl = self.settings.cache_ttl_seconds

    @property
    def store(self):
        return self.resolver.store

    async def calculate_price(
        self,
        request: PriceCalculationRequest,
        use_cache: bool = True,
    ) -> PriceCalculationResult:
        """
        Calculate the effective unit price for a request.

        Raises InvalidQuantity or RuleLookupFailed.
        """
        validate_quantity(request.quantity)
        key = CacheKey.for_request(request)

        if use_cache:
            cached = self._cache_get(key)
            if cached is not None:
                return cached

        result = await self.resolver.resolve(request)
        logger.debug(
            "Resolved %s for customer %s qty %d: %.2f (%s)",
            request.product_id, request.customer_id, request.quantity,
            result.price, result.applied_rule or "base price",
        )

        if use_cache:
            self._cache_put(key, result)
        return result

    async def calculate_prices(
        self,
        requests: Sequence[PriceCalculationRequest],
        use_cache: bool = True,
    ) -> list[PriceCalculationResult]:
        """Resolve several requests concurrently; results keep request order."""
        return list(await asyncio.gather(
            *(self.calculate_price(r, use_cache=use_cache) for r in requests)
        ))

    def _cache_get(self, key: CacheKey) -> Optional[PriceCalculationResult]:
        try:
            cached = self.cache.get(key)
        except Exception:
            logger.warning("Price cache read failed for %s; resolving fresh", key, exc_info=True)
            return None
        return cached.copy() if cached is not None else None

    def _cache_put(self, key: CacheKey, result: PriceCalculationResult):
        try:
            self.cache.put(key, result.copy(), self.cache_ttl)
        except Exception:
            logger.warning("Price cache write failed for %s", key, exc_info=True)

    def clear_customer_cache(self, customer_id: str) -> int:
        """Drop cached results for one customer (e.g. after a group reassignment)."""
        return self.cache.invalidate(lambda key: key.customer_id == customer_id)

    def clear_product_cache(self, product_id: str) -> int:
        """Drop cached results for one product (e.g. after an override edit)."""
        return self.cache.invalidate(lambda key: key.product_id == product_id)

    def clear_cache(self):
        self.cache.clear()

    def cache_stats(self) -> dict:
        return self.cache.stats()
