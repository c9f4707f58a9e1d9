"""
Pricing engine tests - precedence, clamping, invariants and the cache contract.
"""
import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from conftest import NOW, make_override
from tiered_pricing.engine import (
    InvalidQuantity,
    PriceCalculationRequest,
    PricingEngine,
    RuleLookupFailed,
)
from tiered_pricing.engine.cache import NullResultCache, ResultCache
from tiered_pricing.engine.models import (
    DiscountTier,
    FixedDiscount,
    PercentageDiscount,
    PricingGroup,
    RuleKind,
    TieredDiscount,
)
from tiered_pricing.rules.parse_records import validate_product_price_row
from tiered_pricing.services import InMemoryRuleStore


def _request(quantity=1, base_price=100.0, customer_id="C1", product_id="P1"):
    return PriceCalculationRequest(
        product_id=product_id,
        customer_id=customer_id,
        quantity=quantity,
        base_price=base_price,
    )


def _engine(settings, groups=(), overrides=(), **kwargs):
    store = InMemoryRuleStore(groups=groups, overrides=overrides)
    return PricingEngine(store, settings=settings, clock=lambda: NOW, **kwargs)


def _assert_invariants(result):
    assert result.price == result.original_price - result.discount_amount
    assert result.price >= 0
    assert result.discount_amount >= 0


@pytest.mark.asyncio
async def test_end_to_end_group_percentage(engine):
    """Base $500, customer in group G (10% off), no overrides → $450."""
    result = await engine.calculate_price(_request(base_price=500.0, product_id="P500"))

    assert result.price == 450
    assert result.original_price == 500
    assert result.discount_amount == 50
    assert result.discount_percentage == 10
    assert result.applied_rule == "G"
    assert result.rule_kind == RuleKind.GROUP_DISCOUNT


@pytest.mark.asyncio
async def test_no_rules_returns_base_price(settings):
    engine = _engine(settings)
    result = await engine.calculate_price(_request(base_price=120.0, customer_id="nobody"))

    assert result.price == 120.0
    assert result.original_price == 120.0
    assert result.discount_amount == 0
    assert result.discount_percentage == 0
    assert result.applied_rule is None


@pytest.mark.asyncio
async def test_anonymous_request_skips_store(settings):
    store = AsyncMock()
    engine = PricingEngine(store, settings=settings)

    result = await engine.calculate_price(_request(customer_id=None))

    assert result.price == 100.0
    assert result.applied_rule is None
    store.get_product_price_overrides.assert_not_called()
    store.get_customer_group_membership.assert_not_called()


@pytest.mark.asyncio
async def test_customer_override_beats_group_discount(settings, dealer_group):
    override = make_override(price=70.0, customer_id="C1")
    engine = _engine(settings, groups=[dealer_group], overrides=[override])

    result = await engine.calculate_price(_request())

    assert result.price == 70.0
    assert result.rule_kind == RuleKind.CUSTOMER_OVERRIDE
    assert result.discount_amount == 30.0
    _assert_invariants(result)


@pytest.mark.asyncio
async def test_group_override_beats_group_discount(settings, dealer_group):
    override = make_override(price=85.0, pricing_group_id=dealer_group.id)
    engine = _engine(settings, groups=[dealer_group], overrides=[override])

    result = await engine.calculate_price(_request())

    assert result.price == 85.0
    assert result.rule_kind == RuleKind.GROUP_OVERRIDE
    assert result.applied_rule == "Group price: G"


@pytest.mark.asyncio
async def test_tiered_customer_override(settings):
    override = make_override(price=100.0, customer_id="C1", tiers=[(1, 100), (10, 90), (50, 80)])
    engine = _engine(settings, overrides=[override])

    result = await engine.calculate_price(_request(quantity=12, base_price=120.0))

    assert result.price == 90
    assert result.selected_tier == 10
    assert result.discount_amount == 30


@pytest.mark.asyncio
async def test_expired_override_falls_through_to_group(settings, dealer_group):
    expired = make_override(
        price=50.0, customer_id="C1", tiers=[(1, 50.0)],
        valid_to=NOW - timedelta(days=1),
    )
    engine = _engine(settings, groups=[dealer_group], overrides=[expired])

    result = await engine.calculate_price(_request(quantity=1))

    # Neither the tier nor the flat price of the expired record applies
    assert result.price == 90.0
    assert result.rule_kind == RuleKind.GROUP_DISCOUNT


@pytest.mark.asyncio
async def test_fixed_discount_clamped_at_zero(settings):
    group = PricingGroup(id="g", name="Staff", policy=FixedDiscount(150), customer_ids=frozenset({"C1"}))
    engine = _engine(settings, groups=[group])

    result = await engine.calculate_price(_request(base_price=100.0))

    assert result.discount_amount == 100
    assert result.price == 0
    assert result.discount_percentage == 100
    _assert_invariants(result)


@pytest.mark.asyncio
async def test_override_above_base_price_gives_no_discount(settings):
    engine = _engine(settings, overrides=[make_override(price=130.0, customer_id="C1")])

    result = await engine.calculate_price(_request(base_price=100.0))

    assert result.price == 100.0
    assert result.discount_amount == 0
    assert result.rule_kind == RuleKind.CUSTOMER_OVERRIDE
    _assert_invariants(result)


@pytest.mark.asyncio
async def test_tiered_group_below_first_tier_uses_base_price(settings):
    policy = TieredDiscount((DiscountTier(10, 5), DiscountTier(50, 8)))
    group = PricingGroup(id="w", name="Wholesale", policy=policy, customer_ids=frozenset({"C1"}))
    engine = _engine(settings, groups=[group])

    below = await engine.calculate_price(_request(quantity=5))
    above = await engine.calculate_price(_request(quantity=60))

    assert below.price == 100.0
    assert below.applied_rule is None
    assert above.price == 92.0
    assert above.selected_tier == 50


@pytest.mark.asyncio
async def test_inactive_group_never_selected(settings):
    group = PricingGroup(
        id="old", name="Old", policy=PercentageDiscount(50),
        customer_ids=frozenset({"C1"}), is_active=False,
    )
    override = make_override(price=10.0, pricing_group_id="old")
    engine = _engine(settings, groups=[group], overrides=[override])

    result = await engine.calculate_price(_request())

    assert result.price == 100.0
    assert result.applied_rule is None


@pytest.mark.asyncio
async def test_dangling_group_reference_is_ignored(settings):
    override = make_override(price=10.0, pricing_group_id="deleted-group")
    engine = _engine(settings, overrides=[override])

    result = await engine.calculate_price(_request())

    assert result.price == 100.0


@pytest.mark.asyncio
@pytest.mark.parametrize("quantity", [0, -3, 1.5, True, "2"])
async def test_invalid_quantity_rejected_before_lookup(settings, quantity):
    store = AsyncMock()
    engine = PricingEngine(store, settings=settings)

    with pytest.raises(InvalidQuantity):
        await engine.calculate_price(_request(quantity=quantity))

    store.get_product_price_overrides.assert_not_called()


@pytest.mark.asyncio
async def test_store_failure_raises_rule_lookup_failed(settings):
    store = AsyncMock()
    store.get_product_price_overrides.side_effect = ConnectionError("store unreachable")
    store.get_customer_group_membership.return_value = None
    engine = PricingEngine(store, settings=settings)

    with pytest.raises(RuleLookupFailed) as exc_info:
        await engine.calculate_price(_request())

    assert exc_info.value.operation == "get_product_price_overrides"
    assert isinstance(exc_info.value.__cause__, ConnectionError)


@pytest.mark.asyncio
async def test_idempotent_results(settings, dealer_group):
    engine = _engine(settings, groups=[dealer_group], cache=NullResultCache())

    first = await engine.calculate_price(_request(quantity=3, base_price=123.45))
    second = await engine.calculate_price(_request(quantity=3, base_price=123.45))

    assert first == second
    assert first is not second


@pytest.mark.asyncio
async def test_cache_hit_skips_resolution(settings, dealer_group):
    engine = _engine(settings, groups=[dealer_group])
    store = engine.store
    store.get_product_price_overrides = AsyncMock(wraps=store.get_product_price_overrides)

    first = await engine.calculate_price(_request())
    second = await engine.calculate_price(_request())

    assert second == first
    assert store.get_product_price_overrides.await_count == 1


@pytest.mark.asyncio
async def test_cached_result_unaffected_by_caller_edits(settings, dealer_group):
    engine = _engine(settings, groups=[dealer_group])

    first = await engine.calculate_price(_request())
    first.add_trace("Caller", "annotated by the storefront")
    first.price = -1.0
    second = await engine.calculate_price(_request())
    second.add_trace("Caller", "annotated again")
    third = await engine.calculate_price(_request())

    assert third.price == 90.0
    assert "Caller" not in third.get_trace_text()
    assert engine.cache_stats()["hits"] == 2


@pytest.mark.asyncio
async def test_cache_transparency(settings, dealer_group):
    overrides = [
        make_override("PP-1", price=80.0, customer_id="C1", tiers=[(5, 75.0)]),
        make_override("PP-2", product_id="P2", price=60.0, pricing_group_id=dealer_group.id),
    ]
    cached = _engine(settings, groups=[dealer_group], overrides=overrides)
    uncached = _engine(settings, groups=[dealer_group], overrides=overrides, cache=NullResultCache())

    requests = [
        _request(quantity=q, product_id=p, customer_id=c)
        for q in (1, 5, 20)
        for p in ("P1", "P2", "P3")
        for c in ("C1", "C9", None)
    ]
    for request in requests + requests:
        assert await cached.calculate_price(request) == await uncached.calculate_price(request)


class BrokenCache(ResultCache):
    def get(self, key):
        raise ConnectionError("cache down")

    def put(self, key, result, ttl):
        raise ConnectionError("cache down")

    def invalidate(self, predicate):
        return 0


@pytest.mark.asyncio
async def test_cache_failure_never_blocks_resolution(settings, dealer_group, caplog):
    engine = _engine(settings, groups=[dealer_group], cache=BrokenCache())

    result = await engine.calculate_price(_request())

    assert result.price == 90.0
    assert "cache read failed" in caplog.text
    assert "cache write failed" in caplog.text


@pytest.mark.asyncio
async def test_bulk_calculation_preserves_order(settings, dealer_group):
    engine = _engine(settings, groups=[dealer_group])
    requests = [_request(base_price=p, product_id=f"P{p}") for p in (10.0, 200.0, 50.0)]

    results = await engine.calculate_prices(requests)

    assert [r.price for r in results] == [9.0, 180.0, 45.0]


@pytest.mark.asyncio
async def test_concurrent_same_key_calls_agree(settings, dealer_group):
    engine = _engine(settings, groups=[dealer_group])

    results = await asyncio.gather(*(engine.calculate_price(_request()) for _ in range(10)))

    assert all(r == results[0] for r in results)


@pytest.mark.asyncio
async def test_clear_customer_cache(settings, dealer_group):
    engine = _engine(settings, groups=[dealer_group])
    await engine.calculate_price(_request(customer_id="C1"))
    await engine.calculate_price(_request(customer_id="C2"))

    assert engine.clear_customer_cache("C1") == 1
    assert engine.cache_stats()["size"] == 1
    assert engine.clear_product_cache("P1") == 1
    assert engine.cache_stats()["size"] == 0


@pytest.mark.asyncio
async def test_trace_records_resolution_steps(engine):
    result = await engine.calculate_price(_request())
    text = result.get_trace_text()

    assert "Group Lookup" in text
    assert "Group Discount" in text
    assert text.splitlines()[-1].endswith("$90.00")


@pytest.mark.asyncio
@pytest.mark.parametrize("base_price", [0.0, 0.01, 19.99, 333.33, 1e6])
@pytest.mark.parametrize("policy", [PercentageDiscount(33.3), FixedDiscount(7.5), FixedDiscount(1e7)])
async def test_price_invariant_holds(settings, base_price, policy):
    group = PricingGroup(id="g", name="G", policy=policy, customer_ids=frozenset({"C1"}))
    engine = _engine(settings, groups=[group], cache=NullResultCache())

    result = await engine.calculate_price(_request(base_price=base_price))

    _assert_invariants(result)


def _stored_override(**row):
    record, errors = validate_product_price_row(
        {'price_id': 'PP-1', 'product_id': 'P1', 'customer_id': 'C1', 'price': '80', **row}, 2
    )
    assert errors == []
    return record


@pytest.mark.asyncio
async def test_offset_timestamps_resolve_against_local_clock(settings, dealer_group):
    windowed = _stored_override(
        valid_from='2026-01-01T00:00:00+00:00',
        valid_to='2030-01-01T00:00:00+00:00',
        updated_at='2026-02-01T08:00:00+02:00',
    )
    undated = _stored_override(price_id='PP-2', price='85')
    engine = _engine(settings, groups=[dealer_group], overrides=[windowed, undated])

    result = await engine.calculate_price(_request())

    assert result.price == 80.0
    assert result.rule_kind == RuleKind.CUSTOMER_OVERRIDE


@pytest.mark.asyncio
async def test_offset_aware_clock_is_accepted(settings):
    aware_now = NOW.astimezone()
    store = InMemoryRuleStore(overrides=[_stored_override(valid_to='2030-01-01')])
    engine = PricingEngine(store, settings=settings, clock=lambda: aware_now)

    result = await engine.calculate_price(_request())

    assert result.price == 80.0


@pytest.mark.asyncio
@pytest.mark.parametrize("bad", [float("nan"), float("inf")])
async def test_non_finite_rule_falls_back_to_base_price(settings, bad):
    engine = _engine(settings, overrides=[make_override(price=bad, customer_id="C1")])

    result = await engine.calculate_price(_request())

    assert result.price == 100.0
    assert result.applied_rule is None
    assert result.rule_kind is None
    _assert_invariants(result)


@pytest.mark.asyncio
async def test_non_finite_group_discount_falls_back_to_base_price(settings):
    group = PricingGroup(id="g", name="G", policy=PercentageDiscount(float("nan")), customer_ids=frozenset({"C1"}))
    engine = _engine(settings, groups=[group])

    result = await engine.calculate_price(_request())

    assert result.price == 100.0
    assert "unusable" in result.get_trace_text()
    _assert_invariants(result)


@pytest.mark.asyncio
async def test_non_finite_base_price_clamped(settings, dealer_group):
    engine = _engine(settings, groups=[dealer_group])

    result = await engine.calculate_price(_request(base_price=float("nan")))

    assert result.original_price == 0.0
    assert result.price == 0.0
    _assert_invariants(result)
