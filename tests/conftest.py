import sys
import os
from datetime import datetime

import pytest

# Add src to path for internal imports
src_path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src')
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from tiered_pricing.config.settings import Settings
from tiered_pricing.engine import PricingEngine
from tiered_pricing.engine.models import (
    PercentageDiscount,
    PricingGroup,
    PriceTier,
    ProductPrice,
)
from tiered_pricing.services import InMemoryRuleStore

NOW = datetime(2026, 6, 15, 12, 0, 0)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def settings(tmp_path):
    return Settings(
        data_dir=tmp_path,
        pricing_groups_csv=tmp_path / 'pricing_groups.csv',
        group_members_csv=tmp_path / 'group_members.csv',
        product_prices_csv=tmp_path / 'product_prices.csv',
        catalog_csv=tmp_path / 'catalog.csv',
        cache_ttl_seconds=30.0,
        cache_max_entries=100,
    )


@pytest.fixture
def dealer_group():
    """Group G: 10% off, customer C1 assigned."""
    return PricingGroup(
        id="grp-g",
        name="G",
        policy=PercentageDiscount(10),
        customer_ids=frozenset({"C1"}),
    )


@pytest.fixture
def store(dealer_group):
    return InMemoryRuleStore(groups=[dealer_group])


@pytest.fixture
def engine(store, settings):
    return PricingEngine(store, settings=settings, clock=lambda: NOW)


def make_override(
    price_id="PP-1",
    product_id="P1",
    price=90.0,
    customer_id=None,
    pricing_group_id=None,
    tiers=(),
    **kwargs,
) -> ProductPrice:
    return ProductPrice(
        id=price_id,
        product_id=product_id,
        price=price,
        customer_id=customer_id,
        pricing_group_id=pricing_group_id,
        tiered_pricing=tuple(PriceTier(m, p) for m, p in tiers),
        **kwargs,
    )
