"""
Print the resolution trace for one price request against the CSV rule files.

Usage:
    python scripts/debug_price.py P-100 --customer C-1001 --qty 12
"""
import argparse
import asyncio
import sys
from pathlib import Path

# Add src to path
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from tiered_pricing.engine import PricingEngine, PriceCalculationRequest
from tiered_pricing.engine.cache import NullResultCache
from tiered_pricing.services import CsvProductLookup, CsvRuleStore


async def debug(product_id: str, customer_id: str, quantity: int, base_price: float = None):
    store = CsvRuleStore.from_settings()
    engine = PricingEngine(store, cache=NullResultCache())

    if base_price is None:
        base_price = CsvProductLookup.from_settings().get_base_price(product_id)
        if base_price is None:
            print(f"Product {product_id} not in catalog; pass --base-price")
            return

    print("Loaded rules:")
    group = await store.get_customer_group_membership(customer_id) if customer_id else None
    overrides = await store.get_product_price_overrides(product_id)
    print(f"  Customer group: {group.id if group else 'none'}")
    print(f"  Overrides for {product_id}: {[o.id for o in overrides]}")
    for err in store.errors:
        print(f"  Skipped row: {err}")

    request = PriceCalculationRequest(
        product_id=product_id,
        customer_id=customer_id,
        quantity=quantity,
        base_price=base_price,
    )
    result = await engine.calculate_price(request)

    print("\nTrace:")
    print(result.get_trace_text())
    print("\nResult:")
    print(result.to_dict())


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("product_id")
    parser.add_argument("--customer")
    parser.add_argument("--qty", type=int, default=1)
    parser.add_argument("--base-price", type=float)
    args = parser.parse_args()
    asyncio.run(debug(args.product_id, args.customer, args.qty, args.base_price))


if __name__ == "__main__":
    main()
