"""
Record Parser - Validates stored pricing rows and turns them into records.

Reads rows of pricing_groups.csv, group_members.csv and product_prices.csv
(as dicts of strings) and builds PricingGroup / ProductPrice records.
A row that cannot be parsed is reported and skipped; it never fails a
price resolution.
"""
import math
from datetime import datetime, time
from typing import Optional, Type

from ..engine.models import (
    DiscountTier,
    DiscountType,
    FixedDiscount,
    PercentageDiscount,
    PriceTier,
    PricingGroup,
    ProductPrice,
    TieredDiscount,
    as_local_naive,
)

PRICING_GROUP_COLUMNS = [
    'group_id', 'name', 'description', 'discount_type', 'discount_value',
    'tiers', 'min_order_amount', 'active', 'updated_at',
]

GROUP_MEMBER_COLUMNS = ['group_id', 'customer_id']

PRODUCT_PRICE_COLUMNS = [
    'price_id', 'product_id', 'customer_id', 'pricing_group_id', 'price',
    'tiers', 'valid_from', 'valid_to', 'active', 'updated_at',
]

VALID_DISCOUNT_TYPES = {t.value for t in DiscountType}


def parse_bool(value: str, default: bool = True) -> bool:
    """Parse a boolean from CSV string (empty = default)."""
    if value is None or str(value).strip() == '':
        return default
    return str(value).strip().lower() in ('true', '1', 'yes', 'on')


def parse_optional_str(value: str) -> Optional[str]:
    """Parse optional string (empty = None)."""
    if value is None or str(value).strip() == '':
        return None
    return str(value).strip()


def parse_optional_int(value: str) -> Optional[int]:
    """Parse optional integer."""
    value = parse_optional_str(value)
    if value is None:
        return None
    return int(value)


def parse_finite_float(value: str) -> float:
    """Parse a float, rejecting nan and infinities."""
    parsed = float(value)
    if not math.isfinite(parsed):
        raise ValueError(f"'{value}' is not a finite number")
    return parsed


def parse_optional_float(value: str) -> Optional[float]:
    """Parse optional finite float."""
    value = parse_optional_str(value)
    if value is None:
        return None
    return parse_finite_float(value)


def parse_optional_datetime(value: str, end_of_day: bool = False) -> Optional[datetime]:
    """
    Parse an optional ISO date or datetime.

    A bare date (YYYY-MM-DD) means the start of that day, or its last
    instant when `end_of_day` is set, so a validity window ending on a date
    includes the whole day. Offset-bearing values are converted to naive
    local time.
    """
    value = parse_optional_str(value)
    if value is None:
        return None
    parsed = as_local_naive(datetime.fromisoformat(value))
    if end_of_day and len(value) == 10:
        parsed = datetime.combine(parsed.date(), time.max)
    return parsed


def parse_tiers(value: str, tier_cls: Type) -> tuple:
    """
    Parse a tier list written as "min:value|min:value", e.g. "1:100|10:90".

    Order is preserved as written; normalisation happens at resolution time.
    """
    value = parse_optional_str(value)
    if value is None:
        return ()
    tiers = []
    for chunk in value.split('|'):
        chunk = chunk.strip()
        if not chunk:
            continue
        min_qty, _, amount = chunk.partition(':')
        if not amount:
            raise ValueError(f"tier '{chunk}' must look like min_quantity:value")
        tiers.append(tier_cls(int(min_qty), parse_finite_float(amount)))
    return tuple(tiers)


def validate_pricing_group_row(row: dict, line_num: int) -> tuple[Optional[PricingGroup], list[str]]:
    """
    Validate and parse a pricing group from a CSV row.

    Returns (group, errors) - group is None if validation failed.
    Members are attached separately from group_members.csv.
    """
    errors = []

    group_id = parse_optional_str(row.get('group_id', ''))
    if not group_id:
        errors.append(f"Line {line_num}: group_id is required")
        return None, errors

    discount_type = parse_optional_str(row.get('discount_type', ''))
    if discount_type not in VALID_DISCOUNT_TYPES:
        errors.append(
            f"Line {line_num}: invalid discount_type '{discount_type}', "
            f"must be one of: {sorted(VALID_DISCOUNT_TYPES)}"
        )
        return None, errors

    try:
        discount_value = parse_optional_float(row.get('discount_value', '')) or 0.0
        min_order_amount = parse_optional_float(row.get('min_order_amount', ''))
    except ValueError:
        errors.append(f"Line {line_num}: discount_value and min_order_amount must be numeric")
        return None, errors

    if discount_type == DiscountType.PERCENTAGE.value:
        policy = PercentageDiscount(discount_value)
    elif discount_type == DiscountType.FIXED.value:
        policy = FixedDiscount(discount_value)
    else:
        try:
            policy = TieredDiscount(parse_tiers(row.get('tiers', ''), DiscountTier))
        except ValueError as e:
            errors.append(f"Line {line_num}: {e}")
            return None, errors

    try:
        updated_at = parse_optional_datetime(row.get('updated_at', ''))
    except ValueError:
        errors.append(f"Line {line_num}: updated_at must be an ISO date or datetime")
        return None, errors

    name = parse_optional_str(row.get('name', '')) or group_id
    return PricingGroup(
        id=group_id,
        name=name,
        description=parse_optional_str(row.get('description', '')) or "",
        policy=policy,
        min_order_amount=min_order_amount,
        is_active=parse_bool(row.get('active', '')),
        updated_at=updated_at,
    ), []


def validate_product_price_row(row: dict, line_num: int) -> tuple[Optional[ProductPrice], list[str]]:
    """
    Validate and parse a product price override from a CSV row.

    Returns (record, errors) - record is None if validation failed.
    """
    errors = []

    price_id = parse_optional_str(row.get('price_id', ''))
    product_id = parse_optional_str(row.get('product_id', ''))
    if not price_id or not product_id:
        errors.append(f"Line {line_num}: price_id and product_id are required")
        return None, errors

    try:
        price = parse_optional_float(row.get('price', ''))
    except ValueError:
        price = None
    if price is None:
        errors.append(f"Line {line_num}: price must be numeric")
        return None, errors

    try:
        tiered_pricing = parse_tiers(row.get('tiers', ''), PriceTier)
    except ValueError as e:
        errors.append(f"Line {line_num}: {e}")
        return None, errors

    dates = {}
    for date_field in ('valid_from', 'valid_to', 'updated_at'):
        try:
            dates[date_field] = parse_optional_datetime(
                row.get(date_field, ''), end_of_day=(date_field == 'valid_to')
            )
        except ValueError:
            errors.append(f"Line {line_num}: {date_field} must be an ISO date or datetime")
    if errors:
        return None, errors

    return ProductPrice(
        id=price_id,
        product_id=product_id,
        price=price,
        customer_id=parse_optional_str(row.get('customer_id', '')),
        pricing_group_id=parse_optional_str(row.get('pricing_group_id', '')),
        tiered_pricing=tiered_pricing,
        valid_from=dates['valid_from'],
        valid_to=dates['valid_to'],
        is_active=parse_bool(row.get('active', '')),
        updated_at=dates['updated_at'],
    ), []
