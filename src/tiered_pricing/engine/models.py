"""
Data models for the pricing engine.

Uses dataclasses for structured, type-safe data representation.
Stored records (pricing groups, product price overrides) are frozen so a
resolution can never mutate what the rule store handed out.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional, Union


def as_local_naive(value: Optional[datetime]) -> Optional[datetime]:
    """
    Naive local time, the convention of the resolver clock (`datetime.now`).

    Offset-bearing timestamps are converted to the local zone and stripped,
    so stored and clock values always compare.
    """
    if getattr(value, "tzinfo", None) is None:
        return value
    return value.astimezone().replace(tzinfo=None)


class DiscountType(str, Enum):
    """Discount policy kinds a pricing group can carry."""
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    TIERED = "tiered"


class RuleKind(str, Enum):
    """Which precedence level produced a price."""
    CUSTOMER_OVERRIDE = "customer_override"
    GROUP_OVERRIDE = "group_override"
    GROUP_DISCOUNT = "group_discount"


@dataclass(frozen=True)
class PriceTier:
    """Quantity breakpoint on a product price override (absolute unit price)."""
    min_quantity: int
    price: float


@dataclass(frozen=True)
class DiscountTier:
    """Quantity breakpoint on a tiered group policy (percentage off base price)."""
    min_quantity: int
    discount_value: float


@dataclass(frozen=True)
class PercentageDiscount:
    """Percentage (0-100) off the base price."""
    value: float

    @property
    def discount_type(self) -> DiscountType:
        return DiscountType.PERCENTAGE


@dataclass(frozen=True)
class FixedDiscount:
    """Currency amount off the base price."""
    amount: float

    @property
    def discount_type(self) -> DiscountType:
        return DiscountType.FIXED


@dataclass(frozen=True)
class TieredDiscount:
    """Quantity-dependent percentage off the base price."""
    tiers: tuple[DiscountTier, ...] = ()

    @property
    def discount_type(self) -> DiscountType:
        return DiscountType.TIERED


DiscountPolicy = Union[PercentageDiscount, FixedDiscount, TieredDiscount]


@dataclass(frozen=True)
class PricingGroup:
    """A named customer segment with a discount policy."""
    id: str
    name: str
    policy: DiscountPolicy
    description: str = ""
    customer_ids: frozenset[str] = frozenset()
    min_order_amount: Optional[float] = None
    is_active: bool = True
    updated_at: Optional[datetime] = None

    @property
    def discount_type(self) -> DiscountType:
        return self.policy.discount_type

    def has_customer(self, customer_id: str) -> bool:
        return customer_id in self.customer_ids

    def meets_minimum(self, subtotal: float) -> bool:
        """
        Check the group's order floor against a cart subtotal.

        The resolver never calls this; the floor needs cart context, so
        callers building an order decide whether the group discount stands.
        """
        if self.min_order_amount is None:
            return True
        return subtotal >= self.min_order_amount


@dataclass(frozen=True)
class ProductPrice:
    """A price pinned to one product for a customer or a pricing group."""
    id: str
    product_id: str
    price: float
    customer_id: Optional[str] = None
    pricing_group_id: Optional[str] = None
    tiered_pricing: tuple[PriceTier, ...] = ()
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    is_active: bool = True
    updated_at: Optional[datetime] = None

    @property
    def is_customer_specific(self) -> bool:
        # Customer binding wins when a record carries both
        return self.customer_id is not None

    def is_valid_at(self, now: datetime) -> bool:
        """True when `now` falls inside [valid_from, valid_to]."""
        if not self.is_active:
            return False
        now = as_local_naive(now)
        if self.valid_from is not None and now < as_local_naive(self.valid_from):
            return False
        if self.valid_to is not None and now > as_local_naive(self.valid_to):
            return False
        return True


@dataclass(frozen=True)
class PriceCalculationRequest:
    """A pricing request for a single product line."""
    product_id: str
    quantity: int
    base_price: float
    customer_id: Optional[str] = None


@dataclass(frozen=True)
class TraceStep:
    """A single step in the pricing resolution trace."""
    step: str
    description: str
    value: Optional[str] = None


@dataclass
class PriceCalculationResult:
    """Complete result of a price resolution."""
    price: float
    original_price: float
    discount_amount: float
    discount_percentage: float
    applied_rule: Optional[str] = None
    rule_kind: Optional[RuleKind] = None
    selected_tier: Optional[int] = None
    trace: list[TraceStep] = field(default_factory=list, compare=False)

    def add_trace(self, step: str, description: str, value: str = None):
        """Add a step to the result trace."""
        self.trace.append(TraceStep(step=step, description=description, value=value))

    def get_trace_text(self) -> str:
        """Get human-readable trace as formatted text."""
        lines = []
        for t in self.trace:
            if t.value:
                lines.append(f"• {t.step}: {t.description} = {t.value}")
            else:
                lines.append(f"• {t.step}: {t.description}")
        return "\n".join(lines)

    def copy(self) -> 'PriceCalculationResult':
        """Independent copy, so a cached result never sees caller edits."""
        return replace(self, trace=list(self.trace))

    def to_dict(self) -> dict:
        """Public fields, as served to callers."""
        return {
            "price": self.price,
            "original_price": self.original_price,
            "discount_amount": self.discount_amount,
            "discount_percentage": self.discount_percentage,
            "applied_rule": self.applied_rule,
            "rule_kind": self.rule_kind.value if self.rule_kind else None,
            "selected_tier": self.selected_tier,
        }
