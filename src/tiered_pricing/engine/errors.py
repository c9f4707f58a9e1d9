"""
Error kinds raised by the pricing engine.

Only two kinds ever reach a caller: a request that is wrong on its face
(`InvalidQuantity`) and a rule store that could not be read
(`RuleLookupFailed`). Missing records are never errors.
"""
from typing import Optional


class PricingError(Exception):
    """Base class for pricing engine errors."""


class InvalidQuantity(PricingError, ValueError):
    """Request quantity is not a positive integer."""

    def __init__(self, quantity):
        self.quantity = quantity
        super().__init__(f"Quantity must be a positive integer, got {quantity!r}")


class RuleLookupFailed(PricingError):
    """The backing rule store could not be reached during a required read."""

    def __init__(self, operation: str, detail: Optional[str] = None):
        self.operation = operation
        self.detail = detail
        message = f"Rule lookup '{operation}' failed"
        if detail:
            message += f": {detail}"
        super().__init__(message)
