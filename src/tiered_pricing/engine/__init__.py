"""Engine subpackage - core pricing logic and resolution."""
from .pricing_engine import PricingEngine, PriceResolver
from .models import PriceCalculationRequest, PriceCalculationResult
from .errors import InvalidQuantity, RuleLookupFailed

__all__ = [
    'PricingEngine', 'PriceResolver',
    'PriceCalculationRequest', 'PriceCalculationResult',
    'InvalidQuantity', 'RuleLookupFailed',
]
