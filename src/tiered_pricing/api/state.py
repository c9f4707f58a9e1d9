"""
Shared engine state for the API process.

Built lazily from settings on first request so importing the app never
touches the data files.
"""
from typing import Optional

from ..config.settings import get_settings
from ..engine.pricing_engine import PricingEngine
from ..services.product_lookup import CsvProductLookup
from ..services.rule_store import CsvRuleStore

_engine: Optional[PricingEngine] = None
_product_lookup: Optional[CsvProductLookup] = None


def get_engine() -> PricingEngine:
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = PricingEngine(CsvRuleStore.from_settings(settings), settings=settings)
    return _engine


def get_product_lookup() -> CsvProductLookup:
    global _product_lookup
    if _product_lookup is None:
        _product_lookup = CsvProductLookup.from_settings()
    return _product_lookup
