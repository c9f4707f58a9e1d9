"""Services subpackage - rule storage and product catalog access."""
from .rule_store import RuleStore, InMemoryRuleStore, CsvRuleStore
from .product_lookup import ProductLookup, CsvProductLookup

__all__ = ['RuleStore', 'InMemoryRuleStore', 'CsvRuleStore', 'ProductLookup', 'CsvProductLookup']
