"""
Tiered Pricing Package

Price resolution for a B2B storefront: customer-specific and pricing-group
overrides, group discount policies and quantity tiers, with a short-lived
result cache in front.
"""

__version__ = "1.0.0"
