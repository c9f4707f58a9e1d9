"""
Product Lookup - Base (list) prices for products.

Callers use this before building a PriceCalculationRequest; the resolver
itself never re-fetches the base price.
"""
import math
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import pandas as pd

from ..config.settings import Settings, get_settings
from ..engine.errors import RuleLookupFailed
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ProductLookup(ABC):
    """Base price by product id."""

    @abstractmethod
    def get_base_price(self, product_id: str) -> Optional[float]:
        """Return the product's base price, or None if the product is unknown."""


class CsvProductLookup(ProductLookup):
    """Catalog loaded from catalog.csv (columns: product_id, name, base_price)."""

    def __init__(self, catalog_path: Path):
        self.catalog_path = catalog_path
        self.catalog = pd.DataFrame(columns=['name', 'base_price'])
        self.reload_data()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> 'CsvProductLookup':
        settings = settings or get_settings()
        return cls(settings.catalog_csv)

    def reload_data(self):
        """
        Reload the catalog from disk.

        Raises RuleLookupFailed when the file cannot be read or lacks the
        product_id / base_price columns; the previous catalog is kept.
        """
        if not self.catalog_path.exists():
            logger.warning("Catalog %s not found; no base prices available", self.catalog_path)
            return
        try:
            catalog = pd.read_csv(
                self.catalog_path,
                index_col='product_id',
                dtype={'product_id': str},
            )
        except pd.errors.EmptyDataError:
            logger.warning("Catalog %s is empty; no base prices available", self.catalog_path)
            return
        except (OSError, UnicodeDecodeError, ValueError) as e:
            # ParserError and a missing index column are both ValueErrors
            raise RuleLookupFailed("load", f"{self.catalog_path.name}: {e}") from e
        if 'base_price' not in catalog.columns:
            raise RuleLookupFailed("load", f"{self.catalog_path.name} lacks a base_price column")
        catalog.index = catalog.index.str.strip()
        catalog['base_price'] = pd.to_numeric(catalog['base_price'], errors='coerce')
        dupes = catalog.index.duplicated()
        if dupes.any():
            logger.warning("Catalog has %d duplicate product ids; keeping first", int(dupes.sum()))
            catalog = catalog[~dupes]
        self.catalog = catalog

    def get_base_price(self, product_id: str) -> Optional[float]:
        product_id = str(product_id).strip()
        if product_id not in self.catalog.index:
            return None
        price = self.catalog.at[product_id, 'base_price']
        if pd.isna(price) or not math.isfinite(price):
            return None
        return float(price)

    def get_name(self, product_id: str) -> Optional[str]:
        product_id = str(product_id).strip()
        if product_id not in self.catalog.index or 'name' not in self.catalog.columns:
            return None
        name = self.catalog.at[product_id, 'name']
        return None if pd.isna(name) else str(name)
