"""
Centralized settings and path configuration for the pricing tool.
"""
import os
from pathlib import Path
from dataclasses import dataclass
from typing import Optional


@dataclass
class Settings:
    """Application settings with sensible defaults."""

    # Directory holding the CSV inputs
    data_dir: Path

    # Rule store files
    pricing_groups_csv: Path
    group_members_csv: Path
    product_prices_csv: Path

    # Product catalog (base prices)
    catalog_csv: Path

    # Result cache tuning
    cache_ttl_seconds: float = 60.0
    cache_max_entries: int = 1000

    log_level: str = "INFO"

    @classmethod
    def load(cls) -> 'Settings':
        """Load settings from the environment, defaulting to the bundled data."""
        data_dir = os.environ.get('PRICING_DATA_DIR')
        data_dir = Path(data_dir) if data_dir else Path(__file__).resolve().parent.parent / 'data'

        return cls(
            data_dir=data_dir,
            pricing_groups_csv=data_dir / 'pricing_groups.csv',
            group_members_csv=data_dir / 'group_members.csv',
            product_prices_csv=data_dir / 'product_prices.csv',
            catalog_csv=data_dir / 'catalog.csv',
            cache_ttl_seconds=float(os.environ.get('PRICING_CACHE_TTL_SECONDS', 60)),
            cache_max_entries=int(os.environ.get('PRICING_CACHE_MAX_ENTRIES', 1000)),
            log_level=os.environ.get('PRICING_LOG_LEVEL', 'INFO'),
        )


# Default settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def reset_settings():
    """Drop the cached instance so the next call re-reads the environment."""
    global _settings
    _settings = None
