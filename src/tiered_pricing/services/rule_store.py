"""
Rule Store - Read-only access to pricing groups and product price overrides.

The resolver queries a RuleStore through three point reads. A record that
does not exist is not an error: lookups return None or an empty list and
pricing degrades to the base price. Only a store that cannot be read raises
RuleLookupFailed.
"""
import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, Optional

import pandas as pd

from ..config.settings import Settings, get_settings
from ..engine.errors import RuleLookupFailed
from ..engine.models import PricingGroup, ProductPrice
from ..rules.parse_records import (
    GROUP_MEMBER_COLUMNS,
    parse_optional_str,
    validate_pricing_group_row,
    validate_product_price_row,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)


def pick_customer_group(groups: Iterable[PricingGroup], customer_id: str) -> Optional[PricingGroup]:
    """
    Resolve the single active group a customer belongs to.

    Several active groups claiming one customer is a data anomaly: it is
    logged and the lexicographically smallest group id wins.
    """
    claiming = sorted(
        (g for g in groups if g.is_active and g.has_customer(customer_id)),
        key=lambda g: g.id,
    )
    if not claiming:
        return None
    if len(claiming) > 1:
        logger.warning(
            "Customer %s is claimed by %d active groups (%s); using %s",
            customer_id, len(claiming), ", ".join(g.id for g in claiming), claiming[0].id,
        )
    return claiming[0]


class RuleStore(ABC):
    """Read-only accessor over pricing groups and product price overrides."""

    @abstractmethod
    async def get_product_price_overrides(self, product_id: str) -> list[ProductPrice]:
        """All override records for a product, whatever their validity window."""

    @abstractmethod
    async def get_pricing_group(self, group_id: str) -> Optional[PricingGroup]:
        """Point lookup of a pricing group."""

    @abstractmethod
    async def get_customer_group_membership(self, customer_id: str) -> Optional[PricingGroup]:
        """The active group the customer is assigned to, if any."""


class InMemoryRuleStore(RuleStore):
    """Dict-backed store, for embedding and tests."""

    def __init__(
        self,
        groups: Iterable[PricingGroup] = (),
        overrides: Iterable[ProductPrice] = (),
    ):
        self.groups: dict[str, PricingGroup] = {g.id: g for g in groups}
        self.overrides: dict[str, list[ProductPrice]] = {}
        for record in overrides:
            self.add_override(record)

    def add_group(self, group: PricingGroup):
        self.groups[group.id] = group

    def remove_group(self, group_id: str):
        self.groups.pop(group_id, None)

    def add_override(self, record: ProductPrice):
        self.overrides.setdefault(record.product_id, []).append(record)

    async def get_product_price_overrides(self, product_id: str) -> list[ProductPrice]:
        return list(self.overrides.get(product_id, []))

    async def get_pricing_group(self, group_id: str) -> Optional[PricingGroup]:
        return self.groups.get(group_id)

    async def get_customer_group_membership(self, customer_id: str) -> Optional[PricingGroup]:
        return pick_customer_group(self.groups.values(), customer_id)


class CsvRuleStore(RuleStore):
    """
    Store backed by the pricing CSV exports.

    Files are read once with pandas on first use and indexed for point
    lookups; `reload()` picks up admin edits. A missing file is treated as
    an empty collection, an unreadable one raises RuleLookupFailed.
    """

    def __init__(
        self,
        pricing_groups_csv: Path,
        group_members_csv: Path,
        product_prices_csv: Path,
    ):
        self.pricing_groups_csv = pricing_groups_csv
        self.group_members_csv = group_members_csv
        self.product_prices_csv = product_prices_csv
        self.loaded = False
        self.errors: list[str] = []
        self._groups: dict[str, PricingGroup] = {}
        self._overrides: dict[str, list[ProductPrice]] = {}

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> 'CsvRuleStore':
        settings = settings or get_settings()
        return cls(
            pricing_groups_csv=settings.pricing_groups_csv,
            group_members_csv=settings.group_members_csv,
            product_prices_csv=settings.product_prices_csv,
        )

    def _load_csv(self, path: Path) -> pd.DataFrame:
        if not path.exists():
            logger.warning("Rule file %s not found; treating as empty", path)
            return pd.DataFrame()
        try:
            df = pd.read_csv(path, dtype=str).fillna('')
        except pd.errors.EmptyDataError:
            return pd.DataFrame()
        except (OSError, UnicodeDecodeError, pd.errors.ParserError) as e:
            raise RuleLookupFailed("load", f"{path.name}: {e}") from e
        # Strip all strings and headers
        df.columns = [c.strip() for c in df.columns]
        for col in df.columns:
            df[col] = df[col].astype(str).str.strip()
        return df

    def reload(self):
        """Re-read all rule files from disk."""
        groups_df = self._load_csv(self.pricing_groups_csv)
        members_df = self._load_csv(self.group_members_csv)
        prices_df = self._load_csv(self.product_prices_csv)

        errors = []
        members: dict[str, set[str]] = {}
        if not members_df.empty:
            missing = [c for c in GROUP_MEMBER_COLUMNS if c not in members_df.columns]
            if missing:
                raise RuleLookupFailed("load", f"{self.group_members_csv.name} lacks columns {missing}")
            for row in members_df.to_dict('records'):
                group_id = parse_optional_str(row['group_id'])
                customer_id = parse_optional_str(row['customer_id'])
                if group_id and customer_id:
                    members.setdefault(group_id, set()).add(customer_id)

        groups = {}
        # +2 for 1-indexed header row
        for line_num, row in enumerate(groups_df.to_dict('records'), start=2):
            group, row_errors = validate_pricing_group_row(row, line_num)
            if row_errors:
                errors.extend(f"{self.pricing_groups_csv.name}: {e}" for e in row_errors)
                continue
            if group.id in groups:
                logger.warning("Duplicate pricing group %s; keeping the later row", group.id)
            groups[group.id] = PricingGroup(
                id=group.id,
                name=group.name,
                description=group.description,
                policy=group.policy,
                customer_ids=frozenset(members.get(group.id, ())),
                min_order_amount=group.min_order_amount,
                is_active=group.is_active,
                updated_at=group.updated_at,
            )

        overrides: dict[str, list[ProductPrice]] = {}
        for line_num, row in enumerate(prices_df.to_dict('records'), start=2):
            record, row_errors = validate_product_price_row(row, line_num)
            if row_errors:
                errors.extend(f"{self.product_prices_csv.name}: {e}" for e in row_errors)
                continue
            overrides.setdefault(record.product_id, []).append(record)

        for err in errors:
            logger.warning("Skipped rule row: %s", err)

        self._groups = groups
        self._overrides = overrides
        self.errors = errors
        self.loaded = True
        logger.info(
            "Loaded %d pricing groups and %d product price overrides",
            len(groups), sum(len(v) for v in overrides.values()),
        )

    async def _ensure_loaded(self):
        if not self.loaded:
            await asyncio.to_thread(self.reload)

    async def get_product_price_overrides(self, product_id: str) -> list[ProductPrice]:
        await self._ensure_loaded()
        return list(self._overrides.get(product_id, []))

    async def get_pricing_group(self, group_id: str) -> Optional[PricingGroup]:
        await self._ensure_loaded()
        return self._groups.get(group_id)

    async def get_customer_group_membership(self, customer_id: str) -> Optional[PricingGroup]:
        await self._ensure_loaded()
        return pick_customer_group(self._groups.values(), customer_id)
