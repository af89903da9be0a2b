"""Allocation of holdings into asset, sector, industry, geography and ticker buckets."""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal

from beatthemarket.config import settings
from beatthemarket.constants import CURRENCY_SYMBOLS, OTHERS, AllocationClass, AssetClass
from beatthemarket.services.market_data.yfinance_client import SymbolProfile
from beatthemarket.services.portfolio.etf_reference import (
    CATEGORY_REGIONS,
    COMMODITY_KEYWORDS,
    ETF_ASSET_MAP,
    ETF_GEO_MAP,
    FIXED_INCOME_KEYWORDS,
    TICKER_ALIASES,
)
from beatthemarket.services.portfolio.portfolio_types import Asset

logger = logging.getLogger(__name__)

ONE = Decimal("1")
ZERO = Decimal("0")


@dataclass(frozen=True)
class AllocationBucket:
    name: str
    value: Decimal


@dataclass
class AllocationCategories:
    """Buckets per category, each sorted by value descending."""

    asset: list[AllocationBucket] = field(default_factory=list)
    sector: list[AllocationBucket] = field(default_factory=list)
    industry: list[AllocationBucket] = field(default_factory=list)
    geo: list[AllocationBucket] = field(default_factory=list)
    ticker: list[AllocationBucket] = field(default_factory=list)

    def for_display(self, threshold: Decimal | None = None) -> "AllocationCategories":
        """Copy with small buckets folded into Others."""
        return AllocationCategories(
            asset=merge_small_buckets(self.asset, threshold),
            sector=merge_small_buckets(self.sector, threshold),
            industry=merge_small_buckets(self.industry, threshold),
            geo=merge_small_buckets(self.geo, threshold),
            ticker=merge_small_buckets(self.ticker, threshold),
        )


def normalize_bucket_name(name: str | None) -> str:
    if not name or name in ("Other", "Unknown"):
        return OTHERS
    return name


def format_sector_name(raw: str) -> str:
    """'consumer_cyclical' -> 'Consumer Cyclical'."""
    return raw.replace("_", " ").title()


def _sorted_buckets(values: dict[str, Decimal]) -> list[AllocationBucket]:
    return sorted(
        (AllocationBucket(name, value) for name, value in values.items()),
        key=lambda b: b.value,
        reverse=True,
    )


def merge_small_buckets(
    buckets: list[AllocationBucket], threshold: Decimal | None = None
) -> list[AllocationBucket]:
    """
    Fold buckets below a share of the category total into Others.

    Args:
        buckets: Aggregated buckets
        threshold: Fraction of the total under which a bucket is merged

    Returns:
        Buckets sorted by value descending
    """
    if threshold is None:
        threshold = Decimal(str(settings.small_bucket_threshold))

    total = sum((b.value for b in buckets), ZERO)
    if total <= 0:
        return list(buckets)

    cutoff = total * threshold
    merged: dict[str, Decimal] = {}
    for bucket in buckets:
        name = bucket.name if bucket.value >= cutoff else OTHERS
        merged[name] = merged.get(name, ZERO) + bucket.value
    return _sorted_buckets(merged)


class AllocationAggregator:
    """Classifies holdings using static tables, broker data and symbol profiles.

    Priority per holding: static override table, broker-reported asset class,
    symbol profile (sector/industry/country/category), ETF look-through, and
    finally the Others bucket.
    """

    def __init__(self, profiles: dict[str, SymbolProfile] | None = None):
        self.profiles = profiles or {}
        self._maps: dict[str, dict[str, Decimal]] = {}

    def aggregate(self, assets: list[Asset]) -> AllocationCategories:
        """
        Aggregate holdings into allocation buckets.

        Args:
            assets: Holdings with market values in one currency

        Returns:
            AllocationCategories before small-bucket merging
        """
        self._maps = {
            name: defaultdict(Decimal) for name in ("asset", "sector", "industry", "geo", "ticker")
        }

        for asset in assets:
            if asset.market_value == 0:
                continue
            self._allocate(asset)

        return AllocationCategories(
            **{name: _sorted_buckets(values) for name, values in self._maps.items()}
        )

    def asset_class_for(self, asset: Asset) -> str:
        if asset.symbol in ETF_ASSET_MAP:
            return ETF_ASSET_MAP[asset.symbol]
        if asset.asset_class == AssetClass.CASH or asset.symbol in CURRENCY_SYMBOLS:
            return AllocationClass.CASH

        profile = self.profiles.get(asset.symbol)
        category = (profile.category_name if profile else None) or ""
        if any(keyword in category for keyword in FIXED_INCOME_KEYWORDS):
            return AllocationClass.FIXED_INCOME
        if any(keyword in category for keyword in COMMODITY_KEYWORDS):
            return AllocationClass.COMMODITIES
        return AllocationClass.EQUITIES

    def _add(self, category: str, name: str | None, value: Decimal) -> None:
        self._maps[category][normalize_bucket_name(name)] += value

    def _allocate(self, asset: Asset) -> None:
        value = asset.market_value
        asset_class = self.asset_class_for(asset)
        self._add("asset", asset_class, value)
        if asset_class == AllocationClass.CASH:
            return

        profile = self.profiles.get(asset.symbol)

        if asset.symbol in ETF_GEO_MAP:
            self._allocate_static_etf(asset, profile)
        elif profile is not None and profile.is_fund:
            self._allocate_fund(asset, profile)
        elif profile is not None and profile.sector:
            self._add("sector", profile.sector, value)
            self._add("industry", profile.industry, value)
            self._add("geo", profile.country, value)
            self._add("ticker", asset.symbol, value)
        else:
            logger.debug(f"No classification data for {asset.symbol}, using {OTHERS}")
            for category in ("sector", "industry", "geo", "ticker"):
                self._add(category, OTHERS, value)

    def _allocate_static_etf(self, asset: Asset, profile: SymbolProfile | None) -> None:
        value = asset.market_value
        for country, weight in ETF_GEO_MAP[asset.symbol].items():
            self._add("geo", country, value * weight)

        if profile is not None and profile.sector_weightings:
            self._add_sector_weightings(value, profile)
        else:
            self._add_look_through("sector", asset, profile, lambda p: p.sector)
        self._add_look_through("industry", asset, profile, lambda p: p.industry)
        self._add_ticker_look_through(asset, profile)

    def _allocate_fund(self, asset: Asset, profile: SymbolProfile) -> None:
        value = asset.market_value

        if profile.sector_weightings:
            self._add_sector_weightings(value, profile)
        else:
            self._add_look_through("sector", asset, profile, lambda p: p.sector)

        self._add_look_through("industry", asset, profile, lambda p: p.industry)

        region = self._region_from_category(profile.category_name)
        if region:
            self._add("geo", region, value)
        elif not profile.top_holdings and profile.country:
            self._add("geo", profile.country, value)
        else:
            self._add_look_through(
                "geo", asset, profile, lambda p: p.country, default=profile.country
            )

        self._add_ticker_look_through(asset, profile)

    def _add_sector_weightings(self, value: Decimal, profile: SymbolProfile) -> None:
        for sector, weight in profile.sector_weightings.items():
            self._add("sector", format_sector_name(sector), value * weight)

    def _add_look_through(
        self,
        category: str,
        asset: Asset,
        profile: SymbolProfile | None,
        attribute,
        default=None,
    ) -> None:
        """Attribute each holding's share to its own classification; remainder to Others."""
        covered = ZERO
        for holding in profile.top_holdings if profile else []:
            holding_profile = self.profiles.get(holding.symbol)
            name = (attribute(holding_profile) if holding_profile else None) or default
            self._add(category, name, asset.market_value * holding.weight)
            covered += holding.weight
        self._add_uncovered(category, asset, covered)

    def _add_ticker_look_through(self, asset: Asset, profile: SymbolProfile | None) -> None:
        covered = ZERO
        for holding in profile.top_holdings if profile else []:
            symbol = TICKER_ALIASES.get(holding.symbol, holding.symbol)
            self._add("ticker", symbol, asset.market_value * holding.weight)
            covered += holding.weight
        self._add_uncovered("ticker", asset, covered)

    def _add_uncovered(self, category: str, asset: Asset, covered: Decimal) -> None:
        if covered >= ONE:
            return
        # Nothing to look through: show the fund itself
        fallback = asset.symbol if covered == 0 else OTHERS
        self._add(category, fallback, asset.market_value * (ONE - covered))

    @staticmethod
    def _region_from_category(category_name: str | None) -> str | None:
        if not category_name:
            return None
        for keywords, region in CATEGORY_REGIONS:
            if any(keyword in category_name for keyword in keywords):
                return region
        return None
