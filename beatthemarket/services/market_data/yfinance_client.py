"""YFinance client wrapper with error handling.

Provides a consistent interface for fetching price history and symbol profiles
from Yahoo Finance. Errors are raised as MarketDataError so that callers can
retry and degrade as they see fit.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal

import pandas as pd
import yfinance as yf

from beatthemarket.services.portfolio.portfolio_types import PricePoint

logger = logging.getLogger(__name__)

FUND_QUOTE_TYPES = ("ETF", "MUTUALFUND")


class MarketDataError(Exception):
    """Exception raised for yfinance API errors."""


@dataclass(frozen=True)
class EtfHolding:
    """One of an ETF's top holdings."""

    symbol: str
    name: str | None
    weight: Decimal  # fraction of the fund, 0.05 = 5%


@dataclass
class SymbolProfile:
    """Classification metadata for a symbol."""

    symbol: str
    quote_type: str | None = None
    sector: str | None = None
    industry: str | None = None
    country: str | None = None
    category_name: str | None = None
    top_holdings: list[EtfHolding] = field(default_factory=list)
    sector_weightings: dict[str, Decimal] = field(default_factory=dict)

    @property
    def is_fund(self) -> bool:
        return bool(self.top_holdings) or self.quote_type in FUND_QUOTE_TYPES


def _to_decimal(value) -> Decimal:
    return Decimal(str(round(float(value), 6)))


class YFinanceClient:
    """Wrapper around yfinance.

    Usage:
        client = YFinanceClient()
        prices = client.get_price_history("SPY", date(2024, 1, 1), date(2024, 6, 30))
        profile = client.get_symbol_profile("QQQ")
    """

    def get_price_history(self, symbol: str, start: date, end: date) -> list[PricePoint]:
        """Get daily closes between start and end (inclusive).

        Args:
            symbol: Ticker symbol (e.g., "SPY", "EURUSD=X")
            start: First date
            end: Last date

        Returns:
            Price points sorted by date; empty when Yahoo has no data

        Raises:
            MarketDataError: If the request fails
        """
        try:
            ticker = yf.Ticker(symbol)
            # yfinance treats end as exclusive
            history = ticker.history(start=start, end=end + timedelta(days=1))
        except Exception as e:
            raise MarketDataError(f"Error fetching history for {symbol}: {e}") from e

        if history is None or history.empty:
            logger.warning(f"No price data for {symbol} between {start} and {end}")
            return []

        points = []
        for index, row in history.iterrows():
            close = row.get("Close")
            if close is None or pd.isna(close):
                continue
            points.append(PricePoint(date=pd.Timestamp(index).date(), close=_to_decimal(close)))

        points.sort(key=lambda p: p.date)
        return points

    def get_symbol_profile(self, symbol: str) -> SymbolProfile:
        """Get sector/geography metadata and, for funds, holdings and weightings.

        Args:
            symbol: Ticker symbol

        Returns:
            SymbolProfile

        Raises:
            MarketDataError: If the symbol cannot be fetched
        """
        try:
            ticker = yf.Ticker(symbol)
            info = ticker.info or {}
        except Exception as e:
            raise MarketDataError(f"Error fetching info for {symbol}: {e}") from e

        if not info:
            raise MarketDataError(f"No data found for symbol {symbol}")

        profile = SymbolProfile(
            symbol=symbol,
            quote_type=info.get("quoteType"),
            sector=info.get("sector"),
            industry=info.get("industry"),
            country=info.get("country"),
            category_name=info.get("category"),
        )

        if profile.quote_type in FUND_QUOTE_TYPES:
            self._load_fund_data(ticker, profile)

        return profile

    def _load_fund_data(self, ticker, profile: SymbolProfile) -> None:
        """Attach top holdings, sector weightings and category of a fund."""
        try:
            funds_data = ticker.funds_data
            holdings = funds_data.top_holdings
            weightings = funds_data.sector_weightings or {}
            overview = funds_data.fund_overview or {}
        except Exception as e:
            logger.warning(f"No fund data for {profile.symbol}: {e}")
            return

        if holdings is not None and not holdings.empty:
            for holding_symbol, row in holdings.iterrows():
                weight = row.get("Holding Percent")
                if weight is None or pd.isna(weight):
                    continue
                profile.top_holdings.append(
                    EtfHolding(
                        symbol=str(holding_symbol),
                        name=row.get("Name"),
                        weight=_to_decimal(weight),
                    )
                )

        profile.sector_weightings = {
            name: _to_decimal(weight)
            for name, weight in weightings.items()
            if weight is not None and not pd.isna(weight)
        }
        if not profile.category_name:
            profile.category_name = overview.get("categoryName")
