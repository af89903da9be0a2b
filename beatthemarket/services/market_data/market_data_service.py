"""Market data facade used by the analysis pipeline.

Routes price and profile lookups through the request pool and memoizes
completed results for the lifetime of the service instance.
"""

import logging
from datetime import date

from beatthemarket.config import settings
from beatthemarket.constants import CURRENCY_SYMBOLS
from beatthemarket.services.market_data.request_pool import RequestPool
from beatthemarket.services.market_data.yfinance_client import SymbolProfile, YFinanceClient
from beatthemarket.services.portfolio.portfolio_types import PricePoint

logger = logging.getLogger(__name__)


class MarketDataService:
    """Historical prices and symbol profiles with bounded concurrency."""

    def __init__(
        self,
        client: YFinanceClient | None = None,
        pool: RequestPool | None = None,
        timeout: float | None = None,
    ):
        self.client = client or YFinanceClient()
        self.pool = pool or RequestPool()
        self.timeout = timeout if timeout is not None else settings.market_data_timeout
        self._prices: dict[tuple[str, date, date], list[PricePoint]] = {}
        self._profiles: dict[str, SymbolProfile] = {}

    def get_prices(self, symbol: str, start: date, end: date) -> list[PricePoint]:
        """Daily closes for a symbol; an empty list when the lookup fails."""
        return self.get_prices_many([symbol], start, end).get(symbol, [])

    def get_prices_many(
        self, symbols: list[str], start: date, end: date
    ) -> dict[str, list[PricePoint]]:
        """
        Fetch price histories for several symbols concurrently.

        Args:
            symbols: Ticker symbols
            start: First date
            end: Last date

        Returns:
            Symbol -> price points (missing symbols map to an empty list)
        """
        results: dict[str, list[PricePoint]] = {}
        futures = {}

        for symbol in dict.fromkeys(symbols):
            key = (symbol, start, end)
            if key in self._prices:
                results[symbol] = self._prices[key]
                continue
            futures[symbol] = self.pool.submit(
                ("prices", symbol, start, end),
                lambda s=symbol: self.client.get_price_history(s, start, end),
                fallback=[],
            )

        for symbol, points in self.pool.gather(futures, self.timeout).items():
            if points:
                self._prices[(symbol, start, end)] = points
            results[symbol] = points

        for symbol in symbols:
            results.setdefault(symbol, [])
        return results

    def get_profiles(self, symbols: list[str]) -> dict[str, SymbolProfile]:
        """
        Fetch classification profiles for several symbols concurrently.

        Currency codes are skipped. A symbol whose lookup fails or times out
        gets a bare profile carrying only its symbol.

        Args:
            symbols: Ticker symbols

        Returns:
            Symbol -> SymbolProfile
        """
        results: dict[str, SymbolProfile] = {}
        futures = {}

        for symbol in dict.fromkeys(symbols):
            if not symbol or symbol in CURRENCY_SYMBOLS:
                continue
            if symbol in self._profiles:
                results[symbol] = self._profiles[symbol]
                continue
            futures[symbol] = self.pool.submit(
                ("profile", symbol),
                lambda s=symbol: self.client.get_symbol_profile(s),
                fallback=None,
            )

        for symbol, profile in self.pool.gather(futures, self.timeout).items():
            if profile is not None:
                self._profiles[symbol] = profile
                results[symbol] = profile

        for symbol in futures:
            if symbol not in results:
                logger.warning(f"Profile for {symbol} unavailable, continuing without metadata")
                results[symbol] = SymbolProfile(symbol=symbol)

        logger.info(f"Loaded {len(results)} symbol profiles")
        return results

    def close(self) -> None:
        """Stop the worker threads; outstanding lookups are abandoned."""
        self.pool.shutdown()
