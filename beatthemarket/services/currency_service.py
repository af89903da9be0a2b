"""Currency conversion with historical daily rates."""

import logging
from dataclasses import dataclass, replace
from datetime import date, timedelta
from decimal import Decimal

from beatthemarket.config import settings
from beatthemarket.constants import Currency
from beatthemarket.services.brokers.base_broker_parser import ParsedReport
from beatthemarket.services.market_data.market_data_service import MarketDataService

logger = logging.getLogger(__name__)

# Majors that Yahoo quotes as XXXUSD=X (USD per unit); the rest are quoted as XXX=X
USD_QUOTED_MAJORS = frozenset([Currency.EUR, Currency.GBP, Currency.AUD, Currency.NZD])

NEUTRAL_RATE = Decimal("1")


@dataclass(frozen=True)
class FxTicker:
    """Yahoo ticker for a currency pair and whether its quotes must be inverted."""

    symbol: str
    invert: bool


def select_fx_ticker(base: str, target: str) -> FxTicker:
    """
    Choose the Yahoo ticker expressing one unit of base in units of target.

    Args:
        base: Source currency (e.g., "USD")
        target: Target currency (e.g., "EUR")

    Returns:
        FxTicker with the symbol to fetch and the inversion flag
    """
    if base == Currency.USD:
        if target in USD_QUOTED_MAJORS:
            return FxTicker(f"{target}USD=X", invert=True)
        return FxTicker(f"{target}=X", invert=False)
    if target == Currency.USD:
        if base in USD_QUOTED_MAJORS:
            return FxTicker(f"{base}USD=X", invert=False)
        return FxTicker(f"{base}=X", invert=True)
    return FxTicker(f"{base}{target}=X", invert=False)


def lookup_rate(
    rates: dict[date, Decimal], on: date, lookback_days: int | None = None
) -> Decimal | None:
    """
    Find the rate for a date, walking back to the most recent earlier rate.

    Args:
        rates: Date -> rate
        on: Requested date
        lookback_days: How many days back to search

    Returns:
        Rate, or None if nothing is found within the lookback window
    """
    if lookback_days is None:
        lookback_days = settings.fx_lookback_days
    if on in rates:
        return rates[on]
    for days_back in range(1, lookback_days + 1):
        candidate = on - timedelta(days=days_back)
        if candidate in rates:
            return rates[candidate]
    return None


class CurrencyService:
    """Historical FX rates for one request, with a per-instance rate cache.

    Example usage:
        fx = CurrencyService(market_data)
        fx.load_rates("EUR", "USD", date(2024, 1, 1), date(2024, 12, 31))
        usd = fx.convert(Decimal("100"), "EUR", "USD", date(2024, 3, 15))
    """

    def __init__(
        self, market_data: MarketDataService | None = None, lookback_days: int | None = None
    ):
        self.market_data = market_data or MarketDataService()
        self.lookback_days = (
            lookback_days if lookback_days is not None else settings.fx_lookback_days
        )
        self._rates: dict[tuple[str, str], dict[date, Decimal]] = {}
        self._loaded: dict[tuple[str, str], list[tuple[date, date]]] = {}

    def load_rates(self, base: str, target: str, start: date, end: date) -> dict[date, Decimal]:
        """
        Make sure rates for base -> target cover [start, end].

        The window is widened by the lookback so the first dates can fall back.
        Rates already cached for the inverse pair are reused by inversion.

        Returns:
            Date -> rate for the pair (may be empty if no data is available)
        """
        if base == target:
            return {}

        pair = (base, target)
        if self._covers(pair, start, end):
            return self._rates.get(pair, {})

        inverse = (target, base)
        if self._covers(inverse, start, end) and self._rates.get(inverse):
            self._rates.setdefault(pair, {}).update(
                {day: NEUTRAL_RATE / rate for day, rate in self._rates[inverse].items() if rate}
            )
            self._loaded.setdefault(pair, []).append((start, end))
            return self._rates[pair]

        ticker = select_fx_ticker(base, target)
        fetch_start = start - timedelta(days=self.lookback_days)
        points = self.market_data.get_prices(ticker.symbol, fetch_start, end)
        if not points:
            logger.warning(f"No FX data for {ticker.symbol} between {fetch_start} and {end}")

        series = self._rates.setdefault(pair, {})
        for point in points:
            if point.close <= 0:
                continue
            series[point.date] = NEUTRAL_RATE / point.close if ticker.invert else point.close
        self._loaded.setdefault(pair, []).append((start, end))
        return series

    def find_rate(self, base: str, target: str, on: date) -> Decimal | None:
        """Rate for a date with lookback, or None when unavailable."""
        if base == target:
            return NEUTRAL_RATE
        series = self.load_rates(base, target, on, on)
        return lookup_rate(series, on, self.lookback_days)

    def rate(self, base: str, target: str, on: date) -> Decimal:
        """Rate for a date with lookback, degrading to 1.0 when unavailable."""
        found = self.find_rate(base, target, on)
        if found is None:
            logger.warning(f"No {base}/{target} rate near {on}, using neutral rate 1.0")
            return NEUTRAL_RATE
        return found

    def latest_rate(self, base: str, target: str, as_of: date | None = None) -> Decimal:
        """Most recent rate up to as_of (default today), searching back a few days."""
        as_of = as_of or date.today()
        if base == target:
            return NEUTRAL_RATE
        series = self.load_rates(base, target, as_of - timedelta(days=self.lookback_days), as_of)
        candidates = [day for day in series if day <= as_of]
        if not candidates:
            logger.warning(f"No recent {base}/{target} rate, using neutral rate 1.0")
            return NEUTRAL_RATE
        return series[max(candidates)]

    def convert(self, amount: Decimal, base: str, target: str, on: date) -> Decimal:
        return amount * self.rate(base, target, on)

    def rebase_report(self, report: ParsedReport, target: str) -> ParsedReport:
        """
        Express a report's NAV history and transaction FX rates in another currency.

        NAV totals and cash are multiplied by the base -> target rate of their
        date; each transaction's fx_rate_to_base is chained with the same rate so
        that amount x fx_rate_to_base yields target currency. Positions and cash
        reports stay in their native currencies.

        Args:
            report: Parsed report in its own base currency
            target: Display currency

        Returns:
            New ParsedReport with base_currency == target
        """
        base = report.base_currency
        nav_currencies = {e.currency for e in report.equity_summary}
        if base == target and nav_currencies <= {target}:
            return report

        dates = [e.report_date for e in report.equity_summary] + [
            t.date for t in report.cash_transactions
        ]
        if dates:
            for currency in nav_currencies | {base}:
                self.load_rates(currency, target, min(dates), max(dates))

        equity_summary = [
            replace(
                e,
                total=e.total * self.rate(e.currency, target, e.report_date),
                cash=e.cash * self.rate(e.currency, target, e.report_date),
                currency=target,
            )
            for e in report.equity_summary
        ]
        cash_transactions = [
            replace(t, fx_rate_to_base=t.fx_rate_to_base * self.rate(base, target, t.date))
            for t in report.cash_transactions
        ]

        logger.info(f"Rebased report {report.account_id} from {base} to {target}")
        return replace(
            report,
            base_currency=target,
            equity_summary=equity_summary,
            cash_transactions=cash_transactions,
        )

    def _covers(self, pair: tuple[str, str], start: date, end: date) -> bool:
        return any(s <= start and end <= e for s, e in self._loaded.get(pair, []))
