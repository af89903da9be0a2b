"""Portfolio analysis: from raw reports to benchmark comparison and allocation.

Ties the pipeline together for one request:

    parse/fetch -> merge holdings -> rebase to display currency -> reconcile
        -> collateral adjustment -> benchmark simulation -> returns -> allocation
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from beatthemarket.config import settings
from beatthemarket.constants import CURRENCY_SYMBOLS, AssetClass, Provider
from beatthemarket.services.brokers.base_broker_parser import ParsedReport
from beatthemarket.services.brokers.ibkr.flex_client import (
    FlexClientError,
    IBKRFlexClient,
    split_query_ids,
)
from beatthemarket.services.brokers.ibkr.parser import IBKRParser, ReportParseError
from beatthemarket.services.brokers.ibkr.provider import IbkrProvider
from beatthemarket.services.currency_service import CurrencyService
from beatthemarket.services.market_data.market_data_service import MarketDataService
from beatthemarket.services.market_data.yfinance_client import SymbolProfile
from beatthemarket.services.portfolio.allocator import AllocationAggregator, AllocationCategories
from beatthemarket.services.portfolio.benchmark import (
    calculate_comparison,
    calculate_short_put_collateral,
    synthesize_collateral_deposit,
)
from beatthemarket.services.portfolio.portfolio_merger import PortfolioMerger
from beatthemarket.services.portfolio.portfolio_types import (
    Asset,
    ComparisonPoint,
    Deposit,
    PerformanceMetrics,
    PricePoint,
    SourceRef,
)
from beatthemarket.services.portfolio.returns import calculate_performance_metrics
from beatthemarket.services.portfolio.transaction_reconciler import TransactionReconciler

logger = logging.getLogger(__name__)


class NoPortfolioDataError(Exception):
    """Raised when no source yields any usable data."""


@dataclass
class PortfolioSummary:
    net_worth: Decimal
    total_deposited: Decimal
    benchmark_value: Decimal
    metrics: PerformanceMetrics = field(default_factory=PerformanceMetrics)


@dataclass
class PortfolioAnalysis:
    """Everything the dashboard needs for one analysis request."""

    display_currency: str
    comparison: list[ComparisonPoint]
    summary: PortfolioSummary
    holdings: list[Asset]
    categories: AllocationCategories
    effective_deposits: list[Deposit]
    sources: list[SourceRef] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def fill_portfolio_values(
    comparison: list[ComparisonPoint],
    equity_map: dict[date, Decimal],
    deposits: list[Deposit],
) -> list[ComparisonPoint]:
    """
    Set portfolio_value on each comparison row from the NAV history.

    Rows with a NAV use it. Rows without one carry the last known NAV forward
    plus deposits recorded on NAV-less days since then; a positive NAV resets
    the pending deposits.
    """
    deposits_by_date: dict[date, Decimal] = defaultdict(Decimal)
    for deposit in deposits:
        deposits_by_date[deposit.date] += deposit.amount

    last_known = Decimal("0")
    pending = Decimal("0")
    for point in comparison:
        nav = equity_map.get(point.date)
        if nav is not None and nav > 0:
            last_known = nav
            pending = Decimal("0")
        else:
            pending += deposits_by_date.get(point.date, Decimal("0"))
        point.portfolio_value = nav if nav is not None else last_known + pending
    return comparison


class PortfolioAnalysisService:
    """Runs a full portfolio analysis for one request.

    A service instance holds per-request caches (prices, FX rates, profiles);
    create one per request.
    """

    def __init__(
        self,
        market_data: MarketDataService | None = None,
        currency_service: CurrencyService | None = None,
        flex_client: IBKRFlexClient | None = None,
        parser: IBKRParser | None = None,
        reconciler: TransactionReconciler | None = None,
        benchmark_symbol: str | None = None,
        benchmark_currency: str | None = None,
    ):
        self.market_data = market_data or MarketDataService()
        self.currency_service = currency_service or CurrencyService(self.market_data)
        self.flex_client = flex_client or IBKRFlexClient()
        self.parser = parser or IBKRParser()
        self.reconciler = reconciler or TransactionReconciler()
        self.merger = PortfolioMerger(self.currency_service)
        self.benchmark_symbol = benchmark_symbol or settings.benchmark_symbol
        self.benchmark_currency = benchmark_currency or settings.benchmark_currency

    def analyze(
        self,
        token: str | None = None,
        query_id: str | None = None,
        manual_documents: list[str] | None = None,
        manual_reports: list[ParsedReport] | None = None,
        display_currency: str | None = None,
    ) -> PortfolioAnalysis:
        """
        Analyze manual and live reports against the benchmark.

        Args:
            token: IBKR Flex Web Service token (live fetch is skipped without it)
            query_id: One or more comma-separated Flex Query IDs
            manual_documents: Raw Flex XML documents uploaded by the user
            manual_reports: Reports parsed earlier
            display_currency: Currency of every amount in the result

        Returns:
            PortfolioAnalysis

        Raises:
            NoPortfolioDataError: If no source yields usable data
            FlexClientError: If the live fetch fails and nothing else is available
            ReportParseError: If a live report is unusable and nothing else is available
        """
        display_currency = (display_currency or settings.default_display_currency).upper()
        warnings: list[str] = []

        reports = self._collect_manual_reports(
            manual_documents or [], manual_reports or [], warnings
        )
        if token and query_id:
            reports.extend(self._fetch_live_reports(token, query_id, reports, warnings))

        if not any(report.has_data for report in reports):
            raise NoPortfolioDataError("No data provided from manual history or live reports.")

        # Holdings are mapped in each report's own base currency, before rebasing
        portfolio = self.merger.merge_holdings(
            [IbkrProvider.to_unified(r, Provider.IBKR) for r in reports], display_currency
        )

        reports = [self.currency_service.rebase_report(r, display_currency) for r in reports]
        reconciliation = self.reconciler.reconcile(
            [t for r in reports for t in r.cash_transactions],
            [e for r in reports for e in r.equity_summary],
        )
        warnings.extend(reconciliation.warnings)

        holdings = portfolio.assets
        deposits = self._apply_collateral(
            reconciliation.effective_deposits, holdings, display_currency
        )

        comparison = self._build_comparison(deposits, reconciliation.equity_map, display_currency)
        fill_portfolio_values(comparison, reconciliation.equity_map, deposits)
        metrics = calculate_performance_metrics(comparison)

        profiles = self._load_profiles(holdings)
        categories = AllocationAggregator(profiles).aggregate(holdings).for_display()

        summary = PortfolioSummary(
            net_worth=self._net_worth(holdings, reconciliation.equity_map),
            total_deposited=sum((d.amount for d in deposits), Decimal("0")),
            benchmark_value=comparison[-1].benchmark_value if comparison else Decimal("0"),
            metrics=metrics,
        )

        logger.info(
            f"Analyzed {len(reports)} reports: {len(comparison)} comparison rows, "
            f"{len(holdings)} holdings, {len(warnings)} warnings"
        )
        return PortfolioAnalysis(
            display_currency=display_currency,
            comparison=comparison,
            summary=summary,
            holdings=holdings,
            categories=categories,
            effective_deposits=deposits,
            sources=portfolio.metadata.sources,
            warnings=list(dict.fromkeys(warnings)),
        )

    def _collect_manual_reports(
        self, documents: list[str], parsed: list[ParsedReport], warnings: list[str]
    ) -> list[ParsedReport]:
        reports = []
        for index, document in enumerate(documents, 1):
            try:
                reports.append(self.parser.parse(document))
            except ReportParseError as e:
                logger.warning(f"Skipping manual report {index}: {e.message}")
                warnings.append(f"Manual report {index} skipped: {e.message}")
        reports.extend(parsed)
        return reports

    def _fetch_live_reports(
        self, token: str, query_ids: str, existing: list[ParsedReport], warnings: list[str]
    ) -> list[ParsedReport]:
        """Fetch one report per query id; failures are tolerated once any data exists."""
        fetched: list[ParsedReport] = []
        failures: list[tuple[str, FlexClientError | ReportParseError]] = []
        for query_id in split_query_ids(query_ids):
            try:
                content = self.flex_client.fetch_flex_report(token, query_id)
                fetched.append(self.parser.parse(content))
            except (FlexClientError, ReportParseError) as e:
                logger.error(f"Error fetching/parsing query {query_id}: {e.message}")
                failures.append((query_id, e))

        if failures and not any(r.has_data for r in [*existing, *fetched]):
            raise failures[0][1]
        for query_id, e in failures:
            warnings.append(f"Live report for query {query_id} failed: {e.message}")
        return fetched

    def _apply_collateral(
        self, deposits: list[Deposit], holdings: list[Asset], display_currency: str
    ) -> list[Deposit]:
        fx_rates = {
            currency: self.currency_service.latest_rate(currency, display_currency)
            for currency in {a.original_currency or a.currency for a in holdings}
        }
        required = calculate_short_put_collateral(holdings, fx_rates, display_currency)
        if required <= 0:
            return deposits
        return synthesize_collateral_deposit(deposits, required, display_currency)

    def _build_comparison(
        self, deposits: list[Deposit], equity_map: dict[date, Decimal], display_currency: str
    ) -> list[ComparisonPoint]:
        comparison: list[ComparisonPoint] = []

        if deposits:
            start = min(d.date for d in deposits)
            prices = self._benchmark_prices(start, date.today(), display_currency)
            comparison = calculate_comparison(deposits, prices)

        if not comparison and equity_map:
            logger.info("No benchmark series available, using NAV dates only")
            comparison = [
                ComparisonPoint(date=day, benchmark_value=Decimal("0"), total_invested=Decimal("0"))
                for day in sorted(equity_map)
            ]
        return comparison

    def _benchmark_prices(self, start: date, end: date, display_currency: str) -> list[PricePoint]:
        prices = self.market_data.get_prices(self.benchmark_symbol, start, end)
        if not prices:
            logger.warning(f"No benchmark prices for {self.benchmark_symbol} from {start}")
            return []
        if self.benchmark_currency == display_currency:
            return prices

        fx = self.currency_service
        fx.load_rates(self.benchmark_currency, display_currency, start, end)
        return [
            PricePoint(p.date, p.close * fx.rate(self.benchmark_currency, display_currency, p.date))
            for p in prices
        ]

    def _load_profiles(self, holdings: list[Asset]) -> dict[str, SymbolProfile]:
        """Profiles for held symbols, then for ETF top holdings not fetched yet."""
        primary = [
            a.symbol
            for a in holdings
            if a.asset_class not in (AssetClass.CASH, AssetClass.OPTION)
            and a.symbol not in CURRENCY_SYMBOLS
        ]
        profiles = self.market_data.get_profiles(primary)

        secondary = [
            holding.symbol
            for profile in list(profiles.values())
            for holding in profile.top_holdings
            if holding.symbol not in profiles
        ]
        if secondary:
            profiles.update(self.market_data.get_profiles(secondary))
        return profiles

    @staticmethod
    def _net_worth(holdings: list[Asset], equity_map: dict[date, Decimal]) -> Decimal:
        total = sum((a.market_value for a in holdings), Decimal("0"))
        if total:
            return total
        if equity_map:
            return equity_map[max(equity_map)]
        return Decimal("0")

    def close(self) -> None:
        """Release the market data workers held by this service."""
        self.market_data.close()
