"""Tests for the end-to-end portfolio analysis."""

from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from beatthemarket.constants import OTHERS, AllocationClass, DepositType
from beatthemarket.services.brokers.base_broker_parser import ParsedReport
from beatthemarket.services.brokers.ibkr.flex_client import FlexClientError
from beatthemarket.services.portfolio.portfolio_types import ComparisonPoint, Deposit, SourceRef
from beatthemarket.services.portfolio_analysis_service import (
    NoPortfolioDataError,
    PortfolioAnalysisService,
    fill_portfolio_values,
)
from tests.conftest import SPY_CLOSES, make_nav, make_prices, make_transaction


@pytest.fixture
def market_data(mock_market_data):
    mock_market_data.get_prices.return_value = SPY_CLOSES
    return mock_market_data


@pytest.fixture
def flex_client():
    return MagicMock()


@pytest.fixture
def service(market_data, flex_client):
    return PortfolioAnalysisService(
        market_data=market_data,
        flex_client=flex_client,
        benchmark_symbol="SPY",
        benchmark_currency="USD",
    )


@pytest.fixture
def document(flex_report_xml) -> str:
    return flex_report_xml.decode()


def point(day: date) -> ComparisonPoint:
    return ComparisonPoint(date=day, benchmark_value=Decimal("0"), total_invested=Decimal("0"))


class TestFillPortfolioValues:
    def test_nav_dates_use_nav(self):
        comparison = [point(date(2024, 1, 2)), point(date(2024, 1, 3))]
        equity = {date(2024, 1, 2): Decimal("100"), date(2024, 1, 3): Decimal("110")}

        fill_portfolio_values(comparison, equity, [])

        assert [p.portfolio_value for p in comparison] == [Decimal("100"), Decimal("110")]

    def test_missing_nav_carries_forward_with_deposits(self):
        """Rows without NAV add deposits made since the last known NAV."""
        comparison = [point(date(2024, 1, d)) for d in (2, 3, 4, 5)]
        equity = {date(2024, 1, 2): Decimal("1000"), date(2024, 1, 5): Decimal("1600")}
        deposits = [
            Deposit(
                date=date(2024, 1, 3),
                amount=Decimal("500"),
                original_amount=Decimal("500"),
                currency="USD",
                description="Deposit",
            )
        ]

        fill_portfolio_values(comparison, equity, deposits)

        assert [p.portfolio_value for p in comparison] == [
            Decimal("1000"),
            Decimal("1500"),
            Decimal("1500"),
            Decimal("1600"),
        ]


class TestAnalyze:
    """Tests for PortfolioAnalysisService.analyze."""

    def test_manual_document(self, service, document, market_data):
        analysis = service.analyze(manual_documents=[document])

        assert analysis.display_currency == "USD"
        assert [p.date for p in analysis.comparison] == [p.date for p in SPY_CLOSES]
        assert [p.benchmark_value for p in analysis.comparison] == [
            Decimal("20000.00"),
            Decimal("20200.00"),
            Decimal("30400.00"),
            Decimal("32996.08"),
        ]
        assert [p.total_invested for p in analysis.comparison] == [
            Decimal("20000.00"),
            Decimal("20000.00"),
            Decimal("30000.00"),
            Decimal("32000.00"),
        ]
        assert [p.portfolio_value for p in analysis.comparison] == [
            Decimal("20000"),
            Decimal("20100"),
            Decimal("30300"),
            Decimal("23380"),
        ]
        market_data.get_prices.assert_called_once()
        assert market_data.get_prices.call_args.args[0] == "SPY"

    def test_summary(self, service, document):
        summary = service.analyze(manual_documents=[document]).summary

        assert summary.net_worth == Decimal("23380")
        assert summary.total_deposited == Decimal("32000")
        assert summary.benchmark_value == Decimal("32996.08")
        # (23380 - 20000 - 12000) / (20000 + 6000)
        assert round(float(summary.metrics.mwr), 2) == -33.15
        assert round(float(summary.metrics.benchmark_mwr), 2) == 3.83
        assert summary.metrics.annualized_mwr == Decimal("0")

    def test_effective_deposits_and_warnings(self, service, document):
        analysis = service.analyze(manual_documents=[document])

        deposits = analysis.effective_deposits
        assert [(d.date, d.amount) for d in deposits] == [
            (date(2024, 1, 2), Decimal("20000")),
            (date(2024, 1, 4), Decimal("10000")),
            (date(2024, 1, 5), Decimal("500")),
            (date(2024, 1, 5), Decimal("1500")),
        ]
        assert deposits[0].type == DepositType.SYNTHETIC
        assert len(analysis.warnings) == 1
        assert analysis.warnings[0].startswith("Initial capital of 20000.00 USD")
        assert analysis.sources == [SourceRef("IBKR", "U1234567")]

    def test_holdings_and_allocation(self, service, document):
        analysis = service.analyze(manual_documents=[document])

        assert sorted(h.symbol for h in analysis.holdings) == [
            "AAPL",
            "AAPL  240216P00170000",
            "USD",
        ]
        assets = {b.name: b.value for b in analysis.categories.asset}
        assert assets == {AllocationClass.EQUITIES: Decimal("18380"), "CASH": Decimal("5000")}
        assert {b.name for b in analysis.categories.sector} == {OTHERS}

    def test_same_file_twice_changes_nothing(self, service, document):
        once = service.analyze(manual_documents=[document])
        twice = service.analyze(manual_documents=[document, document])

        assert twice.effective_deposits == once.effective_deposits
        assert [p.benchmark_value for p in twice.comparison] == [
            p.benchmark_value for p in once.comparison
        ]

    def test_parsed_reports_are_accepted(self, service, document):
        report = service.parser.parse(document)

        analysis = service.analyze(manual_reports=[report])

        assert analysis.summary.net_worth == Decimal("23380")

    def test_bad_manual_document_becomes_warning(self, service, document):
        analysis = service.analyze(manual_documents=["Date,Amount\n20240102,100", document])

        assert any(w.startswith("Manual report 1 skipped:") for w in analysis.warnings)

    def test_no_benchmark_prices_falls_back_to_nav_dates(self, service, document, market_data):
        market_data.get_prices.return_value = []

        analysis = service.analyze(manual_documents=[document])

        assert [p.date for p in analysis.comparison] == [
            date(2024, 1, 2),
            date(2024, 1, 3),
            date(2024, 1, 4),
            date(2024, 1, 5),
        ]
        assert analysis.comparison[-1].portfolio_value == Decimal("23380")
        assert analysis.summary.benchmark_value == Decimal("0")

    def test_display_currency_conversion(self, service, document, market_data):
        """USD report shown in EUR at a flat 1.25 EURUSD rate."""
        eurusd = make_prices({p.date: "1.25" for p in SPY_CLOSES})
        market_data.get_prices.side_effect = lambda symbol, start, end: (
            eurusd if symbol == "EURUSD=X" else SPY_CLOSES
        )

        analysis = service.analyze(manual_documents=[document], display_currency="eur")

        assert analysis.display_currency == "EUR"
        assert analysis.summary.net_worth == Decimal("18704")
        # The 5000 USD cash row appears once, converted
        cash = [h for h in analysis.holdings if h.original_currency == "USD" and h.symbol == "USD"]
        assert [h.market_value for h in cash] == [Decimal("4000")]
        assert analysis.comparison[0].total_invested == Decimal("16000.00")
        assert analysis.comparison[0].portfolio_value == Decimal("16000")
        assert analysis.effective_deposits[0].amount == Decimal("16000")

    def test_foreign_deposit_uses_its_own_rate_without_fx_lookups(self, service, market_data):
        """A deposit carrying fx_rate_to_base needs no FX series when nothing is rebased."""
        report = ParsedReport(
            account_id="U1",
            cash_transactions=[
                make_transaction(
                    "1000",
                    date(2024, 1, 2),
                    "1",
                    currency="SGD",
                    fx_rate="0.74",
                    is_net_invested_flow=True,
                )
            ],
            equity_summary=[make_nav(date(2024, 1, 2), "740"), make_nav(date(2024, 1, 3), "745")],
        )

        analysis = service.analyze(manual_reports=[report])

        assert [(d.amount, d.currency) for d in analysis.effective_deposits] == [
            (Decimal("740.00"), "SGD")
        ]
        assert [c.args[0] for c in market_data.get_prices.call_args_list] == ["SPY"]

    def test_no_data(self, service):
        with pytest.raises(NoPortfolioDataError):
            service.analyze()

    def test_close_releases_market_data(self, service, market_data):
        service.close()

        market_data.close.assert_called_once_with()


class TestLiveReports:
    """Tests for live Flex fetching inside an analysis."""

    def test_each_query_is_fetched(self, service, flex_client, flex_report_xml):
        flex_client.fetch_flex_report.return_value = flex_report_xml

        analysis = service.analyze(token="secret", query_id="111, 222")

        assert flex_client.fetch_flex_report.call_count == 2
        assert analysis.summary.total_deposited == Decimal("32000")

    def test_live_failure_with_manual_data_is_a_warning(self, service, flex_client, document):
        flex_client.fetch_flex_report.side_effect = FlexClientError(
            "IBKR Error: Token has expired.", "1012"
        )

        analysis = service.analyze(token="secret", query_id="111", manual_documents=[document])

        assert "Live report for query 111 failed: IBKR Error: Token has expired." in (
            analysis.warnings
        )

    def test_failed_query_does_not_stop_the_next(self, service, flex_client, flex_report_xml):
        flex_client.fetch_flex_report.side_effect = [
            FlexClientError("IBKR Error: Invalid query.", "1014"),
            flex_report_xml,
        ]

        analysis = service.analyze(token="secret", query_id="111,222")

        assert flex_client.fetch_flex_report.call_count == 2
        assert analysis.summary.total_deposited == Decimal("32000")
        assert "Live report for query 111 failed: IBKR Error: Invalid query." in analysis.warnings

    def test_live_failure_without_data_is_raised(self, service, flex_client):
        flex_client.fetch_flex_report.side_effect = FlexClientError(
            "IBKR Error: Token has expired.", "1012"
        )

        with pytest.raises(FlexClientError):
            service.analyze(token="secret", query_id="111")

    def test_no_live_fetch_without_token(self, service, flex_client, document):
        service.analyze(query_id="111", manual_documents=[document])

        flex_client.fetch_flex_report.assert_not_called()
