"""Tests for the IBKR Flex XML parser."""

from datetime import date
from decimal import Decimal

import pytest

from beatthemarket.constants import AssetCategory, CashFlowCategory, LevelOfDetail
from beatthemarket.services.brokers.ibkr.parser import (
    IBKRParser,
    NavShape,
    ParseErrorCode,
    ReportParseError,
    parse_ibkr_date,
)
from tests.conftest import load_fixture


def flex_document(body: str, account_id: str = "U7654321") -> str:
    """Wrap statement sections in a minimal FlexQueryResponse."""
    return (
        '<FlexQueryResponse queryName="Test" type="AF"><FlexStatements count="1">'
        f'<FlexStatement accountId="{account_id}" fromDate="20240101" toDate="20240131">'
        f"{body}"
        "</FlexStatement></FlexStatements></FlexQueryResponse>"
    )


@pytest.fixture
def report(flex_report_xml):
    return IBKRParser().parse(flex_report_xml)


class TestLoadDocument:
    """Tests for document validation before parsing."""

    def test_rejects_non_xml(self):
        """CSV or HTML-less text fails fast with NOT_XML."""
        with pytest.raises(ReportParseError) as exc_info:
            IBKRParser().parse("ClientAccountID,Date,Amount\nU1,20240101,100")

        assert exc_info.value.code == ParseErrorCode.NOT_XML
        assert "XML" in exc_info.value.message

    def test_rejects_query_definition(self):
        """The query definition export is recognized and rejected."""
        with pytest.raises(ReportParseError) as exc_info:
            IBKRParser().parse(load_fixture("flex_query_definition.xml"))

        assert exc_info.value.code == ParseErrorCode.INCORRECT_FORMAT
        assert "Query Definition" in exc_info.value.message

    def test_broker_error_response(self):
        """A FlexStatementResponse surfaces the broker's code and message."""
        with pytest.raises(ReportParseError) as exc_info:
            IBKRParser().parse(load_fixture("flex_error_response.xml"))

        error = exc_info.value
        assert error.code == ParseErrorCode.BROKER_ERROR
        assert error.broker_error_code == "1020"
        assert error.message == "IBKR Error: Invalid request or unable to validate request."

    def test_unknown_root_is_named(self):
        with pytest.raises(ReportParseError) as exc_info:
            IBKRParser().parse("<html><body>Login</body></html>")

        assert exc_info.value.code == ParseErrorCode.INVALID_RESPONSE
        assert "Found: html" in exc_info.value.message

    def test_malformed_xml(self):
        with pytest.raises(ReportParseError) as exc_info:
            IBKRParser().parse("<FlexQueryResponse><FlexStatements>")

        assert exc_info.value.code == ParseErrorCode.INVALID_RESPONSE

    def test_accepts_bytes_with_bom(self, flex_report_xml):
        report = IBKRParser().parse(b"\xef\xbb\xbf" + flex_report_xml)

        assert report.account_id == "U1234567"


class TestParseIbkrDate:
    """Tests for date normalization."""

    def test_compact_format(self):
        assert parse_ibkr_date("20240115") == date(2024, 1, 15)

    def test_iso_format(self):
        assert parse_ibkr_date("2024-01-15") == date(2024, 1, 15)

    def test_time_suffixes_are_dropped(self):
        assert parse_ibkr_date("20240115;103000") == date(2024, 1, 15)
        assert parse_ibkr_date("2024-01-15, 10:30:00") == date(2024, 1, 15)
        assert parse_ibkr_date("20240115 103000") == date(2024, 1, 15)

    def test_invalid_date_raises(self):
        with pytest.raises(ValueError):
            parse_ibkr_date("15/01/2024")
        with pytest.raises(ValueError):
            parse_ibkr_date("")


class TestCashTransactions:
    """Tests for cash transaction extraction and classification."""

    def test_extracts_rows_and_transfers(self, report):
        """Four valid cash rows plus two non-zero transfers; the broken row is skipped."""
        assert len(report.cash_transactions) == 6
        ids = {t.transaction_id for t in report.cash_transactions}
        assert "1005-U1234567" not in ids

    def test_ids_are_account_unique(self, report):
        ids = {t.transaction_id for t in report.cash_transactions}
        assert "1001-U1234567" in ids
        assert "2001-U1234567" in ids

    def test_deposit_is_classified(self, report):
        deposit = next(t for t in report.cash_transactions if t.transaction_id == "1001-U1234567")

        assert deposit.amount == Decimal("10000")
        assert deposit.date == date(2024, 1, 4)
        assert deposit.category == CashFlowCategory.DEPOSIT
        assert deposit.is_net_invested_flow is True
        assert deposit.level_of_detail == LevelOfDetail.DETAIL

    def test_dividend_is_not_net_invested(self, report):
        dividend = next(t for t in report.cash_transactions if t.transaction_id == "1002-U1234567")

        assert dividend.category == CashFlowCategory.DIVIDEND
        assert dividend.is_net_invested_flow is False

    def test_position_transfer_uses_base_value(self, report):
        """A transfer with no cash leg is valued by positionAmountInBase."""
        transfer = next(t for t in report.cash_transactions if t.transaction_id == "2002-U1234567")

        assert transfer.amount == Decimal("1500")
        assert transfer.description == "Transfer IN: ACATS"
        assert transfer.level_of_detail == LevelOfDetail.DETAIL
        assert transfer.is_net_invested_flow is True

    def test_transfers_are_kept(self, report):
        assert [t.transaction_id for t in report.transfers] == ["2001", "2002"]
        assert report.transfers[0].direction == "IN"

    def test_outgoing_transfer_is_withdrawal(self):
        xml = flex_document(
            '<Transfers><Transfer currency="USD" type="INTERNAL" direction="OUT" '
            'cashTransfer="-750" date="20240110" transactionID="9" /></Transfers>'
        )

        report = IBKRParser().parse(xml)

        assert len(report.cash_transactions) == 1
        transaction = report.cash_transactions[0]
        assert transaction.amount == Decimal("-750")
        assert transaction.category == CashFlowCategory.WITHDRAWAL
        assert transaction.account_id == "U7654321"

    def test_negative_deposit_becomes_withdrawal(self):
        xml = flex_document(
            '<CashTransactions><CashTransaction currency="USD" type="Deposits/Withdrawals" '
            'description="DISBURSEMENT" amount="-2000" dateTime="20240112" transactionID="77" />'
            "</CashTransactions>"
        )

        transaction = IBKRParser().parse(xml).cash_transactions[0]

        assert transaction.category == CashFlowCategory.WITHDRAWAL
        assert transaction.is_net_invested_flow is True


class TestOpenPositions:
    """Tests for position extraction."""

    def test_prefers_summary_rows_and_keeps_cash(self, report):
        """LOT rows are dropped; the DETAIL cash row is added back."""
        symbols = sorted(p.symbol for p in report.open_positions)

        assert symbols == ["AAPL", "AAPL  240216P00170000", "USD"]

    def test_summary_quantity_is_used(self, report):
        aapl = next(p for p in report.open_positions if p.symbol == "AAPL")

        assert aapl.quantity == Decimal("100")
        assert aapl.value == Decimal("18500")
        assert aapl.cost_basis_money == Decimal("15000")

    def test_option_details(self, report):
        option = next(p for p in report.open_positions if p.put_call)

        assert option.asset_category == AssetCategory.OPTION
        assert option.put_call == "P"
        assert option.strike == Decimal("170")
        assert option.multiplier == Decimal("100")
        assert option.quantity == Decimal("-1")

    def test_multiplier_from_position_without_metadata(self):
        xml = flex_document(
            '<OpenPositions><OpenPosition currency="USD" assetCategory="OPT" symbol="SPY P" '
            'position="-2" positionValue="-300" putCall="P" strike="400" multiplier="100" />'
            "</OpenPositions>"
        )

        position = IBKRParser().parse(xml).open_positions[0]

        assert position.multiplier == Decimal("100")

    def test_duplicates_keep_first_row(self):
        xml = flex_document(
            "<OpenPositions>"
            '<OpenPosition currency="USD" assetCategory="STK" symbol="MSFT" position="10" '
            'positionValue="4000" />'
            '<OpenPosition currency="USD" assetCategory="STK" symbol="MSFT" position="5" '
            'positionValue="2000" />'
            "</OpenPositions>"
        )

        positions = IBKRParser().parse(xml).open_positions

        assert len(positions) == 1
        assert positions[0].quantity == Decimal("10")

    def test_synthesizes_cash_from_nav(self):
        """Without a cash line, the latest NAV cash becomes a CASH position."""
        xml = flex_document(
            '<OpenPositions><OpenPosition currency="USD" assetCategory="STK" symbol="MSFT" '
            'position="10" positionValue="4000" levelOfDetail="SUMMARY" /></OpenPositions>'
            "<EquitySummaryInBase>"
            '<EquitySummaryByReportDateInBase reportDate="20240102" cash="100" total="4100" />'
            '<EquitySummaryByReportDateInBase reportDate="20240103" cash="2500" total="6500" />'
            "</EquitySummaryInBase>"
        )

        positions = IBKRParser().parse(xml).open_positions

        cash = next(p for p in positions if p.symbol == "CASH")
        assert cash.value == Decimal("2500")
        assert cash.asset_category == AssetCategory.CASH

    def test_no_synthetic_cash_when_cash_exists(self, report):
        assert not any(p.symbol == "CASH" for p in report.open_positions)


class TestEquitySummary:
    """Tests for NAV snapshot extraction across layouts."""

    def test_snapshots_are_sorted(self, report):
        dates = [e.report_date for e in report.equity_summary]

        assert dates == [date(2024, 1, 2), date(2024, 1, 3), date(2024, 1, 4), date(2024, 1, 5)]
        assert report.equity_summary[0].total == Decimal("20000")
        assert report.equity_summary[0].cash == Decimal("5000")
        assert report.equity_summary[0].account_id == "U1234567"

    def test_flat_layout(self):
        xml = flex_document(
            "<EquitySummaryByReportDateInBase>"
            '<EquitySummaryByReportDateInBase reportDate="20240105" total="1500" />'
            "</EquitySummaryByReportDateInBase>"
        )

        summaries = IBKRParser().parse(xml).equity_summary

        assert len(summaries) == 1
        assert summaries[0].total == Decimal("1500")
        assert summaries[0].account_id == "U7654321"

    def test_nested_layout_wins_over_flat(self):
        xml = flex_document(
            '<EquitySummaryInBase currency="EUR">'
            '<EquitySummaryByReportDateInBase reportDate="20240105" total="1000" />'
            "</EquitySummaryInBase>"
            "<EquitySummaryByReportDateInBase>"
            '<EquitySummaryByReportDateInBase reportDate="20240105" total="9999" />'
            "</EquitySummaryByReportDateInBase>"
        )
        statement = IBKRParser.load_document(xml).find(".//FlexStatement")

        nav_rows = IBKRParser.select_nav_rows(statement)
        summaries = IBKRParser.extract_equity_summary(statement)

        assert nav_rows.shape == NavShape.IN_BASE
        assert [s.total for s in summaries] == [Decimal("1000")]
        assert summaries[0].currency == "EUR"

    def test_net_asset_value_layout(self):
        xml = flex_document(
            "<NetAssetValue>"
            '<NetAssetValue reportDate="2024-01-08" netLiquidation="12500.50" />'
            "</NetAssetValue>"
        )

        summaries = IBKRParser().parse(xml).equity_summary

        assert summaries[0].report_date == date(2024, 1, 8)
        assert summaries[0].total == Decimal("12500.50")

    def test_bad_nav_row_is_skipped(self):
        xml = flex_document(
            "<EquitySummaryInBase>"
            '<EquitySummaryByReportDateInBase reportDate="not-a-date" total="1" />'
            '<EquitySummaryByReportDateInBase reportDate="20240105" total="2" />'
            "</EquitySummaryInBase>"
        )

        summaries = IBKRParser().parse(xml).equity_summary

        assert [s.total for s in summaries] == [Decimal("2")]


class TestReportMetadata:
    """Tests for cash reports, securities and statement metadata."""

    def test_cash_reports_skip_base_summary(self, report):
        currencies = [c.currency for c in report.cash_reports]

        assert currencies == ["USD", "EUR"]
        usd = report.cash_reports[0]
        assert usd.total_cash == Decimal("5000")
        assert usd.settled_cash == Decimal("4900")
        assert usd.accrued_cash == Decimal("3")

    def test_securities_info(self, report):
        multipliers = {s.symbol: s.multiplier for s in report.securities_info}

        assert multipliers == {"AAPL": Decimal("1"), "AAPL  240216P00170000": Decimal("100")}

    def test_statement_metadata(self, report):
        assert report.account_id == "U1234567"
        assert report.base_currency == "USD"
        assert report.from_date == date(2024, 1, 2)
        assert report.to_date == date(2024, 1, 5)
        assert report.has_data

    def test_extract_date_range(self, flex_report_xml):
        assert IBKRParser().extract_date_range(flex_report_xml) == (
            date(2024, 1, 2),
            date(2024, 1, 5),
        )

    def test_empty_statement_has_no_data(self):
        report = IBKRParser().parse(flex_document(""))

        assert report.has_data is False
        assert report.account_id == "U7654321"
