"""Tests for cash-flow classification."""

from datetime import date
from decimal import Decimal

import pytest

from beatthemarket.constants import CashFlowCategory, LevelOfDetail
from beatthemarket.services.cash_flow_classifier import CashFlowClassifier
from tests.conftest import make_transaction

DAY = date(2024, 3, 1)


class TestClassify:
    """Tests for keyword classification."""

    @pytest.mark.parametrize(
        "type_,description",
        [
            ("Deposits/Withdrawals", "CASH RECEIPTS / ELECTRONIC FUND TRANSFERS"),
            ("Deposits", "Wire in"),
            ("Transfer", "Internal transfer from U2"),
        ],
    )
    def test_capital_types_are_net_invested(self, type_, description):
        result = CashFlowClassifier.classify(type_, description)

        assert result.category == CashFlowCategory.DEPOSIT
        assert result.is_net_invested_flow is True

    @pytest.mark.parametrize(
        "description",
        [
            "Option Exercise proceeds",
            "Assignment of AAPL put",
            "Expiration cash adjustment",
            "Cash in Lieu of fractional shares",
        ],
    )
    def test_option_lifecycle_overrides_deposit_wording(self, description):
        result = CashFlowClassifier.classify("Deposits/Withdrawals", description)

        assert result.category == CashFlowCategory.OTHER
        assert result.is_net_invested_flow is False

    def test_income_and_fees(self):
        assert CashFlowClassifier.classify("Dividends", "").category == CashFlowCategory.DIVIDEND
        assert (
            CashFlowClassifier.classify("Withholding Tax", "").category
            == CashFlowCategory.DIVIDEND
        )
        assert (
            CashFlowClassifier.classify("Broker Interest Received", "").category
            == CashFlowCategory.INTEREST
        )
        assert CashFlowClassifier.classify("Other Fees", "").category == CashFlowCategory.FEE
        assert CashFlowClassifier.classify("Commission Adjustments", "").category == (
            CashFlowCategory.FEE
        )
        assert CashFlowClassifier.classify("Payment In Lieu", "").category == (
            CashFlowCategory.OTHER
        )

    def test_signed_withdrawal(self):
        result = CashFlowClassifier.classify_signed(
            "Deposits/Withdrawals", "Disbursement", Decimal("-100")
        )

        assert result.category == CashFlowCategory.WITHDRAWAL
        assert result.is_net_invested_flow is True

    def test_signed_only_touches_deposits(self):
        result = CashFlowClassifier.classify_signed("Other Fees", "Data fee", Decimal("-10"))

        assert result.category == CashFlowCategory.FEE


class TestIsCapitalFlow:
    """Tests for deposit identification rules."""

    def test_plain_deposit(self):
        assert CashFlowClassifier.is_capital_flow(make_transaction("1000", DAY, "1"))

    def test_summary_rows_are_ignored(self):
        transaction = make_transaction("1000", DAY, level_of_detail=LevelOfDetail.SUMMARY)

        assert CashFlowClassifier.is_capital_flow(transaction) is False

    def test_dividend_mentioning_transfer_is_ignored(self):
        transaction = make_transaction(
            "50", DAY, type_="Dividends", description="Dividend transfer from fund"
        )

        assert CashFlowClassifier.is_capital_flow(transaction) is False

    def test_interest_with_deposit_type_is_ignored(self):
        transaction = make_transaction("5", DAY, description="Credit interest on deposit")

        assert CashFlowClassifier.is_capital_flow(transaction) is False

    def test_option_assignment_is_ignored(self):
        transaction = make_transaction("17000", DAY, description="Assignment settlement")

        assert CashFlowClassifier.is_capital_flow(transaction) is False

    def test_internal_transfer_type(self):
        transaction = make_transaction("500", DAY, type_="INTERNAL", description="Transfer IN")

        assert CashFlowClassifier.is_capital_flow(transaction) is True

    def test_zero_amount_transfer_is_ignored(self):
        transaction = make_transaction("0", DAY, type_="INTERNAL", description="Position move")

        assert CashFlowClassifier.is_capital_flow(transaction) is False

    def test_receipt_wording(self):
        transaction = make_transaction("250", DAY, type_="Other", description="Cash receipt")

        assert CashFlowClassifier.is_capital_flow(transaction) is True

    def test_internal_wording_is_not_receipt(self):
        transaction = make_transaction(
            "250", DAY, type_="Other", description="Internal transfer of shares"
        )

        assert CashFlowClassifier.is_capital_flow(transaction) is False

    def test_falls_back_to_net_invested_flag(self):
        flagged = make_transaction(
            "900", DAY, type_="ACATS", description="Inbound assets", is_net_invested_flow=True
        )
        unflagged = make_transaction("900", DAY, type_="ACATS", description="Inbound assets")

        assert CashFlowClassifier.is_capital_flow(flagged) is True
        assert CashFlowClassifier.is_capital_flow(unflagged) is False

    def test_internal_wording_overrides_net_invested_flag(self):
        """A flagged transfer between own sub-accounts is not new capital."""
        transaction = make_transaction(
            "400",
            DAY,
            type_="Account Transfer",
            description="Internal cash transfer to sub-account",
            is_net_invested_flow=True,
        )

        assert CashFlowClassifier.is_capital_flow(transaction) is False
