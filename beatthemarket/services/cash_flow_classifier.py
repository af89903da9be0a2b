"""Cash-flow classification.

Decides what a raw cash movement means for performance analysis: whether it is
investor capital (deposit/withdrawal) or portfolio income/expense.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from beatthemarket.constants import CashFlowCategory, LevelOfDetail
from beatthemarket.services.brokers.base_broker_parser import CashTransaction

logger = logging.getLogger(__name__)

CAPITAL_TYPE_KEYWORDS = ("deposit", "withdrawal", "transfer")
OPTION_LIFECYCLE_KEYWORDS = ("exercise", "assignment", "expiration", "cash in lieu")
INCOME_DESCRIPTION_KEYWORDS = ("dividend", "interest")
INCOME_TYPES = ("Dividends", "Broker Interest Paid")
TRANSFER_TYPES = ("INTERNAL", "Transfer")
DEPOSIT_TYPES = ("Deposits/Withdrawals", "Deposits")


@dataclass(frozen=True)
class Classification:
    """Result of classifying a cash movement."""

    category: str
    is_net_invested_flow: bool


class CashFlowClassifier:
    """Keyword-driven classifier for broker cash transactions."""

    @staticmethod
    def classify(type_: str, description: str) -> Classification:
        """
        Classify a transaction by its type and description.

        Args:
            type_: Broker transaction type (e.g., "Deposits/Withdrawals")
            description: Free-text description

        Returns:
            Classification with category and net-invested flag
        """
        t = (type_ or "").lower()
        d = (description or "").lower()

        if any(keyword in t for keyword in CAPITAL_TYPE_KEYWORDS):
            # Option exercise/assignment cash must not look like investor capital
            if any(keyword in d for keyword in OPTION_LIFECYCLE_KEYWORDS):
                return Classification(CashFlowCategory.OTHER, False)
            return Classification(CashFlowCategory.DEPOSIT, True)

        if "dividend" in t or "withholding tax" in t:
            return Classification(CashFlowCategory.DIVIDEND, False)
        if "interest" in t:
            return Classification(CashFlowCategory.INTEREST, False)
        if "fee" in t or "commission" in t:
            return Classification(CashFlowCategory.FEE, False)

        return Classification(CashFlowCategory.OTHER, False)

    @staticmethod
    def classify_signed(type_: str, description: str, amount: Decimal) -> Classification:
        """Classify and then reflect the realized direction of the amount."""
        result = CashFlowClassifier.classify(type_, description)
        if result.category == CashFlowCategory.DEPOSIT and amount < 0:
            return Classification(CashFlowCategory.WITHDRAWAL, result.is_net_invested_flow)
        return result

    @staticmethod
    def is_capital_flow(transaction: CashTransaction) -> bool:
        """
        Decide whether a transaction is an investor-initiated capital flow.

        Summary rows, option lifecycle cash, dividends and interest are never
        capital flows, even when their wording mentions deposits or transfers.

        Args:
            transaction: Classified cash transaction

        Returns:
            True if the transaction moves investor capital in or out
        """
        if transaction.level_of_detail == LevelOfDetail.SUMMARY:
            return False

        desc = (transaction.description or "").lower()
        type_ = transaction.type or ""
        nonzero = transaction.amount != 0

        if any(keyword in desc for keyword in INCOME_DESCRIPTION_KEYWORDS):
            return False
        if type_ in INCOME_TYPES:
            return False
        if any(keyword in desc for keyword in OPTION_LIFECYCLE_KEYWORDS):
            return False

        if type_ in TRANSFER_TYPES and nonzero:
            return True
        if "deposit" in desc or "withdrawal" in desc:
            return True
        if type_ in DEPOSIT_TYPES and nonzero:
            return True
        if "internal" in desc:
            return False
        if ("receipt" in desc or "transfer" in desc) and nonzero:
            return True
        return transaction.is_net_invested_flow and nonzero
