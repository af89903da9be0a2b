"""Application constants to avoid magic strings."""

import re


class AssetCategory:
    """Raw IBKR asset category codes."""

    CASH = "CASH"
    STOCK = "STK"
    OPTION = "OPT"
    INDEX_OPTION = "IOPT"
    FUTURE = "FUT"


class AssetClass:
    """Provider-neutral asset classes."""

    STOCK = "STOCK"
    OPTION = "OPTION"
    CASH = "CASH"


class CashFlowCategory:
    """Semantic categories for cash transactions."""

    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    DIVIDEND = "DIVIDEND"
    INTEREST = "INTEREST"
    FEE = "FEE"
    OTHER = "OTHER"


class CashFlowType:
    """Direction of a unified cash flow."""

    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"


class LevelOfDetail:
    """IBKR levelOfDetail values."""

    SUMMARY = "SUMMARY"
    DETAIL = "DETAIL"


class DepositType:
    """Types tagging synthetic deposits."""

    SYNTHETIC = "Synthetic"
    ADJUSTMENT = "Adjustment"


class Provider:
    """Provider labels used in portfolio metadata."""

    IBKR = "IBKR"
    MERGED = "MERGED"
    EMPTY = "EMPTY"


class AllocationClass:
    """Top-level asset allocation buckets."""

    EQUITIES = "EQUITIES"
    FIXED_INCOME = "FIXED INCOME"
    COMMODITIES = "COMMODITIES"
    CASH = "CASH"


class Currency:
    """Common currency constants."""

    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    AUD = "AUD"
    NZD = "NZD"


OTHERS = "Others"
UNKNOWN_ACCOUNT = "Unknown"
CASH_SYMBOL = "CASH"
DEFAULT_OPTION_MULTIPLIER = 100

# Symbols treated as currency balances rather than tradable tickers
CURRENCY_SYMBOLS = frozenset(
    ["USD", "SGD", "EUR", "GBP", "AUD", "CAD", "CHF", "CNY", "CNH", "HKD", "JPY", "KRW", "NZD"]
)

CURRENCY_CODE_PATTERN = re.compile(r"^[A-Z]{3}$")

# Error messages returned for unusable report documents
NOT_XML_MESSAGE = (
    'Received data is not XML. Please ensure your Flex Query format is set to "XML" '
    "in IBKR Settings."
)
INCORRECT_FORMAT_MESSAGE = (
    "Incorrect XML Format. You uploaded the Query Definition, not the Report."
)
INVALID_RESPONSE_MESSAGE = "Invalid IBKR XML. Expected FlexQueryResponse."
