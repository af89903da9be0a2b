"""Base class for broker report parsers.

This module defines the normalized report records and the abstract interface
that every broker-specific parser implements. The parser registry uses this
interface to work with different broker types uniformly.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from beatthemarket.constants import UNKNOWN_ACCOUNT, CashFlowCategory


@dataclass(frozen=True)
class CashTransaction:
    """A classified cash movement from a broker statement."""

    amount: Decimal
    currency: str
    date: date
    description: str
    type: str
    transaction_id: str | None = None
    fx_rate_to_base: Decimal = Decimal("1")
    level_of_detail: str | None = None
    account_id: str = UNKNOWN_ACCOUNT
    category: str = CashFlowCategory.OTHER
    is_net_invested_flow: bool = False

    @property
    def dedup_key(self) -> tuple:
        """Composite identity: (id, account) else (date, amount, description, account)."""
        if self.transaction_id:
            return (self.transaction_id, self.account_id)
        return (self.date, self.amount, self.description, self.account_id)


@dataclass(frozen=True)
class Transfer:
    """Position or cash transfer between accounts."""

    transaction_id: str | None
    type: str
    direction: str  # IN or OUT
    amount: Decimal
    date: date
    currency: str
    account_id: str = UNKNOWN_ACCOUNT
    fx_rate_to_base: Decimal = Decimal("1")


@dataclass(frozen=True)
class OpenPosition:
    """Open position line from a statement."""

    symbol: str
    quantity: Decimal
    value: Decimal
    currency: str
    asset_category: str | None = None
    cost_basis_money: Decimal = Decimal("0")
    cost_basis_price: Decimal = Decimal("0")
    mark_price: Decimal = Decimal("0")
    level_of_detail: str | None = None
    put_call: str | None = None  # P or C
    strike: Decimal = Decimal("0")
    expiry: str | None = None
    multiplier: Decimal = Decimal("1")


@dataclass(frozen=True)
class EquitySummary:
    """One NAV snapshot for one account on one date."""

    report_date: date
    total: Decimal
    cash: Decimal = Decimal("0")
    currency: str = "USD"
    account_id: str = UNKNOWN_ACCOUNT


@dataclass(frozen=True)
class CashReport:
    """Per-currency cash balance."""

    currency: str
    total_cash: Decimal
    settled_cash: Decimal = Decimal("0")
    accrued_cash: Decimal = Decimal("0")


@dataclass(frozen=True)
class SecurityInfo:
    """Security reference data (used for option multipliers)."""

    symbol: str
    currency: str | None = None
    asset_category: str | None = None
    multiplier: Decimal = Decimal("1")
    description: str | None = None


@dataclass
class ParsedReport:
    """Complete parsed content of one broker report document."""

    base_currency: str = "USD"
    account_id: str | None = None
    from_date: date | None = None
    to_date: date | None = None
    cash_transactions: list[CashTransaction] = field(default_factory=list)
    transfers: list[Transfer] = field(default_factory=list)
    open_positions: list[OpenPosition] = field(default_factory=list)
    equity_summary: list[EquitySummary] = field(default_factory=list)
    cash_reports: list[CashReport] = field(default_factory=list)
    securities_info: list[SecurityInfo] = field(default_factory=list)

    @property
    def has_data(self) -> bool:
        """Whether the report carries anything usable for analysis."""
        return bool(self.cash_transactions or self.equity_summary or self.open_positions)


class BaseBrokerParser(ABC):
    """Abstract base class for all broker report parsers.

    Example usage:
        parser = IBKRParser()
        start, end = parser.extract_date_range(xml_bytes)
        report = parser.parse(xml_bytes)
    """

    @classmethod
    @abstractmethod
    def broker_type(cls) -> str:
        """Return the broker type identifier (e.g., 'ibkr')."""
        pass

    @classmethod
    @abstractmethod
    def broker_name(cls) -> str:
        """Return the human-readable broker name (e.g., 'Interactive Brokers')."""
        pass

    @classmethod
    @abstractmethod
    def supported_extensions(cls) -> list[str]:
        """Return the file extensions this parser accepts (e.g., ['.xml'])."""
        pass

    @classmethod
    def has_api(cls) -> bool:
        """Whether reports can also be fetched live from the broker."""
        return False

    @abstractmethod
    def extract_date_range(self, content: bytes | str) -> tuple[date | None, date | None]:
        """Return the (start, end) period covered by a document without a full parse."""
        pass

    @abstractmethod
    def parse(self, content: bytes | str) -> ParsedReport:
        """Parse a raw document into a ParsedReport.

        Raises:
            ReportParseError: If the document is not a usable report
        """
        pass
