"""Value objects for unified portfolios and performance results."""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from beatthemarket.services.brokers.base_broker_parser import CashTransaction


@dataclass(frozen=True)
class Asset:
    """Provider-neutral holding."""

    symbol: str
    asset_class: str  # STOCK, OPTION, CASH
    quantity: Decimal
    market_value: Decimal
    currency: str
    description: str | None = None
    original_currency: str | None = None
    cost_basis: Decimal = Decimal("0")
    # Per-unit prices stay in the original currency after conversion
    original_mark_price: Decimal | None = None
    original_cost_basis_price: Decimal | None = None
    put_call: str | None = None
    strike: Decimal = Decimal("0")
    multiplier: Decimal = Decimal("1")


@dataclass(frozen=True)
class CashFlow:
    """Net-invested capital movement of a unified portfolio."""

    date: date
    amount: Decimal
    type: str  # DEPOSIT or WITHDRAWAL
    currency: str
    id: str | None = None
    description: str | None = None
    original_amount: Decimal | None = None
    original_currency: str | None = None


@dataclass(frozen=True)
class EquityPoint:
    """NAV of a portfolio on one date."""

    date: date
    nav: Decimal


@dataclass(frozen=True)
class SourceRef:
    """A distinct (provider, account) that contributed data."""

    provider: str
    account_id: str


@dataclass
class PortfolioMetadata:
    """Where a unified portfolio came from."""

    provider: str
    account_id: str | None = None
    as_of_date: date | None = None
    sources: list[SourceRef] = field(default_factory=list)


@dataclass
class UnifiedPortfolio:
    """Provider-agnostic portfolio: holdings, NAV history and capital flows."""

    assets: list[Asset]
    base_currency: str
    metadata: PortfolioMetadata
    equity_history: list[EquityPoint] = field(default_factory=list)
    cash_flows: list[CashFlow] = field(default_factory=list)
    transactions: list[CashTransaction] = field(default_factory=list)


@dataclass(frozen=True)
class Deposit:
    """Reconciled capital flow driving the benchmark simulation."""

    date: date
    amount: Decimal  # reference currency, signed
    original_amount: Decimal
    currency: str
    description: str
    type: str | None = None
    transaction_id: str | None = None


@dataclass(frozen=True)
class PricePoint:
    """Daily closing price."""

    date: date
    close: Decimal


@dataclass
class ComparisonPoint:
    """One benchmark trading day of the portfolio-vs-benchmark series."""

    date: date
    benchmark_value: Decimal
    total_invested: Decimal
    portfolio_value: Decimal = Decimal("0")


@dataclass
class PerformanceMetrics:
    """Money-weighted returns in percent."""

    mwr: Decimal = Decimal("0")
    annualized_mwr: Decimal = Decimal("0")
    benchmark_mwr: Decimal = Decimal("0")
    annualized_benchmark_mwr: Decimal = Decimal("0")
    alpha: Decimal = Decimal("0")
    annualized_alpha: Decimal = Decimal("0")


@dataclass
class ReconciliationResult:
    """Output of the reconciliation pipeline."""

    effective_deposits: list[Deposit]
    equity_map: dict[date, Decimal]
    warnings: list[str] = field(default_factory=list)
