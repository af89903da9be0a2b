"""Pydantic schemas for portfolio analysis."""

from datetime import date

from pydantic import BaseModel, Field, field_validator

from beatthemarket.config import settings
from beatthemarket.services.brokers.base_broker_parser import ParsedReport
from beatthemarket.services.portfolio.allocator import AllocationBucket
from beatthemarket.services.portfolio_analysis_service import PortfolioAnalysis


class PortfolioAnalysisRequest(BaseModel):
    """Sources to analyze and the currency to report in."""

    token: str | None = Field(None, description="IBKR Flex Web Service token")
    query_id: str | None = Field(None, description="One or more comma-separated Flex Query IDs")
    manual_documents: list[str] = Field(
        default_factory=list, description="Raw Flex XML documents uploaded by the user"
    )
    manual_reports: list[ParsedReport] = Field(
        default_factory=list, description="Reports returned earlier by /api/reports/parse"
    )
    display_currency: str = Field(
        default_factory=lambda: settings.default_display_currency, min_length=3, max_length=3
    )

    @field_validator("display_currency")
    @classmethod
    def uppercase_currency(cls, value: str) -> str:
        return value.upper()


class ComparisonPointResponse(BaseModel):
    date: date
    portfolio_value: float
    benchmark_value: float
    total_invested: float


class PerformanceMetricsResponse(BaseModel):
    """Money-weighted returns in percent."""

    mwr: float = 0.0
    annualized_mwr: float = 0.0
    benchmark_mwr: float = 0.0
    annualized_benchmark_mwr: float = 0.0
    alpha: float = 0.0
    annualized_alpha: float = 0.0


class SummaryResponse(BaseModel):
    net_worth: float
    total_deposited: float
    benchmark_value: float
    metrics: PerformanceMetricsResponse


class HoldingResponse(BaseModel):
    """A holding valued in the display currency."""

    symbol: str
    description: str | None = None
    asset_class: str
    quantity: float
    market_value: float
    currency: str
    original_currency: str | None = None
    cost_basis: float = 0.0
    original_mark_price: float | None = None
    original_cost_basis_price: float | None = None
    put_call: str | None = None
    strike: float = 0.0
    multiplier: float = 1.0


class AllocationBucketResponse(BaseModel):
    name: str
    value: float


class CategoriesResponse(BaseModel):
    asset: list[AllocationBucketResponse] = []
    sector: list[AllocationBucketResponse] = []
    industry: list[AllocationBucketResponse] = []
    geo: list[AllocationBucketResponse] = []
    ticker: list[AllocationBucketResponse] = []


class DepositResponse(BaseModel):
    """Effective deposit after reconciliation (synthetic entries carry a type)."""

    date: date
    amount: float
    original_amount: float
    currency: str
    description: str
    type: str | None = None
    transaction_id: str | None = None


class SourceResponse(BaseModel):
    provider: str
    account_id: str


class PortfolioAnalysisResponse(BaseModel):
    """Schema for portfolio analysis responses."""

    display_currency: str
    comparison: list[ComparisonPointResponse]
    summary: SummaryResponse
    holdings: list[HoldingResponse]
    categories: CategoriesResponse
    effective_deposits: list[DepositResponse]
    sources: list[SourceResponse]
    warnings: list[str]

    @classmethod
    def from_analysis(cls, analysis: PortfolioAnalysis) -> "PortfolioAnalysisResponse":
        metrics = analysis.summary.metrics
        categories = analysis.categories

        return cls(
            display_currency=analysis.display_currency,
            comparison=[
                ComparisonPointResponse(
                    date=point.date,
                    portfolio_value=float(point.portfolio_value),
                    benchmark_value=float(point.benchmark_value),
                    total_invested=float(point.total_invested),
                )
                for point in analysis.comparison
            ],
            summary=SummaryResponse(
                net_worth=float(analysis.summary.net_worth),
                total_deposited=float(analysis.summary.total_deposited),
                benchmark_value=float(analysis.summary.benchmark_value),
                metrics=PerformanceMetricsResponse(
                    mwr=float(metrics.mwr),
                    annualized_mwr=float(metrics.annualized_mwr),
                    benchmark_mwr=float(metrics.benchmark_mwr),
                    annualized_benchmark_mwr=float(metrics.annualized_benchmark_mwr),
                    alpha=float(metrics.alpha),
                    annualized_alpha=float(metrics.annualized_alpha),
                ),
            ),
            holdings=[
                HoldingResponse(
                    symbol=asset.symbol,
                    description=asset.description,
                    asset_class=asset.asset_class,
                    quantity=float(asset.quantity),
                    market_value=float(asset.market_value),
                    currency=asset.currency,
                    original_currency=asset.original_currency,
                    cost_basis=float(asset.cost_basis),
                    original_mark_price=_optional_float(asset.original_mark_price),
                    original_cost_basis_price=_optional_float(asset.original_cost_basis_price),
                    put_call=asset.put_call,
                    strike=float(asset.strike),
                    multiplier=float(asset.multiplier),
                )
                for asset in analysis.holdings
            ],
            categories=CategoriesResponse(
                asset=_buckets(categories.asset),
                sector=_buckets(categories.sector),
                industry=_buckets(categories.industry),
                geo=_buckets(categories.geo),
                ticker=_buckets(categories.ticker),
            ),
            effective_deposits=[
                DepositResponse(
                    date=deposit.date,
                    amount=float(deposit.amount),
                    original_amount=float(deposit.original_amount),
                    currency=deposit.currency,
                    description=deposit.description,
                    type=deposit.type,
                    transaction_id=deposit.transaction_id,
                )
                for deposit in analysis.effective_deposits
            ],
            sources=[
                SourceResponse(provider=s.provider, account_id=s.account_id)
                for s in analysis.sources
            ],
            warnings=analysis.warnings,
        )


def _optional_float(value) -> float | None:
    return float(value) if value is not None else None


def _buckets(buckets: list[AllocationBucket]) -> list[AllocationBucketResponse]:
    return [AllocationBucketResponse(name=b.name, value=float(b.value)) for b in buckets]
