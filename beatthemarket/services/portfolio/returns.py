"""Money-weighted return (Modified Dietz) for portfolio and benchmark."""

from decimal import Decimal

from beatthemarket.config import settings
from beatthemarket.services.portfolio.portfolio_types import ComparisonPoint, PerformanceMetrics

HUNDRED = Decimal("100")
DAYS_PER_YEAR = 365.25


def modified_dietz(start_value: Decimal, end_value: Decimal, net_flow: Decimal) -> Decimal:
    """(end - start - flow) / (start + flow / 2); zero when the denominator is not positive."""
    denominator = start_value + net_flow / 2
    if denominator <= 0:
        return Decimal("0")
    return (end_value - start_value - net_flow) / denominator


def annualize(rate: Decimal, days: int, min_days: int | None = None) -> Decimal:
    """Compound a period return to a yearly rate; zero for short spans or total loss."""
    if min_days is None:
        min_days = settings.annualization_min_days
    if days <= min_days or rate <= -1:
        return Decimal("0")
    annual = (1 + float(rate)) ** (DAYS_PER_YEAR / days) - 1
    return Decimal(str(annual))


def calculate_performance_metrics(
    comparison: list[ComparisonPoint], min_days: int | None = None
) -> PerformanceMetrics:
    """
    Compute MWR, annualized MWR and alpha from the first and last points.

    Portfolio and benchmark share the same net flow, since the benchmark
    replays the same deposits.

    Args:
        comparison: Comparison series sorted by date
        min_days: Minimum span before annualizing

    Returns:
        PerformanceMetrics in percent
    """
    if len(comparison) < 2:
        return PerformanceMetrics()

    start, end = comparison[0], comparison[-1]
    net_flow = end.total_invested - start.total_invested

    mwr = modified_dietz(start.portfolio_value, end.portfolio_value, net_flow)
    benchmark_mwr = modified_dietz(start.benchmark_value, end.benchmark_value, net_flow)

    days = (end.date - start.date).days
    annualized_mwr = annualize(mwr, days, min_days)
    annualized_benchmark_mwr = annualize(benchmark_mwr, days, min_days)

    return PerformanceMetrics(
        mwr=mwr * HUNDRED,
        annualized_mwr=annualized_mwr * HUNDRED,
        benchmark_mwr=benchmark_mwr * HUNDRED,
        annualized_benchmark_mwr=annualized_benchmark_mwr * HUNDRED,
        alpha=(mwr - benchmark_mwr) * HUNDRED,
        annualized_alpha=(annualized_mwr - annualized_benchmark_mwr) * HUNDRED,
    )
