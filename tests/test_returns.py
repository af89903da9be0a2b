"""Tests for money-weighted return metrics."""

from datetime import date
from decimal import Decimal

from beatthemarket.services.portfolio.portfolio_types import ComparisonPoint
from beatthemarket.services.portfolio.returns import (
    annualize,
    calculate_performance_metrics,
    modified_dietz,
)


def point(day: date, portfolio: str, benchmark: str, invested: str) -> ComparisonPoint:
    return ComparisonPoint(
        date=day,
        benchmark_value=Decimal(benchmark),
        total_invested=Decimal(invested),
        portfolio_value=Decimal(portfolio),
    )


class TestModifiedDietz:
    def test_growth_without_flows(self):
        assert modified_dietz(Decimal("10000"), Decimal("12000"), Decimal("0")) == Decimal("0.2")

    def test_flows_are_excluded_from_gain(self):
        # (16000 - 10000 - 5000) / (10000 + 2500)
        result = modified_dietz(Decimal("10000"), Decimal("16000"), Decimal("5000"))

        assert result == Decimal("0.08")

    def test_non_positive_denominator(self):
        assert modified_dietz(Decimal("0"), Decimal("500"), Decimal("0")) == Decimal("0")
        assert modified_dietz(Decimal("100"), Decimal("0"), Decimal("-400")) == Decimal("0")


class TestAnnualize:
    def test_short_span_is_not_annualized(self):
        assert annualize(Decimal("0.1"), 30, min_days=30) == Decimal("0")

    def test_total_loss_is_not_annualized(self):
        assert annualize(Decimal("-1"), 400, min_days=30) == Decimal("0")

    def test_one_year_is_unchanged(self):
        result = annualize(Decimal("0.2"), 365, min_days=30)

        assert abs(result - Decimal("0.2")) < Decimal("0.001")

    def test_two_years_compound(self):
        result = annualize(Decimal("0.21"), 730, min_days=30)

        assert abs(result - Decimal("0.1")) < Decimal("0.001")


class TestPerformanceMetrics:
    """Tests for metrics over a comparison series."""

    def test_twenty_percent_gain_over_short_span(self):
        comparison = [
            point(date(2024, 1, 2), "10000", "10000", "10000"),
            point(date(2024, 1, 20), "12000", "11000", "10000"),
        ]

        metrics = calculate_performance_metrics(comparison)

        assert metrics.mwr == Decimal("20.0")
        assert metrics.benchmark_mwr == Decimal("10.0")
        assert metrics.alpha == Decimal("10.0")
        assert metrics.annualized_mwr == Decimal("0")
        assert metrics.annualized_alpha == Decimal("0")

    def test_annualized_over_a_year(self):
        comparison = [
            point(date(2023, 1, 2), "10000", "10000", "10000"),
            point(date(2024, 1, 2), "12000", "10000", "10000"),
        ]

        metrics = calculate_performance_metrics(comparison)

        assert abs(metrics.annualized_mwr - Decimal("20")) < Decimal("0.1")
        assert metrics.annualized_benchmark_mwr == Decimal("0")

    def test_needs_two_points(self):
        metrics = calculate_performance_metrics([point(date(2024, 1, 2), "1", "1", "1")])

        assert metrics.mwr == Decimal("0")
        assert metrics.alpha == Decimal("0")
