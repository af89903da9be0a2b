"""Shared test fixtures."""

from datetime import date
from decimal import Decimal
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from beatthemarket.main import app
from beatthemarket.rate_limiter import limiter
from beatthemarket.services.brokers.base_broker_parser import CashTransaction, EquitySummary
from beatthemarket.services.portfolio.portfolio_types import PricePoint

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def load_fixture(name: str) -> bytes:
    return (FIXTURES_DIR / name).read_bytes()


def make_transaction(
    amount: str,
    day: date,
    transaction_id: str | None = None,
    account_id: str = "U1",
    type_: str = "Deposits/Withdrawals",
    description: str = "Electronic Fund Transfer",
    currency: str = "USD",
    fx_rate: str = "1",
    **kwargs,
) -> CashTransaction:
    """Build a deposit-like cash transaction with sensible defaults."""
    return CashTransaction(
        amount=Decimal(amount),
        currency=currency,
        date=day,
        description=description,
        type=type_,
        transaction_id=transaction_id,
        fx_rate_to_base=Decimal(fx_rate),
        account_id=account_id,
        **kwargs,
    )


def make_nav(day: date, total: str, account_id: str = "U1", currency: str = "USD") -> EquitySummary:
    return EquitySummary(
        report_date=day, total=Decimal(total), currency=currency, account_id=account_id
    )


def make_prices(closes: dict[date, str]) -> list[PricePoint]:
    return [PricePoint(day, Decimal(close)) for day, close in sorted(closes.items())]


# Benchmark closes over the fixture report period
SPY_CLOSES = make_prices(
    {
        date(2024, 1, 2): "100",
        date(2024, 1, 3): "101",
        date(2024, 1, 4): "102",
        date(2024, 1, 5): "104",
    }
)


@pytest.fixture
def flex_report_xml() -> bytes:
    return load_fixture("flex_report.xml")


@pytest.fixture
def mock_market_data():
    """MarketDataService stand-in returning no prices and no profiles."""
    market_data = MagicMock()
    market_data.get_prices.return_value = []
    market_data.get_profiles.return_value = {}
    return market_data


@pytest.fixture
def client():
    """Test client with a clean rate limiter."""
    limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
