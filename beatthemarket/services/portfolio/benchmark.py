"""Benchmark "what if" simulation and collateral adjustment."""

import logging
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from beatthemarket.constants import DepositType
from beatthemarket.services.portfolio.assets import collateral_value
from beatthemarket.services.portfolio.portfolio_types import (
    Asset,
    ComparisonPoint,
    Deposit,
    PricePoint,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_short_put_collateral(
    assets: list[Asset], fx_rates: dict[str, Decimal], base_currency: str
) -> Decimal:
    """Total collateral required by all holdings, in base currency."""
    return sum(
        (collateral_value(asset, base_currency, fx_rates) for asset in assets), Decimal("0")
    )


def synthesize_collateral_deposit(
    deposits: list[Deposit], required_collateral: Decimal, base_currency: str
) -> list[Deposit]:
    """
    Prepend an Adjustment deposit when collateral exceeds net deposits.

    Short puts tie up capital that the deposit history may not show; the
    shortfall is treated as invested from the first deposit date on.

    Returns:
        New list of deposits (the input is returned unchanged when covered)
    """
    net_deposits = sum((d.amount for d in deposits), Decimal("0"))
    if required_collateral <= net_deposits:
        return deposits

    shortfall = required_collateral - net_deposits
    first_date = deposits[0].date if deposits else date.today()
    logger.info(f"Adding collateral adjustment of {shortfall} {base_currency} at {first_date}")

    synthetic = Deposit(
        date=first_date,
        amount=shortfall,
        original_amount=shortfall,
        currency=base_currency,
        description="Synthetic Collateral Adjustment",
        type=DepositType.ADJUSTMENT,
        transaction_id="SYNTHETIC_COLLATERAL",
    )
    return [synthetic, *deposits]


def calculate_comparison(
    deposits: list[Deposit], benchmark_prices: list[PricePoint]
) -> list[ComparisonPoint]:
    """
    Replay deposits against benchmark prices.

    Every deposit dated on or before a price date buys benchmark units at that
    day's close, so deposits on non-trading days buy at the next close.
    Deposits after the last price date are not represented.

    Args:
        deposits: Deposits in the reference currency
        benchmark_prices: Benchmark closes in the same currency

    Returns:
        One ComparisonPoint per price date (portfolio_value left at zero)
    """
    ordered_deposits = sorted(deposits, key=lambda d: d.date)
    ordered_prices = sorted(benchmark_prices, key=lambda p: p.date)

    units = Decimal("0")
    invested = Decimal("0")
    index = 0
    result = []

    for price in ordered_prices:
        while index < len(ordered_deposits) and ordered_deposits[index].date <= price.date:
            deposit = ordered_deposits[index]
            if price.close > 0:
                units += deposit.amount / price.close
            invested += deposit.amount
            index += 1

        result.append(
            ComparisonPoint(
                date=price.date,
                benchmark_value=round_money(units * price.close),
                total_invested=round_money(invested),
            )
        )

    if index < len(ordered_deposits):
        logger.info(
            f"{len(ordered_deposits) - index} deposits fall after the last benchmark price "
            f"and are not simulated"
        )
    return result
