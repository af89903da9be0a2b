"""Asset normalization and collateral estimation."""

from decimal import Decimal

from beatthemarket.constants import (
    CASH_SYMBOL,
    DEFAULT_OPTION_MULTIPLIER,
    AssetCategory,
    AssetClass,
)
from beatthemarket.services.brokers.base_broker_parser import CashReport, OpenPosition
from beatthemarket.services.portfolio.portfolio_types import Asset

OPTION_CATEGORIES = (AssetCategory.OPTION, AssetCategory.INDEX_OPTION, AssetClass.OPTION)


class AssetFactory:
    """Maps raw broker positions into provider-neutral assets."""

    @staticmethod
    def normalize_category(raw_category: str | None) -> str:
        """Map a broker asset category to STOCK, OPTION or CASH."""
        if raw_category in OPTION_CATEGORIES:
            return AssetClass.OPTION
        if raw_category == AssetCategory.CASH:
            return AssetClass.CASH
        return AssetClass.STOCK

    @staticmethod
    def from_position(position: OpenPosition) -> Asset:
        asset_class = AssetFactory.normalize_category(position.asset_category)
        if position.symbol == CASH_SYMBOL:
            asset_class = AssetClass.CASH

        return Asset(
            symbol=position.symbol,
            description=position.symbol,
            asset_class=asset_class,
            quantity=position.quantity,
            market_value=position.value,
            currency=position.currency,
            original_currency=position.currency,
            cost_basis=position.cost_basis_money,
            original_mark_price=position.mark_price,
            original_cost_basis_price=position.cost_basis_price,
            put_call=position.put_call,
            strike=position.strike,
            multiplier=position.multiplier,
        )

    @staticmethod
    def from_cash_report(report: CashReport) -> Asset:
        return Asset(
            symbol=report.currency,
            description=f"Cash ({report.currency})",
            asset_class=AssetClass.CASH,
            quantity=report.total_cash,
            market_value=report.total_cash,
            currency=report.currency,
            original_currency=report.currency,
            cost_basis=report.total_cash,
        )


def collateral_value(asset: Asset, base_currency: str, fx_rates: dict[str, Decimal]) -> Decimal:
    """
    Required collateral of a holding, in base currency.

    Only short puts require collateral (strike x multiplier x contracts); every
    other instrument reports zero.

    Args:
        asset: Holding to evaluate
        base_currency: Currency of the result
        fx_rates: Currency -> rate into base currency

    Returns:
        Collateral amount in base currency
    """
    match asset.asset_class:
        case AssetClass.OPTION if asset.quantity < 0 and asset.put_call == "P":
            multiplier = asset.multiplier or Decimal(DEFAULT_OPTION_MULTIPLIER)
            collateral = asset.strike * multiplier * abs(asset.quantity)
            currency = asset.original_currency or asset.currency
            rate = Decimal("1")
            if currency != base_currency:
                rate = fx_rates.get(currency, Decimal("1"))
            return collateral * rate
        case _:
            return Decimal("0")
