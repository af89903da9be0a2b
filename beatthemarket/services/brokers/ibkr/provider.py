"""Mapping of parsed IBKR reports into unified portfolios."""

import logging
from decimal import Decimal

from beatthemarket.constants import (
    CASH_SYMBOL,
    AssetClass,
    CashFlowType,
    Provider,
)
from beatthemarket.services.brokers.base_broker_parser import CashTransaction, ParsedReport
from beatthemarket.services.brokers.ibkr.parser import IBKRParser
from beatthemarket.services.portfolio.assets import AssetFactory
from beatthemarket.services.portfolio.portfolio_types import (
    CashFlow,
    EquityPoint,
    PortfolioMetadata,
    SourceRef,
    UnifiedPortfolio,
)

logger = logging.getLogger(__name__)

MIN_CASH_BALANCE = Decimal("0.01")
LEGACY_DEPOSIT_KEYWORDS = ("Deposit", "Withdrawal", "Electronic Fund Transfer")


def _is_net_invested(transaction: CashTransaction) -> bool:
    if transaction.is_net_invested_flow or transaction.type == "Transfer":
        return True
    return transaction.type == "Deposits/Withdrawals" and any(
        keyword in (transaction.description or "") for keyword in LEGACY_DEPOSIT_KEYWORDS
    )


class IbkrProvider:
    """Builds UnifiedPortfolio objects from IBKR Flex reports."""

    name = "Interactive Brokers XML"

    def __init__(self, parser: IBKRParser | None = None):
        self.parser = parser or IBKRParser()

    def parse(self, content: bytes | str, provider_label: str = Provider.IBKR) -> UnifiedPortfolio:
        """Parse a raw Flex document straight into a UnifiedPortfolio."""
        return IbkrProvider.to_unified(self.parser.parse(content), provider_label)

    @staticmethod
    def to_unified(report: ParsedReport, provider_label: str = Provider.IBKR) -> UnifiedPortfolio:
        """
        Map a parsed report to a UnifiedPortfolio.

        When per-currency cash reports exist they replace the generic cash
        position and every cash position in a reported currency, so cash is not
        counted twice.

        Args:
            report: Parsed Flex report
            provider_label: Provider name recorded in the metadata

        Returns:
            UnifiedPortfolio in the report's base currency
        """
        assets = [AssetFactory.from_position(p) for p in report.open_positions]

        if report.cash_reports:
            replaced = {CASH_SYMBOL, report.base_currency}
            replaced.update(cr.currency for cr in report.cash_reports)
            assets = [
                a for a in assets if not (a.asset_class == AssetClass.CASH and a.symbol in replaced)
            ]
            assets.extend(
                AssetFactory.from_cash_report(cr)
                for cr in report.cash_reports
                if abs(cr.total_cash) > MIN_CASH_BALANCE
            )

        equity_history = [EquityPoint(e.report_date, e.total) for e in report.equity_summary]

        cash_flows = [
            CashFlow(
                date=t.date,
                amount=t.amount,
                type=CashFlowType.DEPOSIT if t.amount >= 0 else CashFlowType.WITHDRAWAL,
                currency=t.currency,
                id=t.transaction_id,
                description=t.description,
                original_amount=t.amount,
                original_currency=t.currency,
            )
            for t in report.cash_transactions
            if _is_net_invested(t)
        ]

        # NAV snapshots carry the currency the history is actually expressed in
        base_currency = report.base_currency or "USD"
        if report.equity_summary and report.equity_summary[0].currency != base_currency:
            logger.info(
                f"Using NAV currency {report.equity_summary[0].currency} over statement "
                f"currency {base_currency}"
            )
            base_currency = report.equity_summary[0].currency

        account_id = report.account_id or (
            report.equity_summary[0].account_id if report.equity_summary else None
        )
        return UnifiedPortfolio(
            assets=assets,
            base_currency=base_currency,
            equity_history=equity_history,
            cash_flows=cash_flows,
            transactions=list(report.cash_transactions),
            metadata=PortfolioMetadata(
                provider=provider_label,
                account_id=account_id,
                as_of_date=report.to_date,
                sources=[SourceRef(provider_label, account_id or "UNKNOWN")],
            ),
        )
