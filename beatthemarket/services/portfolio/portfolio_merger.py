"""Stitching and summing of unified portfolios.

Phase 1 stitches portfolios that belong to the same (provider, account) into
one continuous history. Phase 2 converts every stitched account into the
target currency and sums them with per-account fill-forward.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from decimal import Decimal

from beatthemarket.constants import Provider
from beatthemarket.services.currency_service import CurrencyService
from beatthemarket.services.portfolio.portfolio_types import (
    Asset,
    CashFlow,
    EquityPoint,
    PortfolioMetadata,
    SourceRef,
    UnifiedPortfolio,
)
from beatthemarket.services.portfolio.transaction_reconciler import detect_gaps

logger = logging.getLogger(__name__)

UNKNOWN_ACCOUNT_KEY = "UNKNOWN"


@dataclass
class MergeResult:
    """Merged portfolio plus any anomalies found while merging."""

    portfolio: UnifiedPortfolio
    warnings: list[str] = field(default_factory=list)


def account_key(portfolio: UnifiedPortfolio) -> tuple[str, str]:
    """Identity of an account: the same id under two providers is two accounts."""
    return (portfolio.metadata.provider, portfolio.metadata.account_id or UNKNOWN_ACCOUNT_KEY)


class PortfolioMerger:
    """Merges portfolios from many files and accounts into one."""

    def __init__(self, currency_service: CurrencyService | None = None):
        self._currency_service = currency_service

    @property
    def currency_service(self) -> CurrencyService:
        if self._currency_service is None:
            self._currency_service = CurrencyService()
        return self._currency_service

    def merge(
        self, portfolios: list[UnifiedPortfolio], target_currency: str = "USD"
    ) -> MergeResult:
        """
        Merge portfolios into one, expressed in the target currency.

        Args:
            portfolios: Unified portfolios in input order (later files win on
                overlapping dates of the same account)
            target_currency: Currency of the merged result

        Returns:
            MergeResult with the merged portfolio and gap warnings
        """
        if not portfolios:
            return MergeResult(PortfolioMerger.create_empty(target_currency))

        accounts = PortfolioMerger.stitch_accounts(portfolios)
        stitched = list(accounts.values())
        logger.info(f"Merging {len(portfolios)} portfolios into {len(stitched)} accounts")

        start, end = PortfolioMerger._date_range(stitched)
        self._preload_rates(stitched, target_currency, start, end)

        equity_history = self._sum_equity(stitched, target_currency)
        merged = UnifiedPortfolio(
            assets=self._convert_holdings(stitched, target_currency),
            base_currency=target_currency,
            equity_history=equity_history,
            cash_flows=self._convert_cash_flows(stitched, target_currency),
            transactions=[t for account in stitched for t in account.transactions],
            metadata=PortfolioMerger._merged_metadata(accounts),
        )
        warnings = detect_gaps([point.date for point in equity_history])
        return MergeResult(merged, warnings)

    def merge_holdings(
        self, portfolios: list[UnifiedPortfolio], target_currency: str = "USD"
    ) -> UnifiedPortfolio:
        """
        Stitch accounts and combine only their current holdings.

        Equity history and cash flows are left empty, so no historical FX
        rates are fetched. Used when NAV and deposits are reconciled elsewhere.
        """
        if not portfolios:
            return PortfolioMerger.create_empty(target_currency)

        accounts = PortfolioMerger.stitch_accounts(portfolios)
        return UnifiedPortfolio(
            assets=self._convert_holdings(list(accounts.values()), target_currency),
            base_currency=target_currency,
            metadata=PortfolioMerger._merged_metadata(accounts),
        )

    @staticmethod
    def stitch_accounts(
        portfolios: list[UnifiedPortfolio],
    ) -> dict[tuple[str, str], UnifiedPortfolio]:
        """Phase 1: one stitched portfolio per (provider, account), in input order."""
        groups: dict[tuple[str, str], list[UnifiedPortfolio]] = {}
        for portfolio in portfolios:
            groups.setdefault(account_key(portfolio), []).append(portfolio)
        return {key: PortfolioMerger.stitch(group) for key, group in groups.items()}

    @staticmethod
    def stitch(group: list[UnifiedPortfolio]) -> UnifiedPortfolio:
        """
        Combine files of one account into a single continuous history.

        NAV points from later files replace earlier ones on the same date,
        cash flows are unioned by id, and the holdings snapshot comes from the
        last file.
        """
        if len(group) == 1:
            return group[0]

        history: dict[date, EquityPoint] = {}
        for portfolio in group:
            for point in portfolio.equity_history:
                history[point.date] = point

        cash_flows: list[CashFlow] = []
        seen_ids: set[str] = set()
        for portfolio in group:
            for flow in portfolio.cash_flows:
                if flow.id:
                    if flow.id in seen_ids:
                        continue
                    seen_ids.add(flow.id)
                cash_flows.append(flow)

        latest = group[-1]
        as_of_dates = [p.metadata.as_of_date for p in group if p.metadata.as_of_date]
        return UnifiedPortfolio(
            assets=list(latest.assets),
            base_currency=latest.base_currency,
            equity_history=[history[day] for day in sorted(history)],
            cash_flows=cash_flows,
            transactions=[t for p in group for t in p.transactions],
            metadata=replace(
                latest.metadata,
                as_of_date=max(as_of_dates) if as_of_dates else None,
            ),
        )

    @staticmethod
    def create_empty(currency: str) -> UnifiedPortfolio:
        return UnifiedPortfolio(
            assets=[],
            base_currency=currency,
            metadata=PortfolioMetadata(provider=Provider.EMPTY, account_id=""),
        )

    @staticmethod
    def _merged_metadata(accounts: dict[tuple[str, str], UnifiedPortfolio]) -> PortfolioMetadata:
        stitched = list(accounts.values())
        if len(stitched) == 1:
            provider, account_id = stitched[0].metadata.provider, stitched[0].metadata.account_id
        else:
            provider, account_id = Provider.MERGED, "ALL"

        as_of_dates = [a.metadata.as_of_date for a in stitched if a.metadata.as_of_date]
        return PortfolioMetadata(
            provider=provider,
            account_id=account_id,
            as_of_date=max(as_of_dates) if as_of_dates else date.today(),
            sources=[SourceRef(*key) for key in accounts],
        )

    @staticmethod
    def _date_range(accounts: list[UnifiedPortfolio]) -> tuple[date, date]:
        dates = [p.date for a in accounts for p in a.equity_history] + [
            f.date for a in accounts for f in a.cash_flows
        ]
        if not dates:
            today = date.today()
            return today - timedelta(days=30), today
        return min(dates), max(dates) + timedelta(days=1)

    def _preload_rates(
        self, accounts: list[UnifiedPortfolio], target: str, start: date, end: date
    ) -> None:
        currencies = {a.base_currency for a in accounts}
        currencies |= {f.currency for a in accounts for f in a.cash_flows}
        for currency in currencies - {target}:
            self.currency_service.load_rates(currency, target, start, end)

    def _historical_rate(self, base: str, target: str, on: date) -> Decimal:
        """Rate with lookback; the neutral rate when no data is near the date."""
        if base == target:
            return Decimal("1")
        return self.currency_service.rate(base, target, on)

    def _convert_holdings(self, accounts: list[UnifiedPortfolio], target: str) -> list[Asset]:
        """Current holdings of every account at the latest rate into target."""
        converted = []
        for asset in (a for account in accounts for a in account.assets):
            rate = (
                Decimal("1")
                if asset.currency == target
                else self.currency_service.latest_rate(asset.currency, target)
            )
            converted.append(
                replace(
                    asset,
                    market_value=asset.market_value * rate,
                    cost_basis=asset.cost_basis * rate,
                    currency=target,
                    original_currency=asset.original_currency or asset.currency,
                )
            )
        return converted

    def _sum_equity(self, accounts: list[UnifiedPortfolio], target: str) -> list[EquityPoint]:
        """Sum account NAVs per date, carrying each account's last value forward."""
        per_account = [{p.date: p.nav for p in a.equity_history} for a in accounts]
        all_dates = sorted({day for navs in per_account for day in navs})

        last_known = [Decimal("0")] * len(accounts)
        history = []
        for day in all_dates:
            for index, navs in enumerate(per_account):
                if day in navs:
                    rate = self._historical_rate(accounts[index].base_currency, target, day)
                    last_known[index] = navs[day] * rate
            history.append(EquityPoint(day, sum(last_known, Decimal("0"))))
        return history

    def _convert_cash_flows(self, accounts: list[UnifiedPortfolio], target: str) -> list[CashFlow]:
        flows = []
        seen_ids: set[str] = set()
        for account in accounts:
            for flow in account.cash_flows:
                if flow.id:
                    if flow.id in seen_ids:
                        continue
                    seen_ids.add(flow.id)

                rate = self._historical_rate(flow.currency, target, flow.date)
                flows.append(
                    replace(
                        flow,
                        amount=flow.amount * rate,
                        currency=target,
                        original_amount=(
                            flow.original_amount
                            if flow.original_amount is not None
                            else flow.amount
                        ),
                        original_currency=flow.original_currency or flow.currency,
                    )
                )
        flows.sort(key=lambda f: f.date)
        return flows
