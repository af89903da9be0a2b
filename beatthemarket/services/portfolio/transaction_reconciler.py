"""Reconciliation of cash transactions and NAV history.

The reconciler runs an ordered pipeline of pure stages:

    deduplicate -> aggregate NAV -> detect gaps -> identify deposits
        -> infer synthetic capital -> correct deposit lag

Each stage consumes the complete output of the previous one, so the order is
fixed. Anomalies found along the way are reported as warnings, never raised.
"""

import logging
from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal

from beatthemarket.config import settings
from beatthemarket.constants import UNKNOWN_ACCOUNT, DepositType
from beatthemarket.services.brokers.base_broker_parser import CashTransaction, EquitySummary
from beatthemarket.services.cash_flow_classifier import CashFlowClassifier
from beatthemarket.services.portfolio.portfolio_types import Deposit, ReconciliationResult

logger = logging.getLogger(__name__)


def deduplicate_transactions(transactions: list[CashTransaction]) -> list[CashTransaction]:
    """
    Remove duplicate transactions by composite key.

    A later duplicate replaces the earlier record but keeps its position, so
    uploading the same export twice is idempotent.
    """
    unique: dict[tuple, CashTransaction] = {}
    for transaction in transactions:
        unique[transaction.dedup_key] = transaction
    return list(unique.values())


def aggregate_equity(summaries: list[EquitySummary]) -> dict[date, Decimal]:
    """
    Sum NAV across accounts per date with per-account fill-forward.

    For each date in order, every account's last known value is updated from
    that date's rows and the total of all known accounts is recorded. An
    account that stops reporting keeps contributing its last value.

    Args:
        summaries: NAV snapshots from all sources, in input order

    Returns:
        Date -> combined NAV, ordered by date
    """
    by_date: dict[date, dict[str, Decimal]] = {}
    for summary in summaries:
        account_id = summary.account_id or UNKNOWN_ACCOUNT
        # Later input for the same account and date wins
        by_date.setdefault(summary.report_date, {})[account_id] = summary.total

    latest_by_account: dict[str, Decimal] = {}
    equity_map: dict[date, Decimal] = {}
    for day in sorted(by_date):
        latest_by_account.update(by_date[day])
        equity_map[day] = sum(latest_by_account.values(), Decimal("0"))
    return equity_map


def count_missing_business_days(start: date, end: date) -> int:
    """Count weekdays strictly between two dates."""
    count = 0
    current = start + timedelta(days=1)
    while current < end:
        if current.weekday() < 5:
            count += 1
        current += timedelta(days=1)
    return count


def detect_gaps(dates: list[date], threshold: int | None = None) -> list[str]:
    """
    Warn about holes in a NAV series.

    Consecutive dates more than `threshold` business days apart produce a
    warning; weekends and short holidays stay silent.

    Args:
        dates: NAV dates (any order)
        threshold: Missing business days tolerated between two records

    Returns:
        Warning messages, one per gap
    """
    if threshold is None:
        threshold = settings.gap_business_days_threshold

    warnings = []
    ordered = sorted(dates)
    for current, following in zip(ordered, ordered[1:]):
        if (following - current).days <= 2:
            continue
        missing = count_missing_business_days(current, following)
        if missing > threshold:
            warnings.append(
                f"Data Gap Detected: No records between {current.isoformat()} and "
                f"{following.isoformat()} ({missing} missing business days)."
            )
    return warnings


def identify_deposits(transactions: list[CashTransaction]) -> list[Deposit]:
    """
    Select investor capital flows and convert them to the reference currency.

    Args:
        transactions: Deduplicated cash transactions

    Returns:
        Deposits sorted by date, amounts multiplied by their FX rate to base
    """
    seen: set[tuple] = set()
    deposits = []

    for transaction in transactions:
        if not CashFlowClassifier.is_capital_flow(transaction):
            continue
        if transaction.dedup_key in seen:
            continue
        seen.add(transaction.dedup_key)

        fx_rate = transaction.fx_rate_to_base
        if fx_rate <= 0:
            logger.warning(
                f"Invalid FX rate {fx_rate} on transaction {transaction.transaction_id}, using 1"
            )
            fx_rate = Decimal("1")

        deposits.append(
            Deposit(
                date=transaction.date,
                amount=transaction.amount * fx_rate,
                original_amount=transaction.amount,
                currency=transaction.currency,
                description=transaction.description,
                type=transaction.type,
                transaction_id=transaction.transaction_id,
            )
        )

    deposits.sort(key=lambda d: d.date)
    return deposits


def infer_synthetic_capital(
    deposits: list[Deposit],
    equity_map: dict[date, Decimal],
    summaries: list[EquitySummary],
    tolerance: Decimal | None = None,
) -> tuple[list[Deposit], list[str]]:
    """
    Add capital that existed before the transaction history began.

    When the first NAV exceeds the deposits made up to that date by more than
    the tolerance, a single Synthetic deposit for the shortfall is dated at the
    first NAV snapshot.

    Returns:
        (deposits, warnings)
    """
    if tolerance is None:
        tolerance = Decimal(str(settings.synthetic_capital_tolerance))
    if not equity_map:
        return deposits, []

    first_date = min(equity_map)
    start_nav = equity_map[first_date]
    deposited = sum((d.amount for d in deposits if d.date <= first_date), Decimal("0"))

    if start_nav <= deposited + tolerance:
        return deposits, []

    missing = start_nav - deposited
    currency = next(
        (s.currency for s in summaries if s.report_date == first_date and s.currency), "USD"
    )
    synthetic = Deposit(
        date=first_date,
        amount=missing,
        original_amount=missing,
        currency=currency,
        description=f"Synthetic Initial Capital (Derived from Initial NAV in {currency})",
        type=DepositType.SYNTHETIC,
        transaction_id=f"SYNTH-{first_date.isoformat()}",
    )
    logger.info(f"Injected synthetic initial capital {missing} {currency} at {first_date}")

    result = sorted([*deposits, synthetic], key=lambda d: d.date)
    warning = (
        f"Initial capital of {missing:.2f} {currency} inferred from the first NAV on "
        f"{first_date.isoformat()} (not covered by recorded deposits)."
    )
    return result, [warning]


def correct_deposit_lag(
    deposits: list[Deposit],
    equity_map: dict[date, Decimal],
    ratio: Decimal | None = None,
) -> tuple[list[Deposit], list[str]]:
    """
    Move deposits to the NAV date that actually reflects them.

    A deposit on a NAV date whose NAV rose by less than `ratio` of the deposit,
    followed by a next NAV increase above that threshold, is shifted to the
    next NAV date.

    Returns:
        (deposits, warnings)
    """
    if ratio is None:
        ratio = Decimal(str(settings.deposit_lag_ratio))

    nav_dates = sorted(equity_map)
    position = {day: index for index, day in enumerate(nav_dates)}
    corrected = []
    warnings = []

    for deposit in deposits:
        index = position.get(deposit.date)
        if index is None or index == 0 or index == len(nav_dates) - 1:
            corrected.append(deposit)
            continue

        current_nav = equity_map[deposit.date]
        threshold = deposit.amount * ratio
        change = current_nav - equity_map[nav_dates[index - 1]]
        next_date = nav_dates[index + 1]
        next_change = equity_map[next_date] - current_nav

        if change < threshold and next_change > threshold:
            logger.info(
                f"Detected deposit lag for {deposit.date} ({deposit.amount}), "
                f"shifting to {next_date}"
            )
            warnings.append(
                f"Deposit of {deposit.amount:.2f} on {deposit.date.isoformat()} shifted to "
                f"{next_date.isoformat()} to match NAV recognition."
            )
            corrected.append(replace(deposit, date=next_date))
        else:
            corrected.append(deposit)

    corrected.sort(key=lambda d: d.date)
    return corrected, warnings


class TransactionReconciler:
    """Runs the reconciliation stages in their required order."""

    def __init__(
        self,
        gap_threshold: int | None = None,
        synthetic_tolerance: Decimal | None = None,
        lag_ratio: Decimal | None = None,
    ):
        self.gap_threshold = (
            gap_threshold if gap_threshold is not None else settings.gap_business_days_threshold
        )
        self.synthetic_tolerance = (
            synthetic_tolerance
            if synthetic_tolerance is not None
            else Decimal(str(settings.synthetic_capital_tolerance))
        )
        self.lag_ratio = (
            lag_ratio if lag_ratio is not None else Decimal(str(settings.deposit_lag_ratio))
        )

    def reconcile(
        self, transactions: list[CashTransaction], summaries: list[EquitySummary]
    ) -> ReconciliationResult:
        """
        Reconcile raw transactions and NAV snapshots from all sources.

        Args:
            transactions: Cash transactions, amounts in their own currency with
                fx_rate_to_base pointing at the reference currency
            summaries: NAV snapshots already expressed in the reference currency

        Returns:
            ReconciliationResult with effective deposits, NAV map and warnings
        """
        unique_transactions = deduplicate_transactions(transactions)
        equity_map = aggregate_equity(summaries)
        warnings = detect_gaps(list(equity_map), self.gap_threshold)

        deposits = identify_deposits(unique_transactions)
        deposits, synthetic_warnings = infer_synthetic_capital(
            deposits, equity_map, summaries, self.synthetic_tolerance
        )
        deposits, lag_warnings = correct_deposit_lag(deposits, equity_map, self.lag_ratio)

        logger.info(
            f"Reconciled {len(transactions)} transactions into {len(deposits)} deposits "
            f"over {len(equity_map)} NAV dates"
        )
        return ReconciliationResult(
            effective_deposits=deposits,
            equity_map=equity_map,
            warnings=warnings + synthetic_warnings + lag_warnings,
        )
