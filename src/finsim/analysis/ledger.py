"""Rebuild portfolio snapshots from the transaction log.

The transaction log is the audit trail of a backtest: replaying it from
month 0 must give back every snapshot the engine produced. Prices are not
part of the ledger, so each month is valued at the prices recorded on the
engine's snapshot for that month.
"""

import logging
from collections import defaultdict

from finsim.models import CASH_TICKER, MonthlySnapshot, Transaction, TransactionType

logger = logging.getLogger(__name__)

SHARE_EPSILON = 1e-12


def replay_ledger(
    transactions: list[Transaction],
    snapshots: list[MonthlySnapshot],
) -> list[MonthlySnapshot]:
    """Replay transactions month by month into fresh snapshots."""
    by_month: dict[int, list[Transaction]] = defaultdict(list)
    for tx in transactions:
        by_month[tx.month].append(tx)

    holdings: dict[str, float] = defaultdict(float)
    cash = 0.0
    previous_value = None
    replayed = []

    for snapshot in snapshots:
        contribution = 0.0
        dividends = 0.0
        for tx in by_month.get(snapshot.month, []):
            cash += tx.cash_delta
            if tx.ticker != CASH_TICKER:
                holdings[tx.ticker] += tx.shares_added
            if tx.type == TransactionType.CASH_CREDIT:
                contribution += tx.amount
            elif tx.type == TransactionType.DIVIDEND_PAYMENT:
                dividends += tx.amount

        held = {t: s for t, s in holdings.items() if s > SHARE_EPSILON}
        value = cash + sum(shares * snapshot.prices[t] for t, shares in held.items())

        if previous_value:
            monthly_return = (value - previous_value - contribution) / previous_value
        else:
            monthly_return = 0.0

        replayed.append(MonthlySnapshot(
            month=snapshot.month,
            date=snapshot.date,
            portfolio_value=value,
            contribution=contribution,
            monthly_return=monthly_return,
            holdings=held,
            prices=snapshot.prices,
            cash_balance=cash,
            dividends=dividends,
        ))
        previous_value = value

    return replayed


def _close(a: float, b: float, tolerance: float) -> bool:
    return abs(a - b) <= tolerance * max(1.0, abs(a), abs(b))


def verify_ledger(
    transactions: list[Transaction],
    snapshots: list[MonthlySnapshot],
    tolerance: float = 1e-6,
) -> list[str]:
    """Compare replayed snapshots with the engine's. Returns mismatch messages."""
    mismatches = []

    cash = 0.0
    for tx in transactions:
        cash += tx.cash_delta
        if not _close(cash, tx.cash_balance, tolerance):
            mismatches.append(
                f"month {tx.month} {tx.type.value} {tx.ticker}: running cash {cash:.6f} "
                f"!= recorded {tx.cash_balance:.6f}"
            )
            break

    for original, replayed in zip(snapshots, replay_ledger(transactions, snapshots)):
        label = f"month {original.month} ({original.date})"
        if not _close(original.cash_balance, replayed.cash_balance, tolerance):
            mismatches.append(f"{label}: cash {original.cash_balance:.6f} != {replayed.cash_balance:.6f}")
        if not _close(original.portfolio_value, replayed.portfolio_value, tolerance):
            mismatches.append(
                f"{label}: value {original.portfolio_value:.6f} != {replayed.portfolio_value:.6f}"
            )
        if not _close(original.contribution, replayed.contribution, tolerance):
            mismatches.append(f"{label}: contribution {original.contribution} != {replayed.contribution}")
        tickers = set(original.holdings) | set(replayed.holdings)
        for ticker in sorted(tickers):
            if not _close(original.holdings.get(ticker, 0.0), replayed.holdings.get(ticker, 0.0), tolerance):
                mismatches.append(f"{label}: {ticker} shares differ")

    for message in mismatches:
        logger.error(f"Ledger mismatch: {message}")
    return mismatches
