"""pandas helpers for grouping transactions by day, week, month and category."""

from collections.abc import Iterable
from datetime import date, timedelta

import pandas as pd

from ..core.models import Transaction, TransactionType

FRAME_COLUMNS = [
    "id",
    "type",
    "amount",
    "date",
    "week_start",
    "month",
    "weekday",
    "category_id",
    "description",
    "is_credit",
    "is_shared",
    "user_id",
]

FLOW_TYPES = [TransactionType.INCOME.value, TransactionType.EXPENSE.value]


def week_start(day: date) -> date:
    """Monday of the ISO week containing ``day``."""
    return day - timedelta(days=day.weekday())


def transactions_to_frame(transactions: Iterable[Transaction]) -> pd.DataFrame:
    """Convert transactions to a DataFrame; dates stay ``datetime.date`` objects."""
    records = [
        {
            "id": txn.id,
            "type": txn.type.value,
            "amount": float(txn.amount),
            "date": txn.date,
            "week_start": week_start(txn.date),
            "month": txn.date.strftime("%Y-%m"),
            "weekday": txn.date.weekday(),
            "category_id": txn.category_id,
            "description": txn.description,
            "is_credit": txn.is_credit,
            "is_shared": txn.is_shared,
            "user_id": txn.user_id,
        }
        for txn in transactions
    ]
    return pd.DataFrame.from_records(records, columns=FRAME_COLUMNS)


def daily_totals(transactions: Iterable[Transaction]) -> list[tuple[date, float]]:
    """Sum amounts per calendar day, in chronological order."""
    df = transactions_to_frame(transactions)
    if df.empty:
        return []

    totals = df.groupby("date", sort=True)["amount"].sum()
    return [(day, float(total)) for day, total in totals.items()]


def _flow_totals(df: pd.DataFrame, index: str) -> pd.DataFrame:
    df = df[df["type"].isin(FLOW_TYPES)]
    if df.empty:
        return pd.DataFrame(columns=["income", "expense"], dtype=float)

    pivot = df.pivot_table(index=index, columns="type", values="amount", aggfunc="sum", fill_value=0.0)
    pivot = pivot.reindex(columns=["income", "expense"], fill_value=0.0).sort_index()
    pivot.columns.name = None
    return pivot.astype(float)


def monthly_totals(transactions: Iterable[Transaction]) -> pd.DataFrame:
    """Income and expense per ``YYYY-MM`` month, in chronological order.

    Transfers are ignored. Only months with at least one transaction appear.
    """
    return _flow_totals(transactions_to_frame(transactions), "month")


def weekly_totals(transactions: Iterable[Transaction]) -> pd.DataFrame:
    """Income and expense per ISO week, indexed by the week's Monday."""
    return _flow_totals(transactions_to_frame(transactions), "week_start")


def category_groups(
    transactions: Iterable[Transaction], uncategorized_key: str = "uncategorized"
) -> dict[str, list[Transaction]]:
    """Group transactions by category id in chronological order (stable for equal dates)."""
    groups: dict[str, list[Transaction]] = {}
    for txn in sorted(transactions, key=lambda t: t.date):
        groups.setdefault(txn.category_id or uncategorized_key, []).append(txn)
    return groups
