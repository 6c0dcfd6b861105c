"""Aggregations over transaction collections for reports and dashboards."""

import logging
from collections.abc import Sequence
from datetime import date, timedelta

from dateutil.relativedelta import relativedelta

from ..core.models import Budget, Category, Transaction, TransactionType
from ..data.frames import monthly_totals, transactions_to_frame, week_start, weekly_totals
from .models import (
    BudgetAlert,
    CategorySummary,
    DebtSettlement,
    FamilyMember,
    MonthlyData,
    PeriodComparison,
    PeriodName,
    PeriodTotals,
    SharedExpenses,
    WeekdayPattern,
    WeeklyData,
)

logger = logging.getLogger(__name__)

UNCATEGORIZED_ID = "uncategorized"
UNCATEGORIZED_NAME = "Uncategorized"
DAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

# Balances closer to zero than this are treated as settled
SETTLEMENT_TOLERANCE = 1.0


def change_percent(current: float, previous: float) -> float:
    return round((current - previous) / previous * 100, 1) if previous > 0 else 0.0


def aggregate_monthly(
    transactions: Sequence[Transaction], months: int = 12, today: date | None = None
) -> list[MonthlyData]:
    """Income, expense and savings for the last ``months`` months, oldest first; empty months are zero."""
    today = today or date.today()
    first = today.replace(day=1)
    keys = [(first - relativedelta(months=i)).strftime("%Y-%m") for i in reversed(range(months))]

    totals = monthly_totals(transactions).reindex(keys, fill_value=0.0)
    return [
        MonthlyData(
            month=month,
            income=round(row.income, 2),
            expense=round(row.expense, 2),
            savings=round(row.income - row.expense, 2),
        )
        for month, row in totals.iterrows()
    ]


def aggregate_weekly(
    transactions: Sequence[Transaction], weeks: int = 12, today: date | None = None
) -> list[WeeklyData]:
    """Income and expense for the last ``weeks`` ISO weeks, oldest first."""
    today = today or date.today()
    current = week_start(today)
    keys = [current - timedelta(weeks=i) for i in reversed(range(weeks))]

    totals = weekly_totals(transactions).reindex(keys, fill_value=0.0)
    return [
        WeeklyData(week_start=start, income=round(row.income, 2), expense=round(row.expense, 2))
        for start, row in totals.iterrows()
    ]


def top_categories(
    transactions: Sequence[Transaction], categories: Sequence[Category] = (), limit: int = 6
) -> list[CategorySummary]:
    """Largest categories by total amount, with their share of the grand total."""
    df = transactions_to_frame(transactions)
    if df.empty:
        return []

    df["category_id"] = df["category_id"].fillna(UNCATEGORIZED_ID)
    grouped = df.groupby("category_id", sort=False)["amount"].agg(["sum", "count"])
    grouped = grouped.sort_values("sum", ascending=False, kind="stable").head(limit)
    grand_total = float(df["amount"].sum())

    names = {c.id: c.name for c in categories}
    names.setdefault(UNCATEGORIZED_ID, UNCATEGORIZED_NAME)
    return [
        CategorySummary(
            category_id=category_id,
            category_name=names.get(category_id, category_id),
            total=round(float(row["sum"]), 2),
            percentage=round(float(row["sum"]) / grand_total * 100, 1) if grand_total > 0 else 0.0,
            transaction_count=int(row["count"]),
        )
        for category_id, row in grouped.iterrows()
    ]


def weekday_pattern(expenses: Sequence[Transaction]) -> list[WeekdayPattern]:
    """Average expense per transaction for each weekday, Monday first."""
    df = transactions_to_frame(expenses)
    df = df[df["type"] == TransactionType.EXPENSE.value]
    if df.empty:
        return [WeekdayPattern(day=day, day_name=name) for day, name in enumerate(DAY_NAMES)]

    stats = df.groupby("weekday")["amount"].agg(["mean", "count"]).reindex(range(7)).fillna(0)
    return [
        WeekdayPattern(
            day=int(day),
            day_name=DAY_NAMES[day],
            average_expense=round(float(row["mean"]), 2),
            transaction_count=int(row["count"]),
        )
        for day, row in stats.iterrows()
    ]


def _period_bounds(period: PeriodName, today: date) -> tuple[date, date, date]:
    """Start of the current period and the first and last day of the previous one."""
    if period == "month":
        current_start = today.replace(day=1)
        previous_start = current_start - relativedelta(months=1)
    elif period == "quarter":
        current_start = date(today.year, 3 * ((today.month - 1) // 3) + 1, 1)
        previous_start = current_start - relativedelta(months=3)
    elif period == "year":
        current_start = date(today.year, 1, 1)
        previous_start = date(today.year - 1, 1, 1)
    else:
        raise ValueError(f"Unknown period: {period}")
    return current_start, previous_start, current_start - timedelta(days=1)


def _flow_sums(transactions: Sequence[Transaction], start: date, end: date) -> tuple[float, float]:
    income = expense = 0.0
    for txn in transactions:
        if not start <= txn.date <= end:
            continue
        if txn.type == TransactionType.INCOME:
            income += txn.amount
        elif txn.type == TransactionType.EXPENSE:
            expense += txn.amount
    return round(income, 2), round(expense, 2)


def period_comparison(
    transactions: Sequence[Transaction], period: PeriodName = "month", today: date | None = None
) -> PeriodComparison:
    """Compare the current month, quarter or year to date with the whole previous one."""
    today = today or date.today()
    current_start, previous_start, previous_end = _period_bounds(period, today)

    current_income, current_expense = _flow_sums(transactions, current_start, today)
    previous_income, previous_expense = _flow_sums(transactions, previous_start, previous_end)

    return PeriodComparison(
        period=period,
        current_period=PeriodTotals(
            income=current_income, expense=current_expense, start_date=current_start, end_date=today
        ),
        previous_period=PeriodTotals(
            income=previous_income, expense=previous_expense, start_date=previous_start, end_date=previous_end
        ),
        income_change_percent=change_percent(current_income, previous_income),
        expense_change_percent=change_percent(current_expense, previous_expense),
    )


def budget_alerts(
    budgets: Sequence[Budget],
    expenses: Sequence[Transaction],
    categories: Sequence[Category] = (),
    today: date | None = None,
) -> list[BudgetAlert]:
    """Active budgets whose spending reached their alert threshold, fullest first.

    With ``today``, each budget counts only spending inside its own week, month or
    year containing that day. Without it, every expense given is counted.
    """
    names = {c.id: c.name for c in categories}
    alerts = []
    for budget in budgets:
        if not budget.is_active:
            continue

        start, end = budget.period_window(today) if today else (date.min, date.max)
        spent = sum(
            t.amount
            for t in expenses
            if t.type == TransactionType.EXPENSE
            and start <= t.date <= end
            and (budget.category_id is None or t.category_id == budget.category_id)
        )
        percentage = round(spent / budget.amount * 100, 1)
        if percentage >= budget.alert_threshold:
            alerts.append(
                BudgetAlert(
                    budget_id=budget.id,
                    budget_name=budget.name,
                    category_name=names.get(budget.category_id) if budget.category_id else None,
                    spent=round(spent, 2),
                    limit=budget.amount,
                    percentage=percentage,
                )
            )

    alerts.sort(key=lambda a: a.percentage, reverse=True)
    return alerts


def shared_expense_totals(expenses: Sequence[Transaction], members: Sequence[FamilyMember]) -> SharedExpenses:
    """Shared spending paid by each family member."""
    by_user = {member.user_id: 0.0 for member in members}
    for txn in expenses:
        if txn.type == TransactionType.EXPENSE and txn.is_shared and txn.user_id in by_user:
            by_user[txn.user_id] += txn.amount

    by_user = {user_id: round(total, 2) for user_id, total in by_user.items()}
    return SharedExpenses(total=round(sum(by_user.values()), 2), by_user=by_user)


def settle_shared_expenses(expenses: Sequence[Transaction], members: Sequence[FamilyMember]) -> list[DebtSettlement]:
    """Transfers that leave every member having paid an equal share of shared expenses.

    Pairs the member who owes most with the member owed most until all balances
    are within one currency unit of zero.
    """
    shared = shared_expense_totals(expenses, members)
    if shared.total == 0 or len(members) < 2:
        return []

    fair_share = shared.total / len(members)
    balances = sorted(
        ([member, shared.by_user[member.user_id] - fair_share] for member in members),
        key=lambda entry: entry[1],
    )

    settlements = []
    i, j = 0, len(balances) - 1
    while i < j:
        debtor, creditor = balances[i], balances[j]
        amount = min(-debtor[1], creditor[1])
        if amount <= 0:
            break

        if amount >= SETTLEMENT_TOLERANCE:
            settlements.append(
                DebtSettlement(
                    from_user_id=debtor[0].user_id,
                    from_user_name=debtor[0].nickname,
                    to_user_id=creditor[0].user_id,
                    to_user_name=creditor[0].nickname,
                    amount=round(amount, 2),
                )
            )

        debtor[1] += amount
        creditor[1] -= amount

        if abs(debtor[1]) < SETTLEMENT_TOLERANCE:
            i += 1
        if abs(creditor[1]) < SETTLEMENT_TOLERANCE:
            j -= 1

    logger.debug("Settled shared expenses of %.2f with %d transfers", shared.total, len(settlements))
    return settlements
