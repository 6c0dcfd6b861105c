"""Service layer composing the engines into analytics and dashboard reports."""

import logging
from collections.abc import Iterable, Mapping, Sequence
from datetime import date, timedelta
from typing import Any

from dateutil.relativedelta import relativedelta

from ..core.config import AnalyticsConfig, resolve_config
from ..core.models import (
    Budget,
    Category,
    CategoryPrediction,
    CategoryRule,
    Goal,
    HealthAnalysis,
    HealthSnapshot,
    SeriesPoint,
    Transaction,
    TransactionType,
)
from ..ml.anomaly import AnomalyDetector, create_anomaly_record
from ..ml.categorizer import Describable, TransactionCategorizer
from ..ml.forecast import analyze_trend, forecast_expenses
from ..ml.health import HealthScorer
from .aggregation import (
    aggregate_monthly,
    aggregate_weekly,
    budget_alerts,
    change_percent,
    period_comparison,
    settle_shared_expenses,
    shared_expense_totals,
    top_categories,
    weekday_pattern,
)
from .models import AnalyticsReport, DashboardSummary, FamilyMember, PeriodName

logger = logging.getLogger(__name__)

WEEKS_OF_HISTORY = 12
RECENT_TRANSACTIONS = 10
# Most recent transactions screened for anomalies on the dashboard
ANOMALY_SCAN_SIZE = 20


class AnalyticsService:
    """Service for analytics operations."""

    @staticmethod
    def get_analytics_data(
        transactions: Sequence[Transaction],
        categories: Sequence[Category] = (),
        period: PeriodName = "month",
        today: date | None = None,
        config: AnalyticsConfig | Mapping[str, Any] | None = None,
    ) -> AnalyticsReport:
        """Get monthly and weekly aggregations, category breakdowns, trends and forecasts."""
        cfg = resolve_config(AnalyticsConfig, config)
        today = today or date.today()

        monthly_data = aggregate_monthly(transactions, cfg.months_of_history, today)
        weekly_data = aggregate_weekly(transactions, WEEKS_OF_HISTORY, today)

        expenses = [t for t in transactions if t.type == TransactionType.EXPENSE]
        income = [t for t in transactions if t.type == TransactionType.INCOME]

        expense_series = [SeriesPoint(date=f"{m.month}-01", amount=m.expense) for m in monthly_data]
        income_series = [SeriesPoint(date=f"{m.month}-01", amount=m.income) for m in monthly_data]

        return AnalyticsReport(
            monthly_data=monthly_data,
            weekly_data=weekly_data,
            expense_by_category=top_categories(expenses, categories, limit=10),
            income_by_category=top_categories(income, categories, limit=5),
            expense_trend=analyze_trend([m.expense for m in monthly_data], cfg.trend),
            income_trend=analyze_trend([m.income for m in monthly_data], cfg.trend),
            expense_forecast=forecast_expenses(expense_series, cfg.forecast_periods, cfg.trend),
            income_forecast=forecast_expenses(income_series, cfg.forecast_periods, cfg.trend),
            weekday_pattern=weekday_pattern(expenses),
            period_comparison=period_comparison(transactions, period, today),
        )

    @staticmethod
    def get_dashboard_data(
        transactions: Sequence[Transaction],
        budgets: Sequence[Budget],
        goals: Sequence[Goal],
        members: Sequence[FamilyMember] = (),
        categories: Sequence[Category] = (),
        previous_snapshots: Sequence[HealthSnapshot] = (),
        today: date | None = None,
        family_id: str | None = None,
        config: AnalyticsConfig | Mapping[str, Any] | None = None,
    ) -> DashboardSummary:
        """Get the current-month overview with alerts, debts, anomalies and health."""
        cfg = resolve_config(AnalyticsConfig, config)
        today = today or date.today()

        month_start = today.replace(day=1)
        last_month_start = month_start - relativedelta(months=1)
        last_month_end = month_start - timedelta(days=1)

        current = [t for t in transactions if month_start <= t.date <= today]
        previous = [t for t in transactions if last_month_start <= t.date <= last_month_end]

        def totals(txns: list[Transaction]) -> tuple[float, float]:
            return (
                sum(t.amount for t in txns if t.type == TransactionType.INCOME),
                sum(t.amount for t in txns if t.type == TransactionType.EXPENSE),
            )

        total_income, total_expense = totals(current)
        last_income, last_expense = totals(previous)
        expenses = [t for t in current if t.type == TransactionType.EXPENSE]

        recent = sorted(transactions, key=lambda t: t.date, reverse=True)

        detector = AnomalyDetector(cfg.anomaly, cfg.trend)
        anomalies = []
        for txn in recent[:ANOMALY_SCAN_SIZE]:
            for anomaly in detector.detect_transaction_anomalies(txn, transactions, categories):
                anomalies.append(create_anomaly_record(anomaly, transaction_id=txn.id, family_id=family_id))

        health = HealthScorer(cfg.health, cfg.trend).analyze(transactions, budgets, goals, previous_snapshots, today)

        logger.info(
            "Dashboard for %s: %d transactions this month, %d anomalies",
            today.isoformat(),
            len(current),
            len(anomalies),
        )

        return DashboardSummary(
            total_balance=round(total_income - total_expense, 2),
            total_income=round(total_income, 2),
            total_expense=round(total_expense, 2),
            income_change=change_percent(total_income, last_income),
            expense_change=change_percent(total_expense, last_expense),
            credit_used=round(sum(t.amount for t in expenses if t.is_credit), 2),
            shared_expenses=shared_expense_totals(expenses, members),
            debts=settle_shared_expenses(expenses, members),
            recent_transactions=recent[:RECENT_TRANSACTIONS],
            top_categories=top_categories(expenses, categories, limit=6),
            budget_alerts=budget_alerts(
                [b for b in budgets if b.is_in_effect(today)], transactions, categories, today
            ),
            anomalies=anomalies[: cfg.dashboard_anomaly_limit],
            health=health,
        )

    @staticmethod
    def get_health_analysis(
        transactions: Sequence[Transaction],
        budgets: Sequence[Budget],
        goals: Sequence[Goal],
        previous_snapshots: Sequence[HealthSnapshot] = (),
        today: date | None = None,
        config: AnalyticsConfig | Mapping[str, Any] | None = None,
    ) -> HealthAnalysis:
        cfg = resolve_config(AnalyticsConfig, config)
        return HealthScorer(cfg.health, cfg.trend).analyze(transactions, budgets, goals, previous_snapshots, today)

    @staticmethod
    def auto_categorize(
        description: str | None,
        categories: Sequence[Category],
        history: Sequence[Transaction] = (),
        rules: Sequence[CategoryRule] = (),
        config: AnalyticsConfig | Mapping[str, Any] | None = None,
    ) -> CategoryPrediction | None:
        cfg = resolve_config(AnalyticsConfig, config)
        return TransactionCategorizer(cfg.categorizer).predict(description, categories, history, rules)

    @staticmethod
    def batch_auto_categorize(
        items: Iterable[Describable],
        categories: Sequence[Category],
        history: Sequence[Transaction] = (),
        rules: Sequence[CategoryRule] = (),
        config: AnalyticsConfig | Mapping[str, Any] | None = None,
    ) -> dict[str, CategoryPrediction]:
        cfg = resolve_config(AnalyticsConfig, config)
        return TransactionCategorizer(cfg.categorizer).batch_categorize(items, categories, history, rules)
