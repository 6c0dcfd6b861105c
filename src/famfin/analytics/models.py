"""Pydantic models for aggregate analytics and dashboard reports."""

from datetime import date
from typing import Literal

from pydantic import Field

from ..core.models import (
    AnomalyRecord,
    Forecast,
    FrozenModel,
    HealthAnalysis,
    Transaction,
    TrendAnalysis,
)

PeriodName = Literal["month", "quarter", "year"]


class MonthlyData(FrozenModel):
    """Income, expense and savings for one ``YYYY-MM`` month."""

    month: str
    income: float = 0.0
    expense: float = 0.0
    savings: float = 0.0


class WeeklyData(FrozenModel):
    """Income and expense for the ISO week starting on ``week_start`` (a Monday)."""

    week_start: date
    income: float = 0.0
    expense: float = 0.0


class CategorySummary(FrozenModel):
    category_id: str
    category_name: str
    total: float
    percentage: float = Field(ge=0.0, le=100.0)
    transaction_count: int


class WeekdayPattern(FrozenModel):
    """Average expense per transaction on one weekday (0 = Monday)."""

    day: int = Field(ge=0, le=6)
    day_name: str
    average_expense: float = 0.0
    transaction_count: int = 0


class PeriodTotals(FrozenModel):
    income: float
    expense: float
    start_date: date
    end_date: date


class PeriodComparison(FrozenModel):
    """Current period to date against the whole previous period."""

    period: PeriodName
    current_period: PeriodTotals
    previous_period: PeriodTotals
    income_change_percent: float = 0.0
    expense_change_percent: float = 0.0


class BudgetAlert(FrozenModel):
    budget_id: str
    budget_name: str
    category_name: str | None = None
    spent: float
    limit: float
    percentage: float


class FamilyMember(FrozenModel):
    user_id: str
    nickname: str


class DebtSettlement(FrozenModel):
    """Transfer that evens out shared spending between two members."""

    from_user_id: str
    from_user_name: str
    to_user_id: str
    to_user_name: str
    amount: float = Field(gt=0.0)


class SharedExpenses(FrozenModel):
    total: float = 0.0
    by_user: dict[str, float] = Field(default_factory=dict)


class AnalyticsReport(FrozenModel):
    """Long-range analytics: aggregations, trends, forecasts and patterns."""

    monthly_data: list[MonthlyData]
    weekly_data: list[WeeklyData]
    expense_by_category: list[CategorySummary]
    income_by_category: list[CategorySummary]
    expense_trend: TrendAnalysis
    income_trend: TrendAnalysis
    expense_forecast: list[Forecast]
    income_forecast: list[Forecast]
    weekday_pattern: list[WeekdayPattern]
    period_comparison: PeriodComparison


class DashboardSummary(FrozenModel):
    """Current-month overview."""

    total_balance: float
    total_income: float
    total_expense: float
    income_change: float = 0.0
    expense_change: float = 0.0
    credit_used: float = 0.0
    shared_expenses: SharedExpenses = Field(default_factory=SharedExpenses)
    debts: list[DebtSettlement] = Field(default_factory=list)
    recent_transactions: list[Transaction] = Field(default_factory=list)
    top_categories: list[CategorySummary] = Field(default_factory=list)
    budget_alerts: list[BudgetAlert] = Field(default_factory=list)
    anomalies: list[AnomalyRecord] = Field(default_factory=list)
    health: HealthAnalysis | None = None
