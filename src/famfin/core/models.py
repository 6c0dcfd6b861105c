"""Core data models for famfin."""

from datetime import date, datetime, timedelta
from enum import Enum
from typing import Annotated, Any, Literal

from dateutil.relativedelta import relativedelta
from pydantic import BaseModel, ConfigDict, Field, field_validator


def _coerce_date(value: Any) -> Any:
    """Accept datetimes and ISO timestamps where a calendar date is expected."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str) and "T" in value:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    return value


class FrozenModel(BaseModel):
    """Base for engine inputs and outputs; instances are immutable."""

    model_config = ConfigDict(frozen=True)


class TransactionType(str, Enum):
    """Transaction types."""

    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class CategoryType(str, Enum):
    """Category types for transactions."""

    INCOME = "income"
    EXPENSE = "expense"


class BudgetPeriod(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class AnomalyType(str, Enum):
    HIGH_AMOUNT = "high_amount"
    UNUSUAL_CATEGORY = "unusual_category"
    FREQUENCY = "frequency"
    NEW_MERCHANT = "new_merchant"


class AnomalySeverity(str, Enum):
    """Anomaly criticality tiers, ordered info < warning < alert."""

    INFO = "info"
    WARNING = "warning"
    ALERT = "alert"

    @property
    def rank(self) -> int:
        return ("info", "warning", "alert").index(self.value)


class TrendDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class TrendLabel(str, Enum):
    """Trend wording used in health metrics."""

    INCREASING = "increasing"
    STABLE = "stable"
    DECREASING = "decreasing"


class IQRSeverity(str, Enum):
    NONE = "none"
    MILD = "mild"
    EXTREME = "extreme"


class Grade(str, Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    F = "F"


class RecommendationCategory(str, Enum):
    SAVINGS = "savings"
    BUDGET = "budget"
    DEBT = "debt"
    STABILITY = "stability"
    GENERAL = "general"


class RecommendationPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def order(self) -> int:
        return ("high", "medium", "low").index(self.value)


# Inputs supplied by the persistence layer


class Transaction(FrozenModel):
    """A recorded income, expense or transfer."""

    id: str
    type: TransactionType
    amount: float = Field(gt=0.0)
    currency: str = "RUB"
    date: date
    category_id: str | None = None
    description: str | None = None
    is_shared: bool = False
    is_credit: bool = False
    tags: list[str] = Field(default_factory=list)
    user_id: str | None = None

    coerce_dates = field_validator("date", mode="before")(_coerce_date)


class Category(FrozenModel):
    """Category with lowercase keyword hints for the categorizer."""

    id: str
    name: str = Field(..., min_length=1)
    type: CategoryType = CategoryType.EXPENSE
    keywords: list[str] = Field(default_factory=list)
    parent_id: str | None = None

    @field_validator("keywords")
    @classmethod
    def validate_keywords(cls, v: list[str]) -> list[str]:
        """Normalize keyword hints."""
        return [keyword.strip().lower() for keyword in v if keyword.strip()]


class CategoryRule(FrozenModel):
    """User-authored categorization override."""

    id: str | None = None
    category_id: str
    pattern: str = Field(..., min_length=1)
    priority: int = 0
    match_count: int = Field(0, ge=0)


class Budget(FrozenModel):
    """Spending limit for one category, or for all expenses when category_id is None."""

    id: str
    name: str = ""
    category_id: str | None = None
    amount: float = Field(gt=0.0)
    period: BudgetPeriod = BudgetPeriod.MONTHLY
    alert_threshold: int = Field(80, ge=1, le=100)
    start_date: date
    end_date: date | None = None
    is_active: bool = True

    coerce_dates = field_validator("start_date", "end_date", mode="before")(_coerce_date)

    def is_in_effect(self, on: date) -> bool:
        """Check whether the budget is active on the given day."""
        if not self.is_active or self.start_date > on:
            return False
        return self.end_date is None or self.end_date >= on

    def period_window(self, on: date) -> tuple[date, date]:
        """First and last day of the budget period containing the given day."""
        if self.period == BudgetPeriod.WEEKLY:
            start = on - timedelta(days=on.weekday())
            return start, start + timedelta(days=6)
        if self.period == BudgetPeriod.YEARLY:
            return date(on.year, 1, 1), date(on.year, 12, 31)
        start = on.replace(day=1)
        return start, start + relativedelta(months=1) - timedelta(days=1)


class Goal(FrozenModel):
    """Savings goal."""

    id: str
    name: str = ""
    target_amount: float = Field(gt=0.0)
    current_amount: float = Field(0.0, ge=0.0)
    deadline: date | None = None
    is_completed: bool = False

    coerce_dates = field_validator("deadline", mode="before")(_coerce_date)


class CategorizationRequest(FrozenModel):
    """Description awaiting categorization."""

    id: str
    description: str | None = None


class SeriesPoint(FrozenModel):
    """Dated amount in a time series."""

    date: date
    amount: float

    coerce_dates = field_validator("date", mode="before")(_coerce_date)


# Categorizer outputs


class AlternativePrediction(FrozenModel):
    category_id: str
    category_name: str
    confidence: float = Field(ge=0.0, le=1.0)


class CategoryPrediction(FrozenModel):
    """Categorization result with an optional runner-up."""

    category_id: str
    category_name: str
    confidence: float = Field(ge=0.0, le=1.0)
    alternative: AlternativePrediction | None = None


class LearningPattern(FrozenModel):
    pattern: str
    category_id: str
    count: int


class RuleSuggestion(FrozenModel):
    """Candidate rule derived from recurring uncategorized descriptions."""

    pattern: str
    category_id: str
    category_name: str
    confidence: float = Field(ge=0.0, le=1.0)
    transaction_count: int


# Forecast engine outputs


class RegressionResult(FrozenModel):
    slope: float
    intercept: float
    r_squared: float
    prediction: float = Field(ge=0.0)
    confidence: float = Field(ge=0.0, le=1.0)


class Forecast(FrozenModel):
    date: date
    predicted: float = Field(ge=0.0)
    confidence_low: float = Field(ge=0.0)
    confidence_high: float


class TrendAnalysis(FrozenModel):
    direction: TrendDirection = TrendDirection.STABLE
    change_percent: float = 0.0
    average: float = 0.0
    min: float = 0.0
    max: float = 0.0
    volatility: float = 0.0


class ZScoreResult(FrozenModel):
    """Z-score test outcome.

    ``expected_range`` is None when there was too little history to judge.
    ``degenerate`` marks a history with zero spread, where the z-score is undefined.
    """

    is_anomaly: bool
    z_score: float = 0.0
    expected_range: tuple[float, float] | None = None
    degenerate: bool = False


class IQRResult(FrozenModel):
    is_anomaly: bool
    severity: IQRSeverity = IQRSeverity.NONE
    q1: float | None = None
    q3: float | None = None
    iqr: float | None = None


# Anomaly outputs; details are discriminated by ``kind``


class HighAmountDetails(FrozenModel):
    kind: Literal["high_amount"] = "high_amount"
    transaction_id: str
    expected_value: float
    actual_value: float
    z_score: float
    historical_average: float
    deviation_percent: float


class CategoryAmountDetails(FrozenModel):
    kind: Literal["category_amount"] = "category_amount"
    transaction_id: str
    category: str
    expected_value: float
    actual_value: float
    historical_average: float
    iqr_severity: IQRSeverity


class RareCategoryDetails(FrozenModel):
    kind: Literal["rare_category"] = "rare_category"
    transaction_id: str
    category: str | None
    category_share: float


class DailyFrequencyDetails(FrozenModel):
    kind: Literal["daily_frequency"] = "daily_frequency"
    transaction_id: str
    actual_value: int
    historical_average: float


class CategoryTrendDetails(FrozenModel):
    kind: Literal["category_trend"] = "category_trend"
    category: str
    deviation_percent: float
    historical_average: float


class SpendingTrendDetails(FrozenModel):
    kind: Literal["spending_trend"] = "spending_trend"
    deviation_percent: float
    historical_average: float


class VolatilityDetails(FrozenModel):
    kind: Literal["volatility"] = "volatility"
    deviation_percent: float


AnomalyDetails = Annotated[
    HighAmountDetails
    | CategoryAmountDetails
    | RareCategoryDetails
    | DailyFrequencyDetails
    | CategoryTrendDetails
    | SpendingTrendDetails
    | VolatilityDetails,
    Field(discriminator="kind"),
]


class DetectedAnomaly(FrozenModel):
    type: AnomalyType
    severity: AnomalySeverity
    message: str
    details: AnomalyDetails


class SpendingPatternReport(FrozenModel):
    """Aggregate spending assessment."""

    status: Literal["insufficient_data", "normal", "minor_deviations", "requires_attention"]
    overall_assessment: str
    category_anomalies: list[DetectedAnomaly] = Field(default_factory=list)
    trend_anomalies: list[DetectedAnomaly] = Field(default_factory=list)


class AnomalyRecord(FrozenModel):
    """Anomaly in the shape the persistence layer stores."""

    family_id: str | None = None
    transaction_id: str | None = None
    type: AnomalyType
    severity: AnomalySeverity
    message: str
    details: AnomalyDetails
    is_dismissed: bool = False


# Health outputs


class HealthMetrics(FrozenModel):
    total_income: float = 0.0
    total_expense: float = 0.0
    net_savings: float = 0.0
    savings_rate: float = 0.0
    budgets_on_track: int = 0
    budgets_exceeded: int = 0
    budget_adherence_rate: float = 1.0
    avg_daily_expense: float = 0.0
    expense_volatility: float = 0.0
    largest_expense: float = 0.0
    credit_usage: float = 0.0
    credit_ratio: float = 0.0
    goals_progress: float = 1.0
    goals_on_track: int = 0
    expense_trend: TrendLabel = TrendLabel.STABLE
    income_trend: TrendLabel = TrendLabel.STABLE


class HealthScore(FrozenModel):
    overall: int = Field(ge=0, le=100)
    savings: float = Field(ge=0.0, le=100.0)
    budget: float = Field(ge=0.0, le=100.0)
    debt: float = Field(ge=0.0, le=100.0)
    stability: float = Field(ge=0.0, le=100.0)
    grade: Grade
    emoji: str
    summary: str


class SavingsAdvice(FrozenModel):
    kind: Literal["savings"] = "savings"
    savings_rate: float


class BudgetAdvice(FrozenModel):
    kind: Literal["budget"] = "budget"
    budgets_exceeded: int
    budgets_total: int


class DebtAdvice(FrozenModel):
    kind: Literal["debt"] = "debt"
    credit_ratio: float


class StabilityAdvice(FrozenModel):
    kind: Literal["stability"] = "stability"
    expense_volatility: float
    expense_trend: TrendLabel
    income_trend: TrendLabel


class GeneralAdvice(FrozenModel):
    kind: Literal["general"] = "general"
    overall: int


RecommendationDetails = Annotated[
    SavingsAdvice | BudgetAdvice | DebtAdvice | StabilityAdvice | GeneralAdvice,
    Field(discriminator="kind"),
]


class HealthRecommendation(FrozenModel):
    category: RecommendationCategory
    priority: RecommendationPriority
    title: str
    description: str
    action: str | None = None
    details: RecommendationDetails


class HealthTrends(FrozenModel):
    income: TrendAnalysis
    expense: TrendAnalysis
    savings: TrendAnalysis


class HealthComparison(FrozenModel):
    vs_last_month: int = 0
    vs_last_quarter: int = 0


class HealthAnalysis(FrozenModel):
    score: HealthScore
    metrics: HealthMetrics
    recommendations: list[HealthRecommendation]
    trends: HealthTrends
    comparison: HealthComparison


class HealthSnapshot(FrozenModel):
    """Stored health record, supplied back to the engine for comparisons."""

    family_id: str | None = None
    snapshot_date: date
    overall_score: int = Field(ge=0, le=100)
    savings_score: float | None = None
    budget_score: float | None = None
    debt_score: float | None = None
    stability_score: float | None = None
    metrics: HealthMetrics | None = None

    coerce_dates = field_validator("snapshot_date", mode="before")(_coerce_date)
