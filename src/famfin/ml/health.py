"""Financial health scoring and recommendations."""

import logging
import math
from collections.abc import Mapping, Sequence
from datetime import date
from typing import Any

import numpy as np
from dateutil.relativedelta import relativedelta

from ..core.config import HealthConfig, ScoreThresholds, TrendConfig, resolve_config
from ..core.models import (
    Budget,
    BudgetAdvice,
    DebtAdvice,
    GeneralAdvice,
    Goal,
    Grade,
    HealthAnalysis,
    HealthComparison,
    HealthMetrics,
    HealthRecommendation,
    HealthScore,
    HealthSnapshot,
    HealthTrends,
    RecommendationCategory,
    RecommendationPriority,
    SavingsAdvice,
    StabilityAdvice,
    Transaction,
    TransactionType,
    TrendDirection,
    TrendLabel,
)
from ..data.frames import daily_totals, monthly_totals
from .forecast import analyze_trend, coefficient_of_variation

logger = logging.getLogger(__name__)

TREND_LABELS = {
    TrendDirection.UP: TrendLabel.INCREASING,
    TrendDirection.DOWN: TrendLabel.DECREASING,
    TrendDirection.STABLE: TrendLabel.STABLE,
}


def _lerp(value: float, start: float, end: float, score_start: float, score_end: float) -> float:
    """Linear interpolation of a score between two metric thresholds."""
    if end == start:
        return score_end
    return score_start + (score_end - score_start) * (value - start) / (end - start)


def _clamp_score(score: float) -> float:
    return min(100.0, max(0.0, score))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class HealthScorer:
    """Compute a 0-100 financial health score with recommendations."""

    def __init__(
        self,
        config: HealthConfig | Mapping[str, Any] | None = None,
        trend_config: TrendConfig | Mapping[str, Any] | None = None,
    ):
        self.config = resolve_config(HealthConfig, config)
        self.trend_config = resolve_config(TrendConfig, trend_config)

    def analyze(
        self,
        transactions: Sequence[Transaction],
        budgets: Sequence[Budget],
        goals: Sequence[Goal],
        previous_snapshots: Sequence[HealthSnapshot] = (),
        today: date | None = None,
    ) -> HealthAnalysis:
        """Analyze the calendar month containing ``today`` (defaults to the current date)."""
        today = today or date.today()

        monthly = monthly_totals(transactions)
        trends = HealthTrends(
            income=analyze_trend(monthly["income"].tolist(), self.trend_config),
            expense=analyze_trend(monthly["expense"].tolist(), self.trend_config),
            savings=analyze_trend((monthly["income"] - monthly["expense"]).tolist(), self.trend_config),
        )

        metrics = self.calculate_metrics(transactions, budgets, goals, today, trends)
        score = self.calculate_score(metrics)
        recommendations = self.generate_recommendations(score, metrics)
        comparison = self.calculate_comparison(score.overall, previous_snapshots)

        logger.info("Health score %d (%s) for month of %s", score.overall, score.grade.value, today.isoformat())

        return HealthAnalysis(
            score=score,
            metrics=metrics,
            recommendations=recommendations,
            trends=trends,
            comparison=comparison,
        )

    def calculate_metrics(
        self,
        transactions: Sequence[Transaction],
        budgets: Sequence[Budget],
        goals: Sequence[Goal],
        today: date,
        trends: HealthTrends,
    ) -> HealthMetrics:
        month_start = today.replace(day=1)
        next_month = month_start + relativedelta(months=1)
        month_txns = [t for t in transactions if month_start <= t.date < next_month]

        income = [t for t in month_txns if t.type == TransactionType.INCOME]
        expenses = [t for t in month_txns if t.type == TransactionType.EXPENSE]

        total_income = sum(t.amount for t in income)
        total_expense = sum(t.amount for t in expenses)
        net_savings = total_income - total_expense
        savings_rate = net_savings / total_income if total_income > 0 else 0.0

        on_track, exceeded = self._budget_status(transactions, budgets, today)
        budget_adherence_rate = on_track / (on_track + exceeded) if on_track + exceeded > 0 else 1.0

        daily = [amount for _, amount in daily_totals(expenses)]
        credit_usage = sum(t.amount for t in expenses if t.is_credit)

        active_goals = [g for g in goals if not g.is_completed]
        goals_progress = (
            float(np.mean([min(1.0, g.current_amount / g.target_amount) for g in active_goals]))
            if active_goals
            else 1.0
        )

        return HealthMetrics(
            total_income=round(total_income, 2),
            total_expense=round(total_expense, 2),
            net_savings=round(net_savings, 2),
            savings_rate=savings_rate,
            budgets_on_track=on_track,
            budgets_exceeded=exceeded,
            budget_adherence_rate=budget_adherence_rate,
            avg_daily_expense=round(float(np.mean(daily)), 2) if daily else 0.0,
            expense_volatility=coefficient_of_variation(daily),
            largest_expense=max((t.amount for t in expenses), default=0.0),
            credit_usage=round(credit_usage, 2),
            credit_ratio=credit_usage / total_expense if total_expense > 0 else 0.0,
            goals_progress=goals_progress,
            goals_on_track=self._goals_on_track(active_goals, net_savings, today),
            expense_trend=TREND_LABELS[trends.expense.direction],
            income_trend=TREND_LABELS[trends.income.direction],
        )

    def _budget_status(
        self, transactions: Sequence[Transaction], budgets: Sequence[Budget], today: date
    ) -> tuple[int, int]:
        """Count in-effect budgets that are on track and exceeded within their current period."""
        on_track = exceeded = 0
        for budget in budgets:
            if not budget.is_in_effect(today):
                continue

            start, end = budget.period_window(today)
            spent = sum(
                t.amount
                for t in transactions
                if t.type == TransactionType.EXPENSE
                and start <= t.date <= end
                and (budget.category_id is None or t.category_id == budget.category_id)
            )
            if spent <= budget.amount:
                on_track += 1
            else:
                exceeded += 1
        return on_track, exceeded

    def _goals_on_track(self, goals: Sequence[Goal], net_savings: float, today: date) -> int:
        """Goals without a deadline, or whose required daily saving is covered by this month's pace."""
        average_daily_savings = net_savings / today.day
        on_track = 0
        for goal in goals:
            if goal.deadline is None:
                on_track += 1
                continue

            remaining = goal.target_amount - goal.current_amount
            days_left = max(1, (goal.deadline - today).days)
            if average_daily_savings >= remaining / days_left * self.config.goal_on_track_ratio:
                on_track += 1
        return on_track

    def calculate_score(self, metrics: HealthMetrics) -> HealthScore:
        weights = self.config.weights
        savings = self.savings_score(metrics)
        budget = self.budget_score(metrics)
        debt = self.debt_score(metrics)
        stability = self.stability_score(metrics)

        overall = _round_half_up(
            savings * weights.savings + budget * weights.budget + debt * weights.debt + stability * weights.stability
        )
        overall = min(100, max(0, overall))

        bands = sorted(self.config.grade_bands, key=lambda b: b.min_score, reverse=True)
        band = next((b for b in bands if overall >= b.min_score), bands[-1])

        return HealthScore(
            overall=overall,
            savings=round(savings, 1),
            budget=round(budget, 1),
            debt=round(debt, 1),
            stability=round(stability, 1),
            grade=Grade(band.grade),
            emoji=band.emoji,
            summary=band.summary,
        )

    def savings_score(self, metrics: HealthMetrics) -> float:
        t: ScoreThresholds = self.config.savings_thresholds
        rate = metrics.savings_rate

        if rate >= t.excellent:
            return 100.0
        if rate >= t.good:
            return _lerp(rate, t.good, t.excellent, 70, 100)
        if rate >= t.fair:
            return _lerp(rate, t.fair, t.good, 40, 70)
        if rate > t.poor:
            return _lerp(rate, t.poor, t.fair, 0, 40)

        # Spending more than earning
        return _clamp_score(20 + (rate - t.poor) * 100)

    def budget_score(self, metrics: HealthMetrics) -> float:
        t = self.config.budget_thresholds
        rate = metrics.budget_adherence_rate

        if metrics.budgets_on_track + metrics.budgets_exceeded == 0:
            return self.config.no_budget_score
        if rate >= t.excellent:
            return 100.0
        if rate >= t.good:
            return _lerp(rate, t.good, t.excellent, 70, 100)
        if rate >= t.fair:
            return _lerp(rate, t.fair, t.good, 40, 70)
        return _clamp_score(_lerp(rate, t.poor, t.fair, 0, 40))

    def debt_score(self, metrics: HealthMetrics) -> float:
        t = self.config.debt_thresholds
        ratio = metrics.credit_ratio

        if ratio <= t.excellent:
            return 100.0
        if ratio <= t.good:
            return _lerp(ratio, t.good, t.excellent, 70, 100)
        if ratio <= t.fair:
            return _lerp(ratio, t.fair, t.good, 40, 70)
        return _clamp_score(40 - (ratio - t.poor) * 100)

    def stability_score(self, metrics: HealthMetrics) -> float:
        t = self.config.stability_thresholds
        volatility = metrics.expense_volatility

        if volatility <= t.excellent:
            base = 100.0
        elif volatility <= t.good:
            base = _lerp(volatility, t.good, t.excellent, 70, 100)
        elif volatility <= t.fair:
            base = _lerp(volatility, t.fair, t.good, 40, 70)
        else:
            base = 40 - (volatility - t.poor) * 50

        penalty = 0.0
        if metrics.expense_trend == TrendLabel.INCREASING:
            penalty += self.config.trend_penalty
        if metrics.income_trend == TrendLabel.DECREASING:
            penalty += self.config.trend_penalty

        return _clamp_score(base - penalty)

    def generate_recommendations(self, score: HealthScore, metrics: HealthMetrics) -> list[HealthRecommendation]:
        """One or more recommendations per weak sub-score, most urgent first."""
        threshold = self.config.recommendation_threshold
        recommendations = []

        if score.savings < threshold:
            recommendations.append(self._savings_recommendation(metrics))

        if score.budget < threshold:
            total = metrics.budgets_on_track + metrics.budgets_exceeded
            recommendations.append(
                HealthRecommendation(
                    category=RecommendationCategory.BUDGET,
                    priority=RecommendationPriority.HIGH
                    if metrics.budgets_exceeded > self.config.many_budgets_exceeded
                    else RecommendationPriority.MEDIUM,
                    title="Budgets exceeded",
                    description=f"{metrics.budgets_exceeded} of {total} budgets are over their limit.",
                    action="Review the limits or cut spending in these categories",
                    details=BudgetAdvice(budgets_exceeded=metrics.budgets_exceeded, budgets_total=total),
                )
            )

        if score.debt < threshold:
            recommendations.append(
                HealthRecommendation(
                    category=RecommendationCategory.DEBT,
                    priority=RecommendationPriority.HIGH
                    if metrics.credit_ratio > self.config.high_credit_ratio
                    else RecommendationPriority.MEDIUM,
                    title="High credit usage",
                    description=f"{round(metrics.credit_ratio * 100)}% of spending is on credit, "
                    "which can build up debt.",
                    action="Use credit only for necessary purchases",
                    details=DebtAdvice(credit_ratio=round(metrics.credit_ratio, 4)),
                )
            )

        if score.stability < threshold:
            recommendations.extend(self._stability_recommendations(metrics))

        if not recommendations:
            recommendations.append(
                HealthRecommendation(
                    category=RecommendationCategory.GENERAL,
                    priority=RecommendationPriority.LOW,
                    title="Keep it up! 🎉",
                    description="Your finances are in great shape.",
                    action="Consider investing more or building an emergency fund",
                    details=GeneralAdvice(overall=score.overall),
                )
            )

        recommendations.sort(key=lambda r: r.priority.order)
        return recommendations

    def _savings_recommendation(self, metrics: HealthMetrics) -> HealthRecommendation:
        rate = metrics.savings_rate
        details = SavingsAdvice(savings_rate=round(rate, 4))

        if rate < 0:
            return HealthRecommendation(
                category=RecommendationCategory.SAVINGS,
                priority=RecommendationPriority.HIGH,
                title="Spending exceeds income",
                description="You are spending more than you earn, which leads to debt.",
                action="Review your largest expense categories and look for savings",
                details=details,
            )
        if rate < self.config.savings_thresholds.fair:
            return HealthRecommendation(
                category=RecommendationCategory.SAVINGS,
                priority=RecommendationPriority.MEDIUM,
                title="Low savings rate",
                description=f"Your savings rate is {round(rate * 100)}%. At least 10% is recommended.",
                action="Set aside 10% of income as soon as it arrives",
                details=details,
            )
        return HealthRecommendation(
            category=RecommendationCategory.SAVINGS,
            priority=RecommendationPriority.LOW,
            title="Savings could be higher",
            description=f"Your savings rate is {round(rate * 100)}%. Aim for 20% or more.",
            action="Automate a monthly transfer to savings",
            details=details,
        )

    def _stability_recommendations(self, metrics: HealthMetrics) -> list[HealthRecommendation]:
        details = StabilityAdvice(
            expense_volatility=round(metrics.expense_volatility, 4),
            expense_trend=metrics.expense_trend,
            income_trend=metrics.income_trend,
        )
        recommendations = []

        if metrics.expense_trend == TrendLabel.INCREASING:
            recommendations.append(
                HealthRecommendation(
                    category=RecommendationCategory.STABILITY,
                    priority=RecommendationPriority.MEDIUM,
                    title="Spending is rising",
                    description="Your expenses show an upward trend.",
                    action="Check for new recurring costs you can drop",
                    details=details,
                )
            )
        if metrics.income_trend == TrendLabel.DECREASING:
            recommendations.append(
                HealthRecommendation(
                    category=RecommendationCategory.STABILITY,
                    priority=RecommendationPriority.MEDIUM,
                    title="Income is falling",
                    description="Your income shows a downward trend.",
                    action="Adjust fixed costs to the lower income level",
                    details=details,
                )
            )
        if metrics.expense_volatility > self.config.high_volatility or not recommendations:
            recommendations.append(
                HealthRecommendation(
                    category=RecommendationCategory.STABILITY,
                    priority=RecommendationPriority.LOW,
                    title="Irregular spending",
                    description="Your daily spending varies a lot, which makes planning harder.",
                    action="Try setting a daily limit for everyday purchases",
                    details=details,
                )
            )
        return recommendations

    @staticmethod
    def calculate_comparison(overall: int, snapshots: Sequence[HealthSnapshot]) -> HealthComparison:
        """Score change against the latest snapshot and the one three snapshots back."""
        if not snapshots:
            return HealthComparison()

        ordered = sorted(snapshots, key=lambda s: s.snapshot_date, reverse=True)
        last_month = ordered[0].overall_score
        last_quarter = ordered[2].overall_score if len(ordered) > 2 else last_month

        return HealthComparison(vs_last_month=overall - last_month, vs_last_quarter=overall - last_quarter)


def analyze_financial_health(
    transactions: Sequence[Transaction],
    budgets: Sequence[Budget],
    goals: Sequence[Goal],
    previous_snapshots: Sequence[HealthSnapshot] = (),
    today: date | None = None,
    config: HealthConfig | Mapping[str, Any] | None = None,
) -> HealthAnalysis:
    return HealthScorer(config).analyze(transactions, budgets, goals, previous_snapshots, today)


def create_health_snapshot(
    analysis: HealthAnalysis, snapshot_date: date, family_id: str | None = None
) -> HealthSnapshot:
    """Shape an analysis for storage; the caller persists it."""
    return HealthSnapshot(
        family_id=family_id,
        snapshot_date=snapshot_date,
        overall_score=analysis.score.overall,
        savings_score=analysis.score.savings,
        budget_score=analysis.score.budget,
        debt_score=analysis.score.debt,
        stability_score=analysis.score.stability,
        metrics=analysis.metrics,
    )
