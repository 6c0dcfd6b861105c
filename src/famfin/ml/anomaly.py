"""Anomaly detection for individual transactions and aggregate spending."""

import logging
from collections import Counter
from collections.abc import Mapping, Sequence
from datetime import date, timedelta
from typing import Any

import numpy as np

from ..core.config import AnomalyConfig, TrendConfig, resolve_config
from ..core.models import (
    AnomalyRecord,
    AnomalySeverity,
    AnomalyType,
    Category,
    CategoryAmountDetails,
    CategoryTrendDetails,
    DailyFrequencyDetails,
    DetectedAnomaly,
    HighAmountDetails,
    IQRSeverity,
    RareCategoryDetails,
    SpendingPatternReport,
    SpendingTrendDetails,
    Transaction,
    TransactionType,
    TrendDirection,
    VolatilityDetails,
)
from ..data.frames import category_groups, daily_totals
from .forecast import analyze_trend, detect_anomalies_iqr, is_anomaly

logger = logging.getLogger(__name__)

__all__ = [
    "AnomalyDetector",
    "analyze_spending_patterns",
    "create_anomaly_record",
    "detect_anomalies_iqr",
    "detect_transaction_anomalies",
    "is_anomaly",
]


class AnomalyDetector:
    """Flag unusual transactions and spending patterns."""

    def __init__(
        self,
        config: AnomalyConfig | Mapping[str, Any] | None = None,
        trend_config: TrendConfig | Mapping[str, Any] | None = None,
    ):
        self.config = resolve_config(AnomalyConfig, config)
        self.trend_config = resolve_config(TrendConfig, trend_config)

    def detect_transaction_anomalies(
        self,
        transaction: Transaction,
        history: Sequence[Transaction],
        categories: Sequence[Category] = (),
        as_of: date | None = None,
    ) -> list[DetectedAnomaly]:
        """Run every transaction-level check; each contributes at most one anomaly.

        Args:
            transaction: Transaction to assess. Only expenses are checked.
            history: Past transactions; filtered to expenses inside the lookback window.
            categories: Categories used to name the transaction's category.
            as_of: End of the lookback window. Defaults to the transaction's date.
        """
        if transaction.type != TransactionType.EXPENSE:
            return []

        reference = as_of or transaction.date
        cutoff = reference - timedelta(days=self.config.lookback_days)
        relevant = [
            t
            for t in history
            if t.type == TransactionType.EXPENSE and cutoff <= t.date <= reference and t.id != transaction.id
        ]
        category_names = {c.id: c.name for c in categories}

        checks = [
            self._check_high_amount(transaction, relevant),
            self._check_category_amount(transaction, relevant, category_names),
            self._check_rare_category(transaction, relevant, category_names),
            self._check_daily_frequency(transaction, relevant),
        ]
        anomalies = [anomaly for anomaly in checks if anomaly is not None]

        if anomalies:
            logger.info(
                "Transaction %s: %d anomalies (%s)",
                transaction.id,
                len(anomalies),
                ", ".join(a.type.value for a in anomalies),
            )
        return anomalies

    def _check_high_amount(self, transaction: Transaction, history: list[Transaction]) -> DetectedAnomaly | None:
        amounts = [t.amount for t in history]
        if len(amounts) < self.config.min_transactions:
            logger.debug("Not enough history for amount check: %d transactions", len(amounts))
            return None

        result = is_anomaly(transaction.amount, amounts, self.config.amount_threshold)
        if not result.is_anomaly:
            return None

        average = float(np.mean(amounts))
        deviation_percent = (transaction.amount - average) / average * 100 if average else 0.0

        if result.degenerate or abs(result.z_score) > self.config.alert_z_score:
            severity = AnomalySeverity.ALERT
        elif abs(result.z_score) > self.config.warning_z_score:
            severity = AnomalySeverity.WARNING
        else:
            severity = AnomalySeverity.INFO

        direction = "above" if deviation_percent >= 0 else "below"
        return DetectedAnomaly(
            type=AnomalyType.HIGH_AMOUNT,
            severity=severity,
            message=f"Amount is {abs(round(deviation_percent))}% {direction} average",
            details=HighAmountDetails(
                transaction_id=transaction.id,
                expected_value=round(average, 2),
                actual_value=transaction.amount,
                z_score=result.z_score,
                historical_average=round(average, 2),
                deviation_percent=round(deviation_percent, 1),
            ),
        )

    def _check_category_amount(
        self, transaction: Transaction, history: list[Transaction], category_names: dict[str, str]
    ) -> DetectedAnomaly | None:
        if not transaction.category_id:
            return None

        amounts = [t.amount for t in history if t.category_id == transaction.category_id]
        if len(amounts) < self.config.min_transactions:
            return None

        result = detect_anomalies_iqr(transaction.amount, amounts, self.config.iqr_multiplier)
        if not result.is_anomaly:
            return None

        average = float(np.mean(amounts))
        category = category_names.get(transaction.category_id, transaction.category_id)
        return DetectedAnomaly(
            type=AnomalyType.UNUSUAL_CATEGORY,
            severity=AnomalySeverity.ALERT if result.severity == IQRSeverity.EXTREME else AnomalySeverity.WARNING,
            message=f'Unusual amount for "{category}"',
            details=CategoryAmountDetails(
                transaction_id=transaction.id,
                category=category,
                expected_value=round(average, 2),
                actual_value=transaction.amount,
                historical_average=round(average, 2),
                iqr_severity=result.severity,
            ),
        )

    def _check_rare_category(
        self, transaction: Transaction, history: list[Transaction], category_names: dict[str, str]
    ) -> DetectedAnomaly | None:
        if not transaction.category_id or len(history) <= self.config.rare_category_min_history:
            return None

        counts = Counter(t.category_id for t in history if t.category_id)
        share = counts[transaction.category_id] / len(history)
        if share >= self.config.rare_category_share:
            return None

        name = category_names.get(transaction.category_id)
        return DetectedAnomaly(
            type=AnomalyType.NEW_MERCHANT,
            severity=AnomalySeverity.INFO,
            message=f'Rarely used category: "{name or "unknown"}"',
            details=RareCategoryDetails(
                transaction_id=transaction.id,
                category=name,
                category_share=round(share, 4),
            ),
        )

    def _check_daily_frequency(self, transaction: Transaction, history: list[Transaction]) -> DetectedAnomaly | None:
        same_day = sum(1 for t in history if t.date == transaction.date)
        average_daily = len(history) / self.config.lookback_days

        if same_day <= self.config.daily_count_min or same_day <= average_daily * self.config.daily_count_multiplier:
            return None

        return DetectedAnomaly(
            type=AnomalyType.FREQUENCY,
            severity=AnomalySeverity.WARNING,
            message=f"{same_day + 1} transactions in one day, more than usual",
            details=DailyFrequencyDetails(
                transaction_id=transaction.id,
                actual_value=same_day + 1,
                historical_average=round(average_daily, 2),
            ),
        )

    def analyze_spending_patterns(
        self, transactions: Sequence[Transaction], categories: Sequence[Category] = ()
    ) -> SpendingPatternReport:
        """Look for rising categories, rising daily spending and erratic spending."""
        expenses = [t for t in transactions if t.type == TransactionType.EXPENSE]
        if len(expenses) < self.config.min_transactions:
            logger.debug("Not enough expenses for pattern analysis: %d", len(expenses))
            return SpendingPatternReport(
                status="insufficient_data", overall_assessment="Insufficient data for analysis"
            )

        category_names = {c.id: c.name for c in categories}
        category_anomalies = []
        for category_id, group in category_groups(expenses).items():
            trend = analyze_trend([t.amount for t in group], self.trend_config)
            if trend.direction != TrendDirection.UP or trend.change_percent <= self.config.category_increase_percent:
                continue

            name = category_names.get(category_id, category_id)
            category_anomalies.append(
                DetectedAnomaly(
                    type=AnomalyType.UNUSUAL_CATEGORY,
                    severity=AnomalySeverity.ALERT
                    if trend.change_percent > self.config.category_alert_percent
                    else AnomalySeverity.WARNING,
                    message=f'Spending in "{name}" grew by {trend.change_percent}%',
                    details=CategoryTrendDetails(
                        category=category_id,
                        deviation_percent=trend.change_percent,
                        historical_average=trend.average,
                    ),
                )
            )

        trend_anomalies = []
        overall = analyze_trend([amount for _, amount in daily_totals(expenses)], self.trend_config)

        if overall.direction == TrendDirection.UP and overall.change_percent > self.config.spending_increase_percent:
            trend_anomalies.append(
                DetectedAnomaly(
                    type=AnomalyType.FREQUENCY,
                    severity=AnomalySeverity.WARNING,
                    message=f"Total spending grew by {overall.change_percent}%",
                    details=SpendingTrendDetails(
                        deviation_percent=overall.change_percent,
                        historical_average=overall.average,
                    ),
                )
            )

        if overall.volatility > self.config.volatility_threshold:
            trend_anomalies.append(
                DetectedAnomaly(
                    type=AnomalyType.FREQUENCY,
                    severity=AnomalySeverity.INFO,
                    message="Spending is highly irregular",
                    details=VolatilityDetails(deviation_percent=round(overall.volatility * 100)),
                )
            )

        total = len(category_anomalies) + len(trend_anomalies)
        if total == 0:
            status, assessment = "normal", "Spending is normal"
        elif total <= 2:
            status, assessment = "minor_deviations", "Minor deviations detected"
        else:
            status, assessment = "requires_attention", "Requires attention: anomalies detected"

        return SpendingPatternReport(
            status=status,
            overall_assessment=assessment,
            category_anomalies=category_anomalies,
            trend_anomalies=trend_anomalies,
        )


def detect_transaction_anomalies(
    transaction: Transaction,
    history: Sequence[Transaction],
    categories: Sequence[Category] = (),
    config: AnomalyConfig | Mapping[str, Any] | None = None,
    as_of: date | None = None,
) -> list[DetectedAnomaly]:
    return AnomalyDetector(config).detect_transaction_anomalies(transaction, history, categories, as_of)


def analyze_spending_patterns(
    transactions: Sequence[Transaction],
    config: AnomalyConfig | Mapping[str, Any] | None = None,
    categories: Sequence[Category] = (),
) -> SpendingPatternReport:
    return AnomalyDetector(config).analyze_spending_patterns(transactions, categories)


def create_anomaly_record(
    anomaly: DetectedAnomaly, transaction_id: str | None = None, family_id: str | None = None
) -> AnomalyRecord:
    """Shape an anomaly for storage; the caller persists it."""
    return AnomalyRecord(
        family_id=family_id,
        transaction_id=transaction_id,
        type=anomaly.type,
        severity=anomaly.severity,
        message=anomaly.message,
        details=anomaly.details,
    )
