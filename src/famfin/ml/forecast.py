"""Numeric series utilities: regression, forecasting, trends and outlier tests.

Everything here is a pure function of its arguments. Only ``linear_regression``
raises; sparse input elsewhere degrades to empty or neutral results.
"""

import logging
from collections.abc import Mapping, Sequence
from typing import Any

import numpy as np
from dateutil.relativedelta import relativedelta

from ..core.config import TrendConfig, resolve_config
from ..core.exceptions import InvalidInputError
from ..core.models import (
    Forecast,
    IQRResult,
    IQRSeverity,
    RegressionResult,
    SeriesPoint,
    TrendAnalysis,
    TrendDirection,
    ZScoreResult,
)

logger = logging.getLogger(__name__)

MIN_ZSCORE_HISTORY = 5
MIN_IQR_HISTORY = 4


def population_std(values: Sequence[float]) -> float:
    """Population standard deviation; 0 for fewer than two values."""
    if len(values) < 2:
        return 0.0
    return float(np.std(np.asarray(values, dtype=float)))


def coefficient_of_variation(values: Sequence[float]) -> float:
    """Standard deviation over mean; 0 when undefined."""
    if len(values) < 2:
        return 0.0
    mean = float(np.mean(values))
    if mean == 0:
        return 0.0
    return population_std(values) / mean


def linear_regression(x_values: Sequence[float], y_values: Sequence[float]) -> RegressionResult:
    """Ordinary least squares fit of y = slope * x + intercept.

    Args:
        x_values: Independent variable.
        y_values: Dependent variable, same length as ``x_values``.

    Returns:
        RegressionResult whose ``prediction`` is the fitted value one step past the
        series (x = n), floored at zero.

    Raises:
        InvalidInputError: If the lengths differ or fewer than two points are given.
    """
    if len(x_values) != len(y_values) or len(x_values) < 2:
        raise InvalidInputError("Arrays must have equal length and at least 2 points")

    x = np.asarray(x_values, dtype=float)
    y = np.asarray(y_values, dtype=float)
    n = len(x)

    x_mean = x.mean()
    y_mean = y.mean()

    denominator = float(np.sum((x - x_mean) ** 2))
    slope = float(np.sum((x - x_mean) * (y - y_mean))) / denominator if denominator != 0 else 0.0
    intercept = float(y_mean - slope * x_mean)

    ss_res = float(np.sum((y - (slope * x + intercept)) ** 2))
    ss_tot = float(np.sum((y - y_mean) ** 2))
    r_squared = 1 - ss_res / ss_tot if ss_tot != 0 else 0.0

    confidence = min(0.95, max(0.1, r_squared * (1 - 1 / n)))

    return RegressionResult(
        slope=slope,
        intercept=intercept,
        r_squared=r_squared,
        prediction=max(0.0, slope * n + intercept),
        confidence=confidence,
    )


def predict(regression: RegressionResult, x: float) -> float:
    """Fitted value at x; amounts are never modeled as negative."""
    return max(0.0, regression.slope * x + regression.intercept)


def forecast_expenses(
    series: Sequence[SeriesPoint],
    periods_ahead: int = 3,
    config: TrendConfig | Mapping[str, Any] | None = None,
) -> list[Forecast]:
    """Project a monthly series forward with widening confidence bands.

    Returns an empty list when fewer than three points are available.
    """
    cfg = resolve_config(TrendConfig, config)
    if len(series) < cfg.forecast_min_points:
        logger.debug("Skipping forecast: %d points, need %d", len(series), cfg.forecast_min_points)
        return []

    ordered = sorted(series, key=lambda p: p.date)
    amounts = [p.amount for p in ordered]
    regression = linear_regression(list(range(len(amounts))), amounts)
    std_dev = population_std(amounts)
    last_date = ordered[-1].date

    forecasts = []
    for i in range(1, periods_ahead + 1):
        predicted = predict(regression, len(amounts) - 1 + i)
        margin = std_dev * (1 + i * cfg.forecast_margin_growth)

        forecasts.append(
            Forecast(
                date=last_date + relativedelta(months=i),
                predicted=round(predicted, 2),
                confidence_low=round(max(0.0, predicted - margin), 2),
                confidence_high=round(predicted + margin, 2),
            )
        )

    return forecasts


def forecast_with_seasonality(
    monthly: Sequence[SeriesPoint],
    target_month: int,
    config: TrendConfig | Mapping[str, Any] | None = None,
) -> float:
    """Predict the amount for a calendar month (1-12) using trend and seasonal index."""
    cfg = resolve_config(TrendConfig, config)
    if not monthly:
        return 0.0

    amounts = [p.amount for p in monthly]
    overall_average = float(np.mean(amounts))
    if len(monthly) < cfg.seasonality_min_months:
        return round(overall_average, 2)

    by_month: dict[int, list[float]] = {}
    for point in monthly:
        by_month.setdefault(point.date.month, []).append(point.amount)

    seasonal_factor = 1.0
    if target_month in by_month and overall_average != 0:
        seasonal_factor = float(np.mean(by_month[target_month])) / overall_average

    recent = [p.amount for p in sorted(monthly, key=lambda p: p.date)[-cfg.seasonality_trend_window :]]
    regression = linear_regression(list(range(len(recent))), recent)
    trend_prediction = predict(regression, len(recent))

    return round(trend_prediction * seasonal_factor, 2)


def analyze_trend(values: Sequence[float], config: TrendConfig | Mapping[str, Any] | None = None) -> TrendAnalysis:
    """Classify a series as rising, falling or stable.

    ``change_percent`` compares the means of the first and second halves rather
    than using the regression slope.
    """
    cfg = resolve_config(TrendConfig, config)
    if len(values) < 2:
        single = float(values[0]) if values else 0.0
        return TrendAnalysis(average=single, min=single, max=single)

    regression = linear_regression(list(range(len(values))), values)
    arr = np.asarray(values, dtype=float)
    average = float(arr.mean())

    half = len(values) // 2
    first_half_avg = float(arr[:half].mean())
    second_half_avg = float(arr[half:].mean())
    change_percent = (second_half_avg - first_half_avg) / first_half_avg * 100 if first_half_avg != 0 else 0.0

    if average == 0:
        direction = TrendDirection.STABLE
    elif abs(regression.slope) / abs(average) < cfg.stable_slope_ratio or regression.r_squared < cfg.min_r_squared:
        direction = TrendDirection.STABLE
    elif regression.slope > 0:
        direction = TrendDirection.UP
    else:
        direction = TrendDirection.DOWN

    return TrendAnalysis(
        direction=direction,
        change_percent=round(change_percent, 1),
        average=round(average, 2),
        min=float(arr.min()),
        max=float(arr.max()),
        volatility=round(coefficient_of_variation(values), 2),
    )


def moving_average(values: Sequence[float], window: int) -> list[float]:
    """Simple moving average; the first ``window - 1`` points average what is available."""
    window = max(1, window)
    result = []
    for i in range(len(values)):
        start = max(0, i - window + 1)
        result.append(float(np.mean(values[start : i + 1])))
    return result


def exponential_moving_average(values: Sequence[float], alpha: float = 0.3) -> list[float]:
    """Exponential moving average seeded with the first value; higher alpha favors recent values."""
    if not values:
        return []

    alpha = min(1.0, max(0.0, alpha))
    result = [float(values[0])]
    for value in values[1:]:
        result.append(alpha * value + (1 - alpha) * result[-1])
    return result


def is_anomaly(value: float, history: Sequence[float], threshold: float = 2.5) -> ZScoreResult:
    """Z-score outlier test; needs at least five historical points."""
    if len(history) < MIN_ZSCORE_HISTORY:
        return ZScoreResult(is_anomaly=False)

    mean = float(np.mean(history))
    std_dev = population_std(history)

    if std_dev == 0:
        return ZScoreResult(is_anomaly=value != mean, expected_range=(mean, mean), degenerate=True)

    z_score = (value - mean) / std_dev
    return ZScoreResult(
        is_anomaly=abs(z_score) > threshold,
        z_score=round(z_score, 2),
        expected_range=(round(mean - threshold * std_dev, 2), round(mean + threshold * std_dev, 2)),
    )


def detect_anomalies_iqr(value: float, history: Sequence[float], multiplier: float = 1.5) -> IQRResult:
    """Interquartile-range outlier test; needs at least four historical points."""
    if len(history) < MIN_IQR_HISTORY:
        return IQRResult(is_anomaly=False)

    q1, q3 = (float(q) for q in np.percentile(np.asarray(history, dtype=float), [25, 75]))
    iqr = q3 - q1

    if value < q1 - 3 * iqr or value > q3 + 3 * iqr:
        severity = IQRSeverity.EXTREME
    elif value < q1 - multiplier * iqr or value > q3 + multiplier * iqr:
        severity = IQRSeverity.MILD
    else:
        severity = IQRSeverity.NONE

    return IQRResult(is_anomaly=severity != IQRSeverity.NONE, severity=severity, q1=q1, q3=q3, iqr=iqr)
