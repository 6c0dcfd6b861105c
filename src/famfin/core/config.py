"""Configuration settings for famfin.

Every engine component takes its configuration as an argument. Components accept
``None`` (defaults), a config instance, or a partial mapping merged over the defaults.
"""

import logging
import math
import os
from collections.abc import Mapping
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def default_keywords() -> dict[str, tuple[str, ...]]:
    """Built-in keyword dictionary keyed by canonical (Russian) category name."""
    return {
        # Groceries
        "продукты": (
            "магнит", "пятёрочка", "пятерочка", "перекрёсток", "перекресток",
            "ашан", "лента", "дикси", "вкусвилл", "азбука вкуса", "metro",
            "окей", "карусель", "супермаркет", "продукты", "гипермаркет",
            "spar", "билла", "billa", "fixprice", "фикспрайс",
        ),
        # Transport
        "транспорт": (
            "яндекс такси", "uber", "gett", "ситимобил", "такси", "метро",
            "бензин", "азс", "лукойл", "газпром", "роснефть", "shell", "bp",
            "парковка", "мойка", "автомойка", "шиномонтаж", "автосервис",
            "ржд", "аэрофлот", "s7", "победа", "билет", "каршеринг",
            "яндекс драйв", "делимобиль", "belka", "трансп",
        ),
        # Restaurants and food delivery
        "рестораны": (
            "кафе", "ресторан", "бар", "пиццерия", "суши", "бургер",
            "макдоналдс", "mcdonalds", "kfc", "бургер кинг", "burger king",
            "subway", "pizza", "пицца", "coffee", "кофе", "starbucks",
            "якитория", "тануки", "delivery club", "яндекс еда", "самокат",
            "сбермаркет", "доставка еды",
        ),
        "развлечения": (
            "кино", "cinema", "театр", "концерт", "музей", "выставка",
            "netflix", "spotify", "youtube", "apple music", "подписка",
            "steam", "playstation", "xbox", "игра", "game", "кинопоиск",
            "иви", "okko", "premier", "more.tv", "билет",
        ),
        "одежда": (
            "zara", "h&m", "hm", "uniqlo", "reserved", "massimo dutti",
            "bershka", "pull&bear", "mango", "одежда", "обувь", "adidas",
            "nike", "puma", "reebok", "спортмастер", "декатлон", "rendez-vous",
            "ecco", "kari", "respect", "wildberries", "lamoda", "wb",
        ),
        "здоровье": (
            "аптека", "pharmacy", "лекарство", "витамины", "клиника",
            "поликлиника", "врач", "доктор", "анализы", "стоматолог",
            "окулист", "медицинский", "здоровье", "медси",
            "инвитро", "гемотест", "лаборатория",
        ),
        # Utilities and housing
        "коммуналка": (
            "жкх", "квартплата", "электричество", "газ", "вода", "отопление",
            "интернет", "телефон", "мобильная связь", "мтс", "билайн",
            "мегафон", "теле2", "tele2", "ростелеком", "аренда", "rent",
        ),
        "образование": (
            "курс", "обучение", "школа", "университет", "книга", "учебник",
            "skillbox", "geekbrains", "нетология", "coursera", "udemy",
            "литрес", "книжный", "библиотека",
        ),
        "красота": (
            "салон", "парикмахерская", "барбершоп", "маникюр", "педикюр",
            "spa", "спа", "массаж", "косметика", "л'этуаль", "letual",
            "рив гош", "иль де ботэ", "золотое яблоко", "sephora",
        ),
        # Income
        "зарплата": ("зарплата", "зп", "аванс", "оклад", "премия", "бонус", "salary"),
        "фриланс": ("фриланс", "freelance", "проект", "заказ", "контракт", "гонорар"),
        "кэшбэк": ("кэшбэк", "cashback", "возврат", "refund", "бонусы"),
    }


class FrozenConfig(BaseModel):
    model_config = ConfigDict(frozen=True)


class CategorizerConfig(FrozenConfig):
    """Categorizer confidences and similarity thresholds."""

    rule_confidence: float = Field(0.95, ge=0.0, le=1.0)
    category_keyword_confidence: float = Field(0.85, ge=0.0, le=1.0)
    default_keyword_confidence: float = Field(0.75, ge=0.0, le=1.0)

    history_similarity_threshold: float = Field(0.7, ge=0.0, le=1.0)
    history_min_count: int = Field(2, ge=1)
    history_base_confidence: float = 0.5
    history_confidence_span: float = 0.4
    history_max_confidence: float = Field(0.9, ge=0.0, le=1.0)

    fuzzy_threshold: float = Field(0.6, ge=0.0, le=1.0)
    fuzzy_confidence_factor: float = Field(0.6, ge=0.0, le=1.0)

    pattern_min_occurrences: int = Field(3, ge=1)
    pattern_min_token_length: int = 4
    suggestion_min_group_size: int = Field(2, ge=1)
    suggestion_min_confidence: float = Field(0.5, ge=0.0, le=1.0)

    # Immutable (name, keywords) pairs; a mapping is accepted on input
    default_keywords: tuple[tuple[str, tuple[str, ...]], ...] = Field(
        default_factory=lambda: tuple(default_keywords().items())
    )

    @field_validator("default_keywords", mode="before")
    @classmethod
    def freeze_keywords(cls, v: Any) -> Any:
        """Turn a name -> keywords mapping into ordered pairs."""
        if isinstance(v, Mapping):
            return tuple((name, tuple(keywords)) for name, keywords in v.items())
        return v


class TrendConfig(FrozenConfig):
    """Trend classification and forecasting parameters."""

    stable_slope_ratio: float = 0.02
    min_r_squared: float = 0.3
    forecast_min_points: int = Field(3, ge=2)
    forecast_margin_growth: float = 0.1
    seasonality_min_months: int = 12
    seasonality_trend_window: int = Field(6, ge=2)


class AnomalyConfig(FrozenConfig):
    """Anomaly detection thresholds."""

    # Z-score threshold for amount anomalies
    amount_threshold: float = Field(2.5, gt=0.0)
    lookback_days: int = Field(90, ge=1)
    min_transactions: int = Field(5, ge=1)
    iqr_multiplier: float = Field(1.5, gt=0.0)

    warning_z_score: float = 3.0
    alert_z_score: float = 4.0

    rare_category_share: float = 0.02
    rare_category_min_history: int = 20

    daily_count_min: int = 10
    daily_count_multiplier: float = 3.0

    category_increase_percent: float = 30.0
    category_alert_percent: float = 50.0
    spending_increase_percent: float = 20.0
    volatility_threshold: float = 0.5


class ScoreWeights(FrozenConfig):
    savings: float = Field(0.30, ge=0.0, le=1.0)
    budget: float = Field(0.25, ge=0.0, le=1.0)
    debt: float = Field(0.20, ge=0.0, le=1.0)
    stability: float = Field(0.25, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def validate_total(self) -> "ScoreWeights":
        """Weights must add up to one."""
        total = self.savings + self.budget + self.debt + self.stability
        if not math.isclose(total, 1.0, abs_tol=1e-9):
            raise ValueError(f"Score weights must sum to 1.0, got {total}")
        return self


class ScoreThresholds(FrozenConfig):
    """Metric values at which a sub-score reaches each tier."""

    excellent: float
    good: float
    fair: float
    poor: float


class GradeBand(FrozenConfig):
    grade: str
    min_score: int = Field(ge=0, le=100)
    emoji: str
    summary: str


def default_grade_bands() -> tuple[GradeBand, ...]:
    return (
        GradeBand(grade="A", min_score=90, emoji="🌟", summary="Excellent financial health"),
        GradeBand(grade="B", min_score=75, emoji="😊", summary="Finances are in good shape"),
        GradeBand(grade="C", min_score=60, emoji="😐", summary="There is room for improvement"),
        GradeBand(grade="D", min_score=40, emoji="😟", summary="Finances need attention"),
        GradeBand(grade="F", min_score=0, emoji="🚨", summary="Critical financial situation"),
    )


class HealthConfig(FrozenConfig):
    """Health score weights, thresholds and recommendation triggers."""

    weights: ScoreWeights = Field(default_factory=ScoreWeights)

    savings_thresholds: ScoreThresholds = Field(
        default_factory=lambda: ScoreThresholds(excellent=0.20, good=0.10, fair=0.05, poor=0.0)
    )
    budget_thresholds: ScoreThresholds = Field(
        default_factory=lambda: ScoreThresholds(excellent=0.90, good=0.70, fair=0.50, poor=0.0)
    )
    # Lower is better for credit ratio and volatility
    debt_thresholds: ScoreThresholds = Field(
        default_factory=lambda: ScoreThresholds(excellent=0.10, good=0.20, fair=0.40, poor=0.40)
    )
    stability_thresholds: ScoreThresholds = Field(
        default_factory=lambda: ScoreThresholds(excellent=0.15, good=0.25, fair=0.40, poor=0.40)
    )

    no_budget_score: float = Field(70.0, ge=0.0, le=100.0)
    trend_penalty: float = Field(10.0, ge=0.0)
    recommendation_threshold: float = 60.0

    high_credit_ratio: float = 0.3
    many_budgets_exceeded: int = 2
    high_volatility: float = 0.4
    goal_on_track_ratio: float = 0.8

    grade_bands: tuple[GradeBand, ...] = Field(default_factory=default_grade_bands)


class AnalyticsConfig(FrozenConfig):
    """Application-level configuration bundling every engine component."""

    categorizer: CategorizerConfig = Field(default_factory=CategorizerConfig)
    trend: TrendConfig = Field(default_factory=TrendConfig)
    anomaly: AnomalyConfig = Field(default_factory=AnomalyConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)

    default_currency: str = Field(default_factory=lambda: os.getenv("FAMFIN_DEFAULT_CURRENCY", "RUB"))
    log_level: str = Field(default_factory=lambda: os.getenv("FAMFIN_LOG_LEVEL", "WARNING").upper())

    months_of_history: int = Field(12, ge=1)
    forecast_periods: int = Field(3, ge=1)
    dashboard_anomaly_limit: int = Field(5, ge=0)

    def configure_logging(self) -> None:
        """Configure root logging for hosts that have not set it up themselves."""
        logging.basicConfig(
            level=getattr(logging, self.log_level, logging.WARNING),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


ConfigT = TypeVar("ConfigT", bound=BaseModel)


def resolve_config(config_cls: type[ConfigT], config: ConfigT | Mapping[str, Any] | None) -> ConfigT:
    """Merge a partial configuration over the documented defaults."""
    if config is None:
        return config_cls()
    if isinstance(config, config_cls):
        return config
    overrides = {key: value for key, value in dict(config).items() if value is not None}
    return config_cls(**overrides)
