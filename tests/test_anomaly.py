"""Tests for transaction and spending-pattern anomaly detection."""

from datetime import timedelta

import pytest

from famfin.core.models import (
    AnomalySeverity,
    AnomalyType,
    Category,
    DetectedAnomaly,
    HighAmountDetails,
    IQRSeverity,
    TransactionType,
)
from famfin.ml.anomaly import (
    AnomalyDetector,
    analyze_spending_patterns,
    create_anomaly_record,
    detect_transaction_anomalies,
)


@pytest.fixture
def varied_history(make_transaction):
    """Twenty daily expenses around 1000 (900-1100)."""
    return [make_transaction(amount=1000 + (i % 5) * 50 - 100, days_ago=i + 1) for i in range(20)]


class TestTransactionAnomalies:
    """Test per-transaction checks."""

    def test_high_amount(self, make_transaction, varied_history):
        transaction = make_transaction(amount=5000)

        anomalies = detect_transaction_anomalies(transaction, varied_history)

        assert len(anomalies) == 1
        anomaly = anomalies[0]
        assert anomaly.type == AnomalyType.HIGH_AMOUNT
        assert anomaly.severity == AnomalySeverity.ALERT
        assert isinstance(anomaly.details, HighAmountDetails)
        assert anomaly.details.historical_average == 1000.0
        assert anomaly.details.deviation_percent == 400.0
        assert anomaly.details.z_score > 4

    def test_normal_amount(self, make_transaction, varied_history):
        assert detect_transaction_anomalies(make_transaction(amount=1020), varied_history) == []

    def test_warning_severity_band(self, make_transaction, varied_history):
        """Population std of the history is ~70.7, so 1250 sits at z ~3.5."""
        anomalies = detect_transaction_anomalies(make_transaction(amount=1250), varied_history)

        assert anomalies[0].severity == AnomalySeverity.WARNING

    def test_info_severity_band(self, make_transaction, varied_history):
        anomalies = detect_transaction_anomalies(make_transaction(amount=1200), varied_history)

        assert anomalies[0].severity == AnomalySeverity.INFO

    def test_income_is_not_checked(self, make_transaction, varied_history):
        transaction = make_transaction(amount=500000, type=TransactionType.INCOME)

        assert detect_transaction_anomalies(transaction, varied_history) == []

    def test_insufficient_history(self, make_transaction):
        history = [make_transaction(amount=1000, days_ago=i + 1) for i in range(4)]

        assert detect_transaction_anomalies(make_transaction(amount=50000), history) == []

    def test_history_outside_lookback_is_ignored(self, make_transaction):
        history = [make_transaction(amount=1000 + i, days_ago=100 + i) for i in range(20)]

        assert detect_transaction_anomalies(make_transaction(amount=50000), history) == []

    def test_as_of_moves_the_window(self, make_transaction, varied_history, today):
        transaction = make_transaction(amount=5000)

        later = detect_transaction_anomalies(transaction, varied_history, as_of=today + timedelta(days=200))

        assert later == []

    def test_transaction_excluded_from_its_own_history(self, make_transaction, varied_history):
        transaction = make_transaction(amount=5000)

        anomalies = detect_transaction_anomalies(transaction, varied_history + [transaction])

        assert anomalies[0].details.historical_average == 1000.0

    def test_constant_history_is_alert(self, make_transaction):
        history = [make_transaction(amount=1000, days_ago=i + 1) for i in range(10)]

        anomalies = detect_transaction_anomalies(make_transaction(amount=1500), history)

        assert anomalies[0].type == AnomalyType.HIGH_AMOUNT
        assert anomalies[0].severity == AnomalySeverity.ALERT

    def test_unusual_category_amount(self, make_transaction):
        amounts = [10, 12, 11, 13, 12, 10, 11, 14]
        history = [
            make_transaction(amount=a, days_ago=i + 1, category_id="cat-coffee") for i, a in enumerate(amounts)
        ]
        categories = [Category(id="cat-coffee", name="Кофе")]

        anomalies = detect_transaction_anomalies(
            make_transaction(amount=100, category_id="cat-coffee"), history, categories
        )

        by_type = {a.type: a for a in anomalies}
        category_anomaly = by_type[AnomalyType.UNUSUAL_CATEGORY]
        assert category_anomaly.severity == AnomalySeverity.ALERT
        assert category_anomaly.details.iqr_severity == IQRSeverity.EXTREME
        assert category_anomaly.details.category == "Кофе"
        assert "Кофе" in category_anomaly.message

    def test_rarely_used_category(self, make_transaction):
        history = [
            make_transaction(amount=1000 + (i % 5) * 50 - 100, days_ago=i + 1, category_id="cat-groceries")
            for i in range(25)
        ]

        anomalies = detect_transaction_anomalies(make_transaction(amount=1000, category_id="cat-jewelry"), history)

        assert [a.type for a in anomalies] == [AnomalyType.NEW_MERCHANT]
        assert anomalies[0].severity == AnomalySeverity.INFO
        assert anomalies[0].details.category_share == 0.0

    def test_rare_category_needs_enough_history(self, make_transaction, varied_history):
        transaction = make_transaction(amount=1000, category_id="cat-jewelry")

        assert detect_transaction_anomalies(transaction, varied_history) == []

    def test_many_transactions_in_one_day(self, make_transaction):
        history = [make_transaction(amount=1000) for _ in range(12)]

        anomalies = detect_transaction_anomalies(make_transaction(amount=1000), history)

        assert [a.type for a in anomalies] == [AnomalyType.FREQUENCY]
        assert anomalies[0].severity == AnomalySeverity.WARNING
        assert anomalies[0].details.actual_value == 13

    def test_severity_never_drops_as_amount_grows(self, make_transaction, varied_history):
        ranks = []
        for amount in range(1200, 1600, 10):
            anomalies = detect_transaction_anomalies(make_transaction(amount=amount), varied_history)
            ranks.append(anomalies[0].severity.rank)

        assert ranks == sorted(ranks)
        assert ranks[0] == AnomalySeverity.INFO.rank
        assert ranks[-1] == AnomalySeverity.ALERT.rank

    def test_configured_threshold(self, make_transaction, varied_history):
        detector = AnomalyDetector({"amount_threshold": 5.0})

        assert detector.detect_transaction_anomalies(make_transaction(amount=1200), varied_history) == []


class TestSpendingPatterns:
    """Test aggregate spending analysis."""

    def test_insufficient_data(self, make_transaction):
        report = analyze_spending_patterns([make_transaction() for _ in range(3)])

        assert report.status == "insufficient_data"
        assert report.category_anomalies == []
        assert report.trend_anomalies == []

    def test_normal_spending(self, make_transaction):
        transactions = [make_transaction(amount=1000, days_ago=i, category_id="cat-groceries") for i in range(10)]

        report = analyze_spending_patterns(transactions)

        assert report.status == "normal"

    def test_income_is_ignored(self, make_transaction):
        transactions = [
            make_transaction(amount=1000 * i, days_ago=i, type=TransactionType.INCOME) for i in range(1, 10)
        ]

        assert analyze_spending_patterns(transactions).status == "insufficient_data"

    def test_rising_spending(self, make_transaction):
        # Oldest first: 100, 200, ... 1000 on consecutive days
        transactions = [
            make_transaction(amount=100 * (i + 1), days_ago=9 - i, category_id="cat-groceries") for i in range(10)
        ]
        categories = [Category(id="cat-groceries", name="Продукты")]

        report = analyze_spending_patterns(transactions, categories=categories)

        assert report.status == "requires_attention"
        assert len(report.category_anomalies) == 1
        category_anomaly = report.category_anomalies[0]
        assert category_anomaly.severity == AnomalySeverity.ALERT
        assert category_anomaly.details.deviation_percent == pytest.approx(166.7)
        assert "Продукты" in category_anomaly.message

        kinds = [a.details.kind for a in report.trend_anomalies]
        assert kinds == ["spending_trend", "volatility"]

    def test_minor_deviations(self, make_transaction):
        amounts = [100] * 5 + [140] * 5
        transactions = [
            make_transaction(amount=a, days_ago=9 - i, category_id="cat-groceries") for i, a in enumerate(amounts)
        ]

        report = analyze_spending_patterns(transactions)

        assert report.status == "minor_deviations"
        assert len(report.category_anomalies) == 1
        category_anomaly = report.category_anomalies[0]
        # 40% growth sits between the warning and alert levels
        assert category_anomaly.severity == AnomalySeverity.WARNING
        assert category_anomaly.details.kind == "category_trend"
        assert category_anomaly.details.deviation_percent == pytest.approx(40.0)
        assert [(a.severity, a.details.kind) for a in report.trend_anomalies] == [
            (AnomalySeverity.WARNING, "spending_trend")
        ]

    def test_input_order_does_not_matter(self, make_transaction):
        transactions = [
            make_transaction(amount=100 * (i + 1), days_ago=9 - i, category_id="cat-groceries") for i in range(10)
        ]

        forward = analyze_spending_patterns(transactions)
        backward = analyze_spending_patterns(list(reversed(transactions)))

        assert forward == backward


class TestAnomalyRecord:
    def test_record_shape(self, make_transaction, varied_history):
        transaction = make_transaction(amount=5000)
        anomaly = detect_transaction_anomalies(transaction, varied_history)[0]

        record = create_anomaly_record(anomaly, transaction_id=transaction.id, family_id="family-1")

        assert record.transaction_id == transaction.id
        assert record.family_id == "family-1"
        assert record.is_dismissed is False
        assert record.details == anomaly.details

    def test_details_round_trip_through_json(self, make_transaction, varied_history):
        anomaly = detect_transaction_anomalies(make_transaction(amount=5000), varied_history)[0]

        restored = DetectedAnomaly.model_validate_json(anomaly.model_dump_json())

        assert restored.details.kind == "high_amount"
        assert isinstance(restored.details, HighAmountDetails)
