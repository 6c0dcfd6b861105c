"""Tests for aggregate analytics and the dashboard service."""

from datetime import date

import pytest

from famfin.analytics.aggregation import (
    aggregate_monthly,
    aggregate_weekly,
    budget_alerts,
    period_comparison,
    settle_shared_expenses,
    shared_expense_totals,
    top_categories,
    weekday_pattern,
)
from famfin.analytics.models import FamilyMember
from famfin.analytics.service import AnalyticsService
from famfin.core.models import AnomalyType, BudgetPeriod, CategorizationRequest, Category, TransactionType
from famfin.ml.anomaly import analyze_spending_patterns
from famfin.ml.categorizer import predict_category
from famfin.ml.health import analyze_financial_health

INCOME = TransactionType.INCOME


@pytest.fixture
def members():
    return [FamilyMember(user_id="u-a", nickname="Anna"), FamilyMember(user_id="u-b", nickname="Boris")]


@pytest.fixture
def household(make_transaction):
    """Two months of family finances ending on the fixed reference date."""
    transactions = [
        make_transaction(type=INCOME, amount=100000, days_ago=14, category_id="cat-salary"),
        make_transaction(type=INCOME, amount=80000, days_ago=45, category_id="cat-salary"),
        make_transaction(amount=20000, days_ago=36),
        make_transaction(amount=3000, days_ago=5, category_id="cat-restaurants", is_shared=True, user_id="u-a"),
    ]
    transactions += [
        make_transaction(amount=1000, days_ago=i, category_id="cat-groceries", description="Магнит")
        for i in range(15)
    ]
    return transactions


class TestAggregateMonthly:
    """Test zero-filled monthly aggregation."""

    def test_zero_filled_window(self, household, today):
        monthly = aggregate_monthly(household, months=12, today=today)

        assert len(monthly) == 12
        assert monthly[0].month == "2023-07"
        assert monthly[-1].month == "2024-06"
        assert monthly[-1].income == 100000
        assert monthly[-1].expense == 18000
        assert monthly[-1].savings == 82000
        assert monthly[-2].expense == 20000
        assert monthly[0].income == monthly[0].expense == 0

    def test_transactions_outside_window_are_ignored(self, make_transaction, today):
        monthly = aggregate_monthly([make_transaction(amount=500, days_ago=800)], months=3, today=today)

        assert [m.month for m in monthly] == ["2024-04", "2024-05", "2024-06"]
        assert all(m.expense == 0 for m in monthly)

    def test_transfers_are_ignored(self, make_transaction, today):
        monthly = aggregate_monthly([make_transaction(type=TransactionType.TRANSFER)], months=1, today=today)

        assert monthly[0].income == monthly[0].expense == 0


class TestAggregateWeekly:
    def test_weeks_start_on_monday(self, make_transaction, today):
        transactions = [
            make_transaction(amount=100, date=date(2024, 6, 10)),
            make_transaction(amount=200, date=date(2024, 6, 12)),
            make_transaction(amount=400, date=date(2024, 6, 9)),
            make_transaction(type=INCOME, amount=1000, date=date(2024, 5, 20)),
        ]

        weekly = aggregate_weekly(transactions, weeks=4, today=today)

        assert [w.week_start for w in weekly] == [
            date(2024, 5, 20),
            date(2024, 5, 27),
            date(2024, 6, 3),
            date(2024, 6, 10),
        ]
        assert weekly[-1].expense == 300
        assert weekly[-2].expense == 400
        assert weekly[0].income == 1000
        assert weekly[1].income == weekly[1].expense == 0


class TestTopCategories:
    def test_shares_and_order(self, household):
        expenses = [t for t in household if t.type == TransactionType.EXPENSE]
        categories = [Category(id="cat-groceries", name="Продукты")]

        summary = top_categories(expenses, categories, limit=10)

        assert [s.category_id for s in summary] == ["uncategorized", "cat-groceries", "cat-restaurants"]
        assert summary[0].category_name == "Uncategorized"
        assert summary[0].percentage == pytest.approx(52.6)
        assert summary[1].category_name == "Продукты"
        assert summary[1].transaction_count == 15
        # Unknown categories fall back to their id
        assert summary[2].category_name == "cat-restaurants"

    def test_limit(self, household):
        assert len(top_categories(household, limit=2)) == 2

    def test_empty(self):
        assert top_categories([]) == []


class TestWeekdayPattern:
    def test_average_per_weekday(self, make_transaction):
        transactions = [
            make_transaction(amount=100, date=date(2024, 6, 10)),
            make_transaction(amount=300, date=date(2024, 6, 3)),
            make_transaction(amount=50, date=date(2024, 6, 15)),
            make_transaction(type=INCOME, amount=99999, date=date(2024, 6, 11)),
        ]

        pattern = weekday_pattern(transactions)

        assert len(pattern) == 7
        assert pattern[0].day_name == "Mon"
        assert pattern[0].average_expense == 200
        assert pattern[0].transaction_count == 2
        assert pattern[1].transaction_count == 0
        assert pattern[5].average_expense == 50

    def test_empty(self):
        pattern = weekday_pattern([])

        assert [p.transaction_count for p in pattern] == [0] * 7


class TestPeriodComparison:
    def test_month(self, household, today):
        comparison = period_comparison(household, "month", today)

        assert comparison.current_period.start_date == date(2024, 6, 1)
        assert comparison.previous_period.start_date == date(2024, 5, 1)
        assert comparison.previous_period.end_date == date(2024, 5, 31)
        assert comparison.income_change_percent == 25.0
        assert comparison.expense_change_percent == -10.0

    def test_quarter_wraps_to_previous_year(self, make_transaction):
        transactions = [
            make_transaction(amount=1000, date=date(2024, 1, 20)),
            make_transaction(amount=500, date=date(2023, 11, 5)),
        ]

        comparison = period_comparison(transactions, "quarter", date(2024, 2, 10))

        assert comparison.current_period.start_date == date(2024, 1, 1)
        assert comparison.previous_period.start_date == date(2023, 10, 1)
        assert comparison.previous_period.end_date == date(2023, 12, 31)
        assert comparison.expense_change_percent == 100.0

    def test_year(self, make_transaction, today):
        comparison = period_comparison([make_transaction(amount=100)], "year", today)

        assert comparison.previous_period.start_date == date(2023, 1, 1)
        assert comparison.previous_period.end_date == date(2023, 12, 31)
        # No previous spending to compare against
        assert comparison.expense_change_percent == 0.0

    def test_unknown_period(self, today):
        with pytest.raises(ValueError):
            period_comparison([], "decade", today)


class TestBudgetAlerts:
    def test_alerts_at_threshold(self, make_transaction, make_budget):
        expenses = [
            make_transaction(amount=900, category_id="cat-1"),
            make_transaction(amount=500, category_id="cat-2"),
            make_transaction(amount=1200, category_id="cat-3"),
        ]
        budgets = [
            make_budget(amount=1000, category_id="cat-1", name="Food"),
            make_budget(amount=1000, category_id="cat-2"),
            make_budget(amount=1000, category_id="cat-3", name="Fun"),
            make_budget(amount=1000, category_id="cat-3", is_active=False),
        ]
        categories = [Category(id="cat-1", name="Продукты")]

        alerts = budget_alerts(budgets, expenses, categories)

        assert [a.budget_name for a in alerts] == ["Fun", "Food"]
        assert alerts[0].percentage == 120.0
        assert alerts[1].category_name == "Продукты"

    def test_budget_without_category_covers_all_expenses(self, make_transaction, make_budget):
        expenses = [make_transaction(amount=500, category_id="cat-1"), make_transaction(amount=400)]

        alerts = budget_alerts([make_budget(amount=1000)], expenses)

        assert alerts[0].spent == 900
        assert alerts[0].category_name is None

    def test_each_budget_uses_its_own_period(self, household, make_budget, today):
        budgets = [
            make_budget(amount=3000, category_id="cat-groceries", period=BudgetPeriod.WEEKLY, name="Week"),
            make_budget(amount=40000, period=BudgetPeriod.YEARLY, start_date=date(2024, 1, 1), name="Year"),
            make_budget(amount=16000, category_id="cat-groceries", name="Month"),
        ]

        alerts = {a.budget_name: a for a in budget_alerts(budgets, household, today=today)}

        # June 10-15 groceries only
        assert alerts["Week"].spent == 6000
        assert alerts["Week"].percentage == 200.0
        # All 2024 expenses, May included
        assert alerts["Year"].spent == 38000
        assert alerts["Month"].spent == 15000


class TestSharedExpenses:
    """Test settling shared spending between family members."""

    def test_totals(self, make_transaction, members):
        expenses = [
            make_transaction(amount=300, is_shared=True, user_id="u-a"),
            make_transaction(amount=100, is_shared=False, user_id="u-b"),
        ]

        shared = shared_expense_totals(expenses, members)

        assert shared.total == 300
        assert shared.by_user == {"u-a": 300, "u-b": 0}

    def test_two_members(self, make_transaction, members):
        settlements = settle_shared_expenses([make_transaction(amount=3000, is_shared=True, user_id="u-a")], members)

        assert len(settlements) == 1
        assert settlements[0].from_user_name == "Boris"
        assert settlements[0].to_user_name == "Anna"
        assert settlements[0].amount == 1500

    def test_three_members(self, make_transaction, members):
        members = members + [FamilyMember(user_id="u-c", nickname="Vera")]

        settlements = settle_shared_expenses([make_transaction(amount=300, is_shared=True, user_id="u-a")], members)

        assert [(s.from_user_id, s.to_user_id, s.amount) for s in settlements] == [
            ("u-b", "u-a", 100),
            ("u-c", "u-a", 100),
        ]

    def test_balanced_spending(self, make_transaction, members):
        expenses = [
            make_transaction(amount=500, is_shared=True, user_id="u-a"),
            make_transaction(amount=500, is_shared=True, user_id="u-b"),
        ]

        assert settle_shared_expenses(expenses, members) == []

    def test_small_residue_is_ignored(self, make_transaction, members):
        expenses = [
            make_transaction(amount=500.5, is_shared=True, user_id="u-a"),
            make_transaction(amount=500, is_shared=True, user_id="u-b"),
        ]

        assert settle_shared_expenses(expenses, members) == []

    def test_single_member(self, make_transaction, members):
        expenses = [make_transaction(amount=500, is_shared=True, user_id="u-a")]

        assert settle_shared_expenses(expenses, members[:1]) == []


class TestAnalyticsService:
    """Test report composition."""

    def test_analytics_data(self, household, categories, today):
        report = AnalyticsService.get_analytics_data(household, categories, today=today)

        assert len(report.monthly_data) == 12
        assert len(report.weekly_data) == 12
        assert len(report.weekday_pattern) == 7
        assert [f.date for f in report.expense_forecast] == [date(2024, 7, 1), date(2024, 8, 1), date(2024, 9, 1)]
        assert len(report.income_forecast) == 3
        assert report.income_by_category[0].category_name == "Зарплата"
        assert report.period_comparison.period == "month"

    def test_configured_history(self, household, today):
        report = AnalyticsService.get_analytics_data(
            household, today=today, config={"months_of_history": 6, "forecast_periods": 1}
        )

        assert len(report.monthly_data) == 6
        assert len(report.expense_forecast) == 1

    def test_dashboard(self, household, make_budget, members, categories, today):
        budgets = [make_budget(amount=16000, category_id="cat-groceries", name="Groceries")]

        dashboard = AnalyticsService.get_dashboard_data(
            household, budgets, [], members=members, categories=categories, today=today
        )

        assert dashboard.total_income == 100000
        assert dashboard.total_expense == 18000
        assert dashboard.total_balance == 82000
        assert dashboard.income_change == 25.0
        assert dashboard.expense_change == -10.0
        assert dashboard.shared_expenses.total == 3000
        assert dashboard.debts[0].amount == 1500
        assert len(dashboard.recent_transactions) == 10
        assert dashboard.recent_transactions[0].date == today
        assert dashboard.top_categories[0].category_id == "cat-groceries"
        assert [a.budget_name for a in dashboard.budget_alerts] == ["Groceries"]
        assert dashboard.health is not None
        assert dashboard.health.metrics.total_income == 100000

    def test_dashboard_alerts_agree_with_health(self, household, make_budget, today):
        budgets = [make_budget(amount=3000, category_id="cat-groceries", period=BudgetPeriod.WEEKLY, name="Week")]

        dashboard = AnalyticsService.get_dashboard_data(household, budgets, [], today=today)

        assert dashboard.budget_alerts[0].spent == 6000
        assert dashboard.health.metrics.budgets_exceeded == 1

    def test_dashboard_anomalies(self, household, make_transaction, today):
        spike = make_transaction(amount=50000, days_ago=1, category_id="cat-groceries")

        dashboard = AnalyticsService.get_dashboard_data(household + [spike], [], [], today=today, family_id="family-1")

        assert dashboard.anomalies
        assert len(dashboard.anomalies) <= 5
        spike_records = [a for a in dashboard.anomalies if a.transaction_id == spike.id]
        assert AnomalyType.HIGH_AMOUNT in {a.type for a in spike_records}
        assert all(a.family_id == "family-1" for a in dashboard.anomalies)

    def test_auto_categorize(self, categories):
        prediction = AnalyticsService.auto_categorize("Магнит у дома", categories)

        assert prediction.category_id == "cat-groceries"

    def test_batch_auto_categorize(self, categories):
        requests = [CategorizationRequest(id="1", description="KFC"), CategorizationRequest(id="2", description=None)]

        results = AnalyticsService.batch_auto_categorize(requests, categories)

        assert list(results) == ["1"]


class TestRepeatability:
    """The same input always serializes to the same output."""

    def test_health(self, household, make_budget, make_goal, today):
        budgets = [make_budget(amount=16000, category_id="cat-groceries")]
        goals = [make_goal(current_amount=25000, deadline=date(2024, 12, 31))]

        first = analyze_financial_health(household, budgets, goals, today=today)
        second = analyze_financial_health(household, budgets, goals, today=today)

        assert first.model_dump_json() == second.model_dump_json()

    def test_spending_patterns(self, household, categories):
        first = analyze_spending_patterns(household, categories=categories)
        second = analyze_spending_patterns(household, categories=categories)

        assert first.model_dump_json() == second.model_dump_json()

    def test_prediction(self, household, categories):
        first = predict_category("Магнит у дома", categories, history=household)
        second = predict_category("Магнит у дома", categories, history=household)

        assert first is not None
        assert first.model_dump_json() == second.model_dump_json()
