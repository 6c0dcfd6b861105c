"""Pytest configuration and shared fixtures."""

import itertools
import sys
from datetime import date, timedelta
from pathlib import Path

import pytest

# Add src to Python path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Import after path setup
from famfin.core.models import Budget, Category, CategoryType, Goal, Transaction, TransactionType  # noqa: E402

TODAY = date(2024, 6, 15)


@pytest.fixture
def today():
    """Fixed reference date for time-dependent analytics."""
    return TODAY


@pytest.fixture
def make_transaction():
    """Return a factory building expense transactions with unique ids."""
    counter = itertools.count(1)

    def factory(amount=1000.0, days_ago=0, **overrides):
        fields = {
            "id": f"txn-{next(counter)}",
            "type": TransactionType.EXPENSE,
            "amount": amount,
            "date": TODAY - timedelta(days=days_ago),
        }
        fields.update(overrides)
        return Transaction(**fields)

    return factory


@pytest.fixture
def make_budget():
    counter = itertools.count(1)

    def factory(amount=10000.0, **overrides):
        fields = {
            "id": f"budget-{next(counter)}",
            "name": "Budget",
            "amount": amount,
            "start_date": TODAY.replace(day=1),
        }
        fields.update(overrides)
        return Budget(**fields)

    return factory


@pytest.fixture
def make_goal():
    counter = itertools.count(1)

    def factory(target_amount=100000.0, current_amount=0.0, **overrides):
        fields = {
            "id": f"goal-{next(counter)}",
            "name": "Goal",
            "target_amount": target_amount,
            "current_amount": current_amount,
        }
        fields.update(overrides)
        return Goal(**fields)

    return factory


@pytest.fixture
def categories():
    """Russian household categories with keyword hints."""
    return [
        Category(id="cat-groceries", name="Продукты", keywords=["магнит", "пятёрочка", "перекрёсток", "ашан"]),
        Category(id="cat-transport", name="Транспорт", keywords=["яндекс такси", "uber", "бензин", "метро"]),
        Category(id="cat-restaurants", name="Рестораны", keywords=["кафе", "ресторан", "макдоналдс", "kfc"]),
        Category(
            id="cat-salary", name="Зарплата", type=CategoryType.INCOME, keywords=["зарплата", "аванс", "оклад"]
        ),
    ]
