"""Shared fixtures for the recurring ledger tests."""

from datetime import date
from decimal import Decimal

import pytest

from recurring_ledger.models.rule import Interval, RecurringRule


@pytest.fixture
def make_rule():
    """Factory for rules with sensible defaults; override any field."""

    def _make_rule(**overrides) -> RecurringRule:
        fields = {
            "user_id": "user-1",
            "name": "Rent",
            "amount": Decimal("1200.00"),
            "currency": "usd",
            "category": "housing",
            "tags": ["home"],
            "start_date": date(2024, 1, 1),
            "interval": Interval.MONTHLY,
            "occurrence_count": 3,
        }
        fields.update(overrides)
        return RecurringRule(**fields)

    return _make_rule
