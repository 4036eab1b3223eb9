"""Recurring-expense generation engine."""

from recurring_ledger.engine.budget import OPEN_ENDED_CEILING, OccurrenceBudget
from recurring_ledger.engine.materializer import Materializer
from recurring_ledger.engine.stepper import advance

__all__ = [
    "OPEN_ENDED_CEILING",
    "Materializer",
    "OccurrenceBudget",
    "advance",
]
