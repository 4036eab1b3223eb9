"""
Materializer

Expands a recurring rule into the concrete ledger entries it implies.

Generation is one stepping loop over a resolved budget:

1. Start at the rule's start date with the full budget.
2. If a later `from_date` is given, step past every occurrence before
   it. Bounded rules spend one unit of budget per skipped occurrence,
   so a 12-occurrence rule regenerated half way through its life only
   emits the remaining 6.
3. Emit one entry per remaining unit of budget.

Open-ended rules skip for free and always emit the full ceiling.
"""

from datetime import date
from typing import Iterator, Optional

import structlog

from recurring_ledger.engine.budget import OccurrenceBudget
from recurring_ledger.engine.stepper import advance
from recurring_ledger.models.rule import LedgerEntry, RecurringRule


logger = structlog.get_logger(__name__)


class Materializer:
    """
    Produces ordered LedgerEntry sequences from rules.

    Stateless apart from the budget policy; the same rule and from_date
    always yield the same dates.
    """

    def __init__(self, budget: Optional[OccurrenceBudget] = None):
        self._budget = budget or OccurrenceBudget()

    @property
    def budget(self) -> OccurrenceBudget:
        return self._budget

    def iter_dates(
        self,
        rule: RecurringRule,
        from_date: Optional[date] = None,
    ) -> Iterator[date]:
        """
        Yield the occurrence dates a generation pass would emit.

        Args:
            rule: A validated rule (start_date must be set)
            from_date: First date eligible for emission. Earlier
                       occurrences are skipped and, for bounded rules,
                       consume budget.
        """
        if rule.start_date is None:
            raise ValueError("Rule has no start date")

        cursor = rule.start_date
        remaining = self._budget.resolve(rule.occurrence_count)
        bounded = not rule.is_open_ended

        if from_date is not None:
            while cursor < from_date and remaining > 0:
                cursor = advance(cursor, rule.interval)
                if bounded:
                    remaining -= 1

        while remaining > 0:
            yield cursor
            cursor = advance(cursor, rule.interval)
            remaining -= 1

    def generate(
        self,
        rule: RecurringRule,
        from_date: Optional[date] = None,
    ) -> list[LedgerEntry]:
        """
        Materialize a rule into entries.

        Every entry copies the rule's user, name, amount, currency,
        category and tags, and points back to the rule.
        """
        entries = [
            LedgerEntry(
                user_id=rule.user_id,
                name=rule.name,
                amount=rule.amount,
                currency=rule.currency,
                category=rule.category,
                tags=list(rule.tags),
                date=occurrence,
                recurring_rule_id=rule.id,
            )
            for occurrence in self.iter_dates(rule, from_date)
        ]

        logger.debug(
            "rule_materialized",
            rule_id=str(rule.id),
            from_date=from_date.isoformat() if from_date else None,
            count=len(entries),
        )
        return entries
