"""
Occurrence Budget

Turns a rule's occurrence count into the number of entries one
generation pass may emit.

Open-ended rules (count 0) are not infinite: each pass emits at most
OPEN_ENDED_CEILING entries. The ceiling is applied fresh on every
regeneration and is never tracked across passes, so an open-ended rule
only reaches further into the future when it is next edited.
"""

OPEN_ENDED_CEILING = 200


class OccurrenceBudget:
    """Resolves occurrence counts into generation limits."""

    def __init__(self, ceiling: int = OPEN_ENDED_CEILING):
        if ceiling < 1:
            raise ValueError(f"Ceiling must be positive, got {ceiling}")
        self._ceiling = ceiling

    @property
    def ceiling(self) -> int:
        return self._ceiling

    def resolve(self, occurrence_count: int) -> int:
        if occurrence_count < 0:
            raise ValueError(f"Occurrence count cannot be negative: {occurrence_count}")
        if occurrence_count == 0:
            return self._ceiling
        return occurrence_count
