"""
Recurring Ledger - Source Package

The recurring-expense engine of a personal expense tracker: expands
recurring rules into concrete ledger entries and keeps those entries
consistent with their rule across edits and deletions.

DESIGN PRINCIPLES:
1. A rule and its entries change together or not at all
2. History is never rewritten by a future-only edit
3. Fail early, fail visibly
4. Every change must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Recurring Ledger Team"
