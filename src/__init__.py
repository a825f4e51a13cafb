"""
Household Ledger - Source Package

Materializes recurring household obligations (rent, subscriptions,
salaries) into a spreadsheet ledger, once per due occurrence.

DESIGN PRINCIPLES:
1. At most one ledger entry per due occurrence
2. Fail early, fail visibly, and never hide partial progress
3. No silent corrections
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Household Ledger Team"
