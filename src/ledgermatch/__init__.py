"""
Document reconciliation engine.

Pairs payments with the invoices and salary receipts they settle, grades
each pairing with a confidence tier, and re-optimizes existing pairings
through cascading displacement when a better candidate appears.
"""

__version__ = "0.1.0"
