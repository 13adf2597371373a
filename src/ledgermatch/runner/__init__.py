"""
CLI runner module.

Provides commands:
- init: Write a default config file
- load: Append CSV rows to a sheet
- match: Run cascading matching (one pair or all)
- credit-notes: Mark received invoices cancelled by a credit note as paid
- prefetch-rates: Preview historical exchange rates (not persisted)
- status: Row and match counts per sheet
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
