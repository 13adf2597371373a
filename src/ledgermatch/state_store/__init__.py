"""
Document store.

Holds invoice, payment and receipt rows and their match columns.
The reconciliation core reads one snapshot per run and applies one
atomic batch of row writes at the end.
"""

from .base import DocumentSnapshot, DocumentStore
from .sqlite_store import SQLiteDocumentStore

__all__ = [
    "DocumentSnapshot",
    "DocumentStore",
    "SQLiteDocumentStore",
]
