"""
SQLite-based document store.

Reference implementation of the tabular store: each row of the
``documents`` table is one spreadsheet row, addressed by
(book_id, sheet, row). Cell values are stored as text, exactly as a
spreadsheet would hand them over, and parsed into documents on read.

Tables:
- documents: Invoice / payment / receipt rows with their match columns
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..errors import StoreReadError, StoreWriteError
from ..schemas.documents import (
    Document,
    DocumentKind,
    ExistingMatch,
    Invoice,
    MatchConfidence,
    Payment,
    Receipt,
    StorageLocation,
    parse_amount,
    parse_date,
)
from ..schemas.pairs import MatchPair
from ..schemas.updates import RowWrite
from .base import DocumentSnapshot, DocumentStore

logger = logging.getLogger(__name__)

# Raw cell columns accepted by load_rows()
ROW_COLUMNS = (
    "document_id",
    "counterparty_tax_id",
    "counterparty_name",
    "amount",
    "currency",
    "business_date",
    "reference",
    "document_type",
    "concept",
    "matched_id",
    "match_confidence",
    "has_counterparty_match",
    "paid",
)


def _flag(value: str | None) -> bool | None:
    """Parse a YES/NO cell."""
    if value is None or not str(value).strip():
        return None
    return str(value).strip().upper() in ("YES", "SI", "TRUE", "1")


def _blank(value: Any) -> bool:
    return value is None or not str(value).strip()


class SQLiteDocumentStore(DocumentStore):
    """
    SQLite-backed document store.

    Reads and writes run in a worker thread so the event loop only
    suspends on I/O. Each batch is applied in a single transaction: either
    every row write lands or none does.
    """

    def __init__(self, db_path: Path | str):
        """
        Initialize document store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    book_id TEXT NOT NULL,
                    sheet TEXT NOT NULL,
                    row INTEGER NOT NULL,
                    kind TEXT NOT NULL,
                    document_id TEXT,
                    counterparty_tax_id TEXT,
                    counterparty_name TEXT,
                    amount TEXT,
                    currency TEXT,
                    business_date TEXT,
                    reference TEXT,  -- invoice number or bank
                    document_type TEXT,  -- comprobante type: A, B, NC, ND
                    concept TEXT,
                    matched_id TEXT,
                    match_confidence TEXT,
                    has_counterparty_match TEXT,
                    paid TEXT,
                    PRIMARY KEY (book_id, sheet, row)
                )
            """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_documents_sheet ON documents(book_id, sheet)"
            )

    # === Loading ===

    def load_rows(
        self,
        sheet: str,
        kind: DocumentKind,
        rows: Iterable[dict[str, Any]],
        book_id: str = "default",
    ) -> int:
        """Append raw rows to a sheet.

        Unknown keys are ignored. Row numbers continue after the last
        stored row (first data row is 2, below the header).

        Returns:
            Number of rows appended.
        """
        with self._transaction() as conn:
            last = conn.execute(
                "SELECT MAX(row) AS last FROM documents WHERE book_id = ? AND sheet = ?",
                (book_id, sheet),
            ).fetchone()
            next_row = (last["last"] or 1) + 1

            count = 0
            for raw in rows:
                values = [None if _blank(raw.get(col)) else str(raw[col]).strip() for col in ROW_COLUMNS]
                conn.execute(
                    f"""
                    INSERT INTO documents (book_id, sheet, row, kind, {", ".join(ROW_COLUMNS)})
                    VALUES (?, ?, ?, ?, {", ".join("?" for _ in ROW_COLUMNS)})
                """,
                    (book_id, sheet, next_row + count, kind.value, *values),
                )
                count += 1

        logger.info("Loaded %d %s row(s) into %s", count, kind.value, sheet)
        return count

    def add_document(self, document: Document) -> None:
        """Insert or replace the row at the document's location."""
        loc = document.location
        existing = document.existing_match
        reference = None
        counterparty_name = None
        paid = None
        document_type = None
        concept = None
        if isinstance(document, Invoice):
            reference = document.invoice_number
            document_type = document.document_type
            concept = document.concept
            counterparty_name = document.counterparty_name
            if document.paid is not None:
                paid = "YES" if document.paid else "NO"
        elif isinstance(document, Payment):
            reference = document.bank
            counterparty_name = document.counterparty_name
        elif isinstance(document, Receipt):
            counterparty_name = document.employee_name

        with self._transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO documents
                (book_id, sheet, row, kind, document_id, counterparty_tax_id, counterparty_name,
                 amount, currency, business_date, reference, document_type, concept, matched_id,
                 match_confidence, has_counterparty_match, paid)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    loc.book_id,
                    loc.sheet,
                    loc.row,
                    document.kind.value,
                    document.document_id,
                    document.counterparty_tax_id,
                    counterparty_name,
                    str(document.amount),
                    document.currency,
                    document.business_date.isoformat(),
                    reference,
                    document_type,
                    concept,
                    existing.document_id if existing else None,
                    existing.confidence.value if existing else None,
                    ("YES" if existing.has_counterparty_match else "NO") if existing else None,
                    paid,
                ),
            )

    def get_row(self, location: StorageLocation) -> dict[str, Any] | None:
        """Get the raw cell values of a row."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM documents WHERE book_id = ? AND sheet = ? AND row = ?",
                (location.book_id, location.sheet, location.row),
            ).fetchone()
            return dict(row) if row else None

    # === Snapshot read ===

    async def read_documents(self, pair: MatchPair) -> DocumentSnapshot:
        """Read sources and targets of a pair in one pass."""
        return await asyncio.to_thread(self._read_snapshot, pair)

    def _read_snapshot(self, pair: MatchPair) -> DocumentSnapshot:
        try:
            with self._transaction() as conn:
                targets = self._read_sheet(conn, pair.book_id, pair.target_sheet, pair.target_kind)
                sources = self._read_sheet(conn, pair.book_id, pair.source_sheet, pair.source_kind)
        except sqlite3.Error as e:
            raise StoreReadError(f"Failed to read {pair.lock_key}: {e}") from e

        logger.debug(
            "Read snapshot for %s: %d source(s), %d target(s)",
            pair.lock_key,
            len(sources),
            len(targets),
        )
        return DocumentSnapshot(sources=sources, targets=targets)

    def _read_sheet(
        self,
        conn: sqlite3.Connection,
        book_id: str,
        sheet: str,
        kind: DocumentKind,
    ) -> list[Document]:
        rows = conn.execute(
            "SELECT * FROM documents WHERE book_id = ? AND sheet = ? ORDER BY row",
            (book_id, sheet),
        ).fetchall()

        documents: list[Document] = []
        for row in rows:
            if row["kind"] != kind.value:
                raise StoreReadError(
                    f"{sheet}!{row['row']} holds a {row['kind']} row, expected {kind.value}",
                    retryable=False,
                )
            document = self._row_to_document(row, kind)
            if document is not None:
                documents.append(document)
        return documents

    def _row_to_document(self, row: sqlite3.Row, kind: DocumentKind) -> Document | None:
        """Parse a stored row; blank and unparseable rows are skipped."""
        if _blank(row["document_id"]):
            return None

        location = StorageLocation(sheet=row["sheet"], row=row["row"], book_id=row["book_id"])
        amount = parse_amount(row["amount"])
        business_date = parse_date(row["business_date"])
        if amount is None or business_date is None:
            logger.warning(
                "Skipping %s: unparseable amount %r or date %r",
                location,
                row["amount"],
                row["business_date"],
            )
            return None

        existing = None
        if not _blank(row["matched_id"]):
            existing = ExistingMatch(
                document_id=row["matched_id"],
                confidence=MatchConfidence.parse(row["match_confidence"], MatchConfidence.LOW),
                has_counterparty_match=bool(_flag(row["has_counterparty_match"])),
            )

        common = {
            "document_id": row["document_id"],
            "counterparty_tax_id": row["counterparty_tax_id"],
            "amount": amount,
            "currency": (row["currency"] or "ARS").upper(),
            "business_date": business_date,
            "location": location,
            "existing_match": existing,
        }

        if kind == DocumentKind.INVOICE:
            return Invoice(
                **common,
                invoice_number=row["reference"],
                counterparty_name=row["counterparty_name"],
                paid=_flag(row["paid"]),
                document_type=row["document_type"],
                concept=row["concept"],
            )
        if kind == DocumentKind.PAYMENT:
            return Payment(**common, bank=row["reference"], counterparty_name=row["counterparty_name"])
        return Receipt(**common, employee_name=row["counterparty_name"])

    # === Batched write ===

    async def write_batch(self, writes: list[RowWrite]) -> None:
        """Apply all row writes in one transaction."""
        if not writes:
            return
        await asyncio.to_thread(self._write_batch, writes)

    def _write_batch(self, writes: list[RowWrite]) -> None:
        try:
            with self._transaction() as conn:
                for write in writes:
                    loc = write.location
                    # Column names are validated by RowWrite
                    assignments = ", ".join(f"{col} = ?" for col in write.values)
                    cursor = conn.execute(
                        f"UPDATE documents SET {assignments} "
                        "WHERE book_id = ? AND sheet = ? AND row = ?",
                        (*write.values.values(), loc.book_id, loc.sheet, loc.row),
                    )
                    if cursor.rowcount == 0:
                        raise StoreWriteError(f"No row at {loc} ({loc.book_id})")
        except sqlite3.Error as e:
            raise StoreWriteError(f"Batch of {len(writes)} write(s) rejected: {e}") from e

        logger.info("Applied batch of %d row write(s)", len(writes))

    # === Statistics ===

    def get_stats(self, book_id: str = "default") -> dict[str, dict[str, int]]:
        """Row and matched counts per sheet."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT sheet,
                       COUNT(*) AS total,
                       SUM(CASE WHEN matched_id IS NOT NULL AND matched_id != '' THEN 1 ELSE 0 END)
                           AS matched
                FROM documents
                WHERE book_id = ?
                GROUP BY sheet
                ORDER BY sheet
            """,
                (book_id,),
            ).fetchall()

            return {
                row["sheet"]: {"total": row["total"], "matched": row["matched"] or 0}
                for row in rows
            }
