"""
Per-run cascade state.

Everything here is owned by exactly one reconciliation run: a fresh set of
structures is created for every invocation and discarded afterwards, so
nothing is shared between runs.

- Claims: exclusive, run-scoped reservations, one set per document kind
- visit(): cycle check over the run's visited set
- DisplacementQueue: FIFO of documents that lost their target
- CascadeState: pending updates and diagnostic counters
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field

from ..schemas.documents import Document, DocumentKind, StorageLocation
from ..schemas.updates import ClearMatchUpdate, MatchUpdate


class Claims:
    """Run-scoped reservations.

    There is no release operation: a reserved identifier stays claimed
    until the run ends.
    """

    def __init__(self) -> None:
        self._reserved: dict[DocumentKind, set[str]] = {kind: set() for kind in DocumentKind}

    def reserve(self, kind: DocumentKind, identifier: str) -> bool:
        """Reserve an identifier.

        Returns:
            True if newly reserved, False if it was already held.
        """
        held = self._reserved[kind]
        if identifier in held:
            return False
        held.add(identifier)
        return True

    def is_reserved(self, kind: DocumentKind, identifier: str) -> bool:
        return identifier in self._reserved[kind]

    def reserved(self, kind: DocumentKind) -> frozenset[str]:
        """Snapshot of the identifiers reserved for a kind."""
        return frozenset(self._reserved[kind])


def visit(visited: set[str], identifier: str) -> bool:
    """Mark an identifier as visited.

    Returns:
        True if it had already been visited (the displacement chain loops
        back on itself and must stop), False on first visit.
    """
    if identifier in visited:
        return True
    visited.add(identifier)
    return False


@dataclass(frozen=True)
class DisplacementQueueItem:
    """A source document that lost its target and must be re-matched."""

    document: Document
    lost_target_id: str
    depth: int

    @property
    def document_id(self) -> str:
        return self.document.document_id

    @property
    def kind(self) -> DocumentKind:
        return self.document.kind

    @property
    def location(self) -> StorageLocation:
        return self.document.location


class DisplacementQueue:
    """FIFO of displaced documents.

    ``pop()`` on an empty queue returns None instead of raising.
    """

    def __init__(self) -> None:
        self._items: deque[DisplacementQueueItem] = deque()

    def add(self, item: DisplacementQueueItem) -> None:
        """Enqueue at the tail."""
        self._items.append(item)

    def pop(self) -> DisplacementQueueItem | None:
        """Dequeue from the head, or None when empty."""
        if not self._items:
            return None
        return self._items.popleft()

    def peek(self) -> DisplacementQueueItem | None:
        return self._items[0] if self._items else None

    def is_empty(self) -> bool:
        return not self._items

    def __len__(self) -> int:
        return len(self._items)


@dataclass
class CascadeState:
    """Pending updates and counters accumulated during one run."""

    # Pending match updates keyed by target ID (1:1: one entry per target)
    updates: dict[str, MatchUpdate] = field(default_factory=dict)
    # Pending clear updates keyed by source ID
    clears: dict[str, ClearMatchUpdate] = field(default_factory=dict)
    # Every source displaced during the run, by ID
    displaced: dict[str, DisplacementQueueItem] = field(default_factory=dict)
    displaced_count: int = 0
    max_depth_reached: int = 0
    # Items popped from the displacement queue
    iterations: int = 0
    cycle_detected: bool = False
    depth_limit_reached: bool = False
    timed_out: bool = False
    visited: set[str] = field(default_factory=set)
    start_time: float = field(default_factory=time.monotonic)

    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.start_time) * 1000

    def record_match(self, update: MatchUpdate) -> None:
        """Record a pending match; a later match for the same source wins its clear."""
        self.updates[update.target_id] = update
        self.clears.pop(update.source_id, None)

    def record_clear(self, update: ClearMatchUpdate) -> None:
        self.clears[update.source_id] = update

    def record_displacement(self, item: DisplacementQueueItem) -> None:
        self.displaced[item.document_id] = item
        self.displaced_count += 1

    @property
    def matches_found(self) -> int:
        return len(self.updates)
