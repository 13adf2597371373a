"""Cascading reconciliation orchestration service.

One run reconciles one pair (e.g. issued invoices x received payments):
- Reads a single snapshot of sources and targets
- First pass: every unmatched source takes its best target, displacing the
  current holder when the new pairing is strictly better
- Drain: displaced sources are re-matched against the targets still free,
  possibly displacing further holders, until the queue empties or a bound
  (depth, timeout, cycle) is hit
- Finalize: all pending updates become one atomic batch of row writes

The whole run executes under a per-pair lock and is retried from a fresh
snapshot on transient failures. The cascade computation itself has no
await points, so no other run on the same pair can observe a half-built
claim state.

A separate credit-note pass marks received invoices cancelled by a
credit note as paid, under the same lock as the received-invoices run.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from ..errors import RetriesExhaustedError
from ..matching.cascade import (
    CascadeState,
    Claims,
    DisplacementQueue,
    DisplacementQueueItem,
    visit,
)
from ..matching.credit_notes import CreditNoteMatch, match_credit_notes
from ..matching.currency import ExchangeRateCache
from ..matching.engine import MatchingEngine, is_better_match
from ..schemas.documents import Document
from ..schemas.pairs import RECEIVED_INVOICES_PAIR, MatchPair, standard_pairs
from ..schemas.updates import (
    ClearMatchUpdate,
    MatchUpdate,
    RowWrite,
    build_clear_write,
    build_match_writes,
)
from .concurrency import LockManager, RetryPolicy, with_lock, with_retry

if TYPE_CHECKING:
    from ..config import Config
    from ..state_store import DocumentSnapshot, DocumentStore

logger = logging.getLogger(__name__)


class MatchingState(str, Enum):
    """Possible states for a matching run."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass
class MatchingResult:
    """Result of a matching run for one pair."""

    pair: str
    state: MatchingState = MatchingState.PENDING
    matches_found: int = 0
    clears: int = 0
    displaced_count: int = 0
    max_depth_reached: int = 0
    cycle_detected: bool = False
    depth_limit_reached: bool = False
    timed_out: bool = False
    rate_cache_misses: int = 0
    writes: int = 0
    dry_run: bool = False
    duration_ms: int = 0
    errors: list[str] = field(default_factory=list)
    # Original exception of a failed run
    error: Exception | None = field(default=None, repr=False, compare=False)

    @property
    def success(self) -> bool:
        """Return True if the run completed (bounds reached still count as success)."""
        return self.state == MatchingState.COMPLETED

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "pair": self.pair,
            "state": self.state.value,
            "matches_found": self.matches_found,
            "clears": self.clears,
            "displaced_count": self.displaced_count,
            "max_depth_reached": self.max_depth_reached,
            "cycle_detected": self.cycle_detected,
            "depth_limit_reached": self.depth_limit_reached,
            "timed_out": self.timed_out,
            "rate_cache_misses": self.rate_cache_misses,
            "writes": self.writes,
            "dry_run": self.dry_run,
            "duration_ms": self.duration_ms,
            "errors": self.errors,
        }


@dataclass
class CreditNoteResult:
    """Result of a credit-note pass over one book's received invoices."""

    book_id: str
    state: MatchingState = MatchingState.PENDING
    matches: list[CreditNoteMatch] = field(default_factory=list)
    writes: int = 0
    dry_run: bool = False
    duration_ms: int = 0
    errors: list[str] = field(default_factory=list)
    error: Exception | None = field(default=None, repr=False, compare=False)

    @property
    def success(self) -> bool:
        return self.state == MatchingState.COMPLETED

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "book_id": self.book_id,
            "state": self.state.value,
            "matches": [m.to_dict() for m in self.matches],
            "writes": self.writes,
            "dry_run": self.dry_run,
            "duration_ms": self.duration_ms,
            "errors": self.errors,
        }


@dataclass
class CascadeOutcome:
    """Decisions of one cascade computation, before anything is written."""

    state: CascadeState
    writes: list[RowWrite]
    rate_cache_misses: int = 0

    @property
    def updates(self) -> list[MatchUpdate]:
        return list(self.state.updates.values())

    @property
    def clears(self) -> list[ClearMatchUpdate]:
        return list(self.state.clears.values())


class ReconciliationService:
    """Orchestrates cascading reconciliation of document pairs.

    Usage:
        service = ReconciliationService(store, config, rates)
        result = await service.run_matching(pair)
    """

    def __init__(
        self,
        store: DocumentStore,
        config: Config,
        rates: ExchangeRateCache | None = None,
        locks: LockManager | None = None,
    ) -> None:
        """Initialize the reconciliation service.

        Args:
            store: Document store (snapshot read and batched write).
            config: Application configuration.
            rates: Pre-populated exchange-rate cache.
            locks: Lock registry; share one instance between services that
                may reconcile the same pair.
        """
        self.store = store
        self.config = config
        self.rates = rates if rates is not None else ExchangeRateCache()
        self.locks = locks or LockManager()

        self.retry_policy = RetryPolicy(
            max_retries=config.concurrency.max_retries,
            base_delay_ms=config.concurrency.retry_base_delay_ms,
            max_delay_ms=config.concurrency.retry_max_delay_ms,
        )

    async def run_matching(self, pair: MatchPair, dry_run: bool = False) -> MatchingResult:
        """Run the guarded, retried, cascading reconciliation for one pair.

        Args:
            pair: Target sheet x source sheet to reconcile.
            dry_run: Compute the full cascade but write nothing.

        Returns:
            MatchingResult; lock, read and write failures yield a FAILED
            result carrying the original exception.
        """
        start_time = time.time()
        result = MatchingResult(pair=pair.name, dry_run=dry_run)
        lock_timeout_ms = self.config.concurrency.lock_timeout_ms

        logger.info("Starting matching for %s%s", pair.lock_key, " (dry run)" if dry_run else "")

        # The lock is held across every attempt and the backoff between them
        async def guarded() -> CascadeOutcome:
            return await with_retry(
                lambda: self._run_once(pair, dry_run),
                self.retry_policy,
                description=f"Matching {pair.lock_key}",
            )

        try:
            outcome = await with_lock(self.locks, pair.lock_key, guarded, lock_timeout_ms)
            self._fill_result(result, outcome)
            result.state = MatchingState.COMPLETED
            logger.info(
                "Matching %s completed: %d matches, %d displaced, %d cleared, max depth %d%s",
                pair.lock_key,
                result.matches_found,
                result.displaced_count,
                result.clears,
                result.max_depth_reached,
                ", cycle detected" if result.cycle_detected else "",
            )
        except Exception as e:
            logger.error("Matching %s failed: %s", pair.lock_key, e)
            self._record_failure(result, e)

        result.duration_ms = int((time.time() - start_time) * 1000)
        return result

    async def run_all(self, book_id: str | None = None, dry_run: bool = False) -> list[MatchingResult]:
        """Run every standard pair of a book in order, stopping at the first failure."""
        book_id = book_id or self.config.book_id
        results: list[MatchingResult] = []

        for pair in standard_pairs(book_id):
            result = await self.run_matching(pair, dry_run=dry_run)
            results.append(result)
            if not result.success:
                logger.error("Stopping after failed pair %s", pair.name)
                break

        return results

    async def run_credit_notes(
        self, book_id: str | None = None, dry_run: bool = False
    ) -> CreditNoteResult:
        """Mark received invoices cancelled by a credit note as paid.

        Runs under the received-invoices lock, so it never interleaves with
        a matching run over the same sheet.
        """
        start_time = time.time()
        pair = RECEIVED_INVOICES_PAIR.for_book(book_id or self.config.book_id)
        result = CreditNoteResult(book_id=pair.book_id, dry_run=dry_run)

        async def attempt() -> list[CreditNoteMatch]:
            snapshot = await self.store.read_documents(pair)
            matches = match_credit_notes(snapshot.targets)
            writes = [w for m in matches for w in m.writes]
            if dry_run:
                logger.info("Dry run: skipping %d row write(s) for credit notes", len(writes))
            else:
                await self.store.write_batch(writes)
            return matches

        async def guarded() -> list[CreditNoteMatch]:
            return await with_retry(
                attempt, self.retry_policy, description=f"Credit notes {pair.lock_key}"
            )

        try:
            result.matches = await with_lock(
                self.locks, pair.lock_key, guarded, self.config.concurrency.lock_timeout_ms
            )
            result.writes = sum(len(m.writes) for m in result.matches)
            result.state = MatchingState.COMPLETED
            logger.info(
                "Credit notes %s completed: %d invoice(s) cancelled",
                pair.lock_key,
                len(result.matches),
            )
        except Exception as e:
            logger.error("Credit notes %s failed: %s", pair.lock_key, e)
            self._record_failure(result, e)

        result.duration_ms = int((time.time() - start_time) * 1000)
        return result

    @staticmethod
    def _record_failure(result: MatchingResult | CreditNoteResult, error: Exception) -> None:
        """Mark a result FAILED, keeping the underlying error of exhausted retries."""
        result.state = MatchingState.FAILED
        result.error = error.last_error if isinstance(error, RetriesExhaustedError) else error
        result.errors.append(str(error))

    async def _run_once(self, pair: MatchPair, dry_run: bool) -> CascadeOutcome:
        """One attempt: read snapshot, compute cascade, write batch."""
        snapshot = await self.store.read_documents(pair)

        outcome = self.run_cascade(snapshot, pair)

        if dry_run:
            logger.info("Dry run: skipping %d row write(s) for %s", len(outcome.writes), pair.lock_key)
        else:
            await self.store.write_batch(outcome.writes)

        return outcome

    def run_cascade(self, snapshot: DocumentSnapshot, pair: MatchPair) -> CascadeOutcome:
        """Compute all match decisions for a snapshot.

        Pure with respect to the store: nothing is read or written here.
        A fresh set of claims, queue and visited set is used on every call.
        """
        engine = MatchingEngine(self.config.matching, self.rates)
        claims = Claims()
        state = CascadeState()
        queue = DisplacementQueue()
        sources_by_id = snapshot.sources_by_id()
        cascade_cfg = self.config.cascade

        # First pass: brand-new sources
        unmatched = [s for s in snapshot.sources if not s.is_matched]
        logger.debug("First pass over %d unmatched source(s) for %s", len(unmatched), pair.lock_key)

        for source in unmatched:
            if claims.is_reserved(source.kind, source.document_id):
                continue
            self._claim_best(
                engine, source, snapshot.targets, sources_by_id, claims, state, queue, depth=0
            )

        # Drain displaced sources
        while not queue.is_empty():
            if state.elapsed_ms() >= cascade_cfg.cascade_timeout_ms:
                state.timed_out = True
                logger.warning(
                    "Cascade timeout exceeded for %s after %.0fms; %d item(s) abandoned",
                    pair.lock_key,
                    state.elapsed_ms(),
                    len(queue),
                )
                break

            # Bounded both by chain depth and by the number of drained items
            head = queue.peek()
            if (
                state.iterations >= cascade_cfg.max_cascade_depth
                or (head is not None and head.depth >= cascade_cfg.max_cascade_depth)
            ):
                state.depth_limit_reached = True
                logger.warning(
                    "Max cascade depth %d reached for %s after %d iteration(s); %d item(s) abandoned",
                    cascade_cfg.max_cascade_depth,
                    pair.lock_key,
                    state.iterations,
                    len(queue),
                )
                break

            item = queue.pop()
            if item is None:
                break
            state.iterations += 1

            if visit(state.visited, item.document_id):
                state.cycle_detected = True
                logger.warning(
                    "Cycle detected in displacement chain for %s at %s (chain: %s)",
                    pair.lock_key,
                    item.document_id,
                    ", ".join(sorted(state.visited)),
                )
                break

            if not claims.is_reserved(item.kind, item.document_id):
                claimed = self._claim_best(
                    engine,
                    item.document,
                    snapshot.targets,
                    sources_by_id,
                    claims,
                    state,
                    queue,
                    depth=item.depth,
                )
                if not claimed:
                    state.record_clear(self._clear_for(item))
                    logger.debug("Displaced %s left unmatched", item.document_id)

            state.max_depth_reached = max(state.max_depth_reached, item.depth)

        # Every displaced source without a claim is explicitly cleared,
        # including items abandoned by a bound
        for doc_id, item in state.displaced.items():
            if not claims.is_reserved(item.kind, doc_id) and doc_id not in state.clears:
                state.record_clear(self._clear_for(item))

        writes = self._build_writes(state, pair)

        if engine.cache_miss_dates:
            logger.warning(
                "%s: %d date(s) without a cached exchange rate: %s",
                pair.lock_key,
                len(engine.cache_miss_dates),
                ", ".join(d.isoformat() for d in sorted(engine.cache_miss_dates)),
            )

        return CascadeOutcome(
            state=state,
            writes=writes,
            rate_cache_misses=len(engine.cache_miss_dates),
        )

    def _claim_best(
        self,
        engine: MatchingEngine,
        source: Document,
        targets: list[Document],
        sources_by_id: dict[str, Document],
        claims: Claims,
        state: CascadeState,
        queue: DisplacementQueue,
        depth: int,
    ) -> bool:
        """Let a source claim its best available target.

        Returns:
            True if the source claimed a target.
        """
        available = [t for t in targets if not claims.is_reserved(t.kind, t.document_id)]
        matches = engine.find_matches(
            source, available, include_already_matched=True, sources_by_id=sources_by_id
        )
        if not matches:
            return False

        best = matches[0]
        displaced: Document | None = None

        if best.is_upgrade:
            existing = best.existing_quality
            if existing is None or not is_better_match(best.quality, existing):
                logger.debug(
                    "%s: %s is held by %s with an equal or better match",
                    source.document_id,
                    best.target_id,
                    best.existing_holder_id,
                )
                return False
            displaced = sources_by_id.get(best.existing_holder_id or "")

        claims.reserve(best.target.kind, best.target_id)
        claims.reserve(source.kind, source.document_id)
        state.record_match(
            MatchUpdate(
                target_id=best.target_id,
                target_location=best.target.location,
                source_id=source.document_id,
                source_location=source.location,
                confidence=best.confidence,
                has_counterparty_match=best.has_counterparty_match,
                displaced_source_id=best.existing_holder_id if best.is_upgrade else None,
            )
        )

        if best.is_upgrade:
            if displaced is None:
                # Holder is not in the source sheet; nothing to re-match
                state.displaced_count += 1
                logger.warning(
                    "%s displaced unknown holder %s from %s",
                    source.document_id,
                    best.existing_holder_id,
                    best.target_id,
                )
            else:
                item = DisplacementQueueItem(
                    document=displaced,
                    lost_target_id=best.target_id,
                    depth=depth + 1,
                )
                state.record_displacement(item)
                queue.add(item)
                logger.info(
                    "%s displaced %s from %s (%s -> %s)",
                    source.document_id,
                    displaced.document_id,
                    best.target_id,
                    best.existing_confidence.value if best.existing_confidence else "LOW",
                    best.confidence.value,
                )
        else:
            logger.debug(
                "Match found: %s -> %s (%s)",
                source.document_id,
                best.target_id,
                best.confidence.value,
            )

        return True

    @staticmethod
    def _clear_for(item: DisplacementQueueItem) -> ClearMatchUpdate:
        return ClearMatchUpdate(
            source_id=item.document_id,
            source_location=item.location,
            lost_target_id=item.lost_target_id,
        )

    @staticmethod
    def _build_writes(state: CascadeState, pair: MatchPair) -> list[RowWrite]:
        writes: list[RowWrite] = []
        for update in state.updates.values():
            writes.extend(build_match_writes(update, tracks_paid=pair.tracks_paid))
        for clear in state.clears.values():
            writes.append(build_clear_write(clear))
        return writes

    @staticmethod
    def _fill_result(result: MatchingResult, outcome: CascadeOutcome) -> None:
        state = outcome.state
        result.matches_found = state.matches_found
        result.clears = len(state.clears)
        result.displaced_count = state.displaced_count
        result.max_depth_reached = state.max_depth_reached
        result.cycle_detected = state.cycle_detected
        result.depth_limit_reached = state.depth_limit_reached
        result.timed_out = state.timed_out
        result.rate_cache_misses = outcome.rate_cache_misses
        result.writes = len(outcome.writes)
