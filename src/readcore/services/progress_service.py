"""Offline-first progress service.

Writes go to the server when it is reachable. On a connectivity failure the
write is applied to the local store, queued, and the locally synthesized record
is returned; ``sync`` replays the queue later. Any other failure reaches the
caller and nothing is queued.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional

from readcore import monitoring
from readcore.config import SyncSettings
from readcore.errors import ConnectivityError, NotFoundError, RemoteError, ValidationError
from readcore.models.base import utcnow
from readcore.models.mutation_models import (
    CompleteContent,
    PendingMutation,
    RecordStep,
    StartContent,
    UpdateProgress,
)
from readcore.models.progress_models import ProgressRecord, ProgressStatus, ProgressSummary, SyncReport
from readcore.services import optimistic
from readcore.services.connectivity import ConnectivityMonitor
from readcore.services.local_store import LocalStore
from readcore.services.remote_client import RemoteProgressClient
from readcore.services.sync_queue import SyncQueue

logger = logging.getLogger(__name__)

Synthesizer = Callable[[Optional[ProgressRecord]], ProgressRecord]


def _require_id(name: str, value: str) -> None:
    if not value or not str(value).strip():
        raise ValidationError(f"{name} is required")


def _require_non_negative(name: str, value: Optional[int]) -> None:
    if value is not None and value < 0:
        raise ValidationError(f"{name} cannot be negative")


class ProgressService:
    """Progress writes and reads that keep working without a network."""

    def __init__(
        self,
        store: LocalStore,
        queue: SyncQueue,
        client: RemoteProgressClient,
        settings: Optional[SyncSettings] = None,
        connectivity: Optional[ConnectivityMonitor] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the service with its stores and the remote client."""
        self.store = store
        self.queue = queue
        self.client = client
        self.settings = settings or SyncSettings()
        self.connectivity = connectivity
        self.clock = clock
        self._drain_lock = asyncio.Lock()
        self._record_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    async def start_content(self, learner_id: str, content_id: str) -> ProgressRecord:
        """Start a content unit for a learner."""
        _require_id("learner_id", learner_id)
        _require_id("content_id", content_id)
        now = self.clock()
        return await self._write(
            StartContent(learner_id=learner_id, content_id=content_id),
            lambda existing: optimistic.synthesize_started(existing, learner_id, content_id, now),
        )

    async def update_progress(
        self,
        learner_id: str,
        content_id: str,
        status: Optional[ProgressStatus] = None,
        score: Optional[int] = None,
        time_spent: Optional[int] = None,
    ) -> ProgressRecord:
        """Change status, score or time of an existing record."""
        _require_id("learner_id", learner_id)
        _require_id("content_id", content_id)
        _require_non_negative("score", score)
        _require_non_negative("time_spent", time_spent)
        now = self.clock()
        return await self._write(
            UpdateProgress(
                learner_id=learner_id,
                content_id=content_id,
                status=status.value if status else None,
                score=score,
                time_spent=time_spent,
            ),
            lambda existing: optimistic.synthesize_updated(
                existing, now, status=status, score=score, time_spent=time_spent
            ),
        )

    async def record_step(
        self,
        learner_id: str,
        content_id: str,
        step_id: str,
        completed: bool,
        score: Optional[int] = None,
        attempts: Optional[int] = None,
        elapsed_seconds: Optional[int] = None,
        current_step_index: Optional[int] = None,
        step_count: Optional[int] = None,
    ) -> ProgressRecord:
        """Record the outcome of one step.

        ``step_count`` is the number of steps of the content unit, when known;
        ``current_step_index`` may not exceed it.
        """
        _require_id("learner_id", learner_id)
        _require_id("content_id", content_id)
        _require_id("step_id", step_id)
        _require_non_negative("score", score)
        _require_non_negative("attempts", attempts)
        _require_non_negative("elapsed_seconds", elapsed_seconds)
        _require_non_negative("current_step_index", current_step_index)
        if step_count is not None and current_step_index is not None and current_step_index > step_count:
            raise ValidationError(
                f"current_step_index {current_step_index} exceeds step count {step_count}"
            )
        now = self.clock()
        return await self._write(
            RecordStep(
                learner_id=learner_id,
                content_id=content_id,
                step_id=step_id,
                completed=completed,
                score=score,
                attempts=attempts,
                elapsed_seconds=elapsed_seconds,
                current_step_index=current_step_index,
            ),
            lambda existing: optimistic.synthesize_step(
                existing,
                learner_id,
                content_id,
                now,
                step_id,
                completed,
                score=score,
                attempts=attempts,
                elapsed_seconds=elapsed_seconds,
                current_step_index=current_step_index,
            ),
        )

    async def complete_content(
        self,
        learner_id: str,
        content_id: str,
        score: Optional[int] = None,
        elapsed_seconds: Optional[int] = None,
    ) -> ProgressRecord:
        """Mark a content unit completed."""
        _require_id("learner_id", learner_id)
        _require_id("content_id", content_id)
        _require_non_negative("score", score)
        _require_non_negative("elapsed_seconds", elapsed_seconds)
        now = self.clock()
        return await self._write(
            CompleteContent(
                learner_id=learner_id,
                content_id=content_id,
                score=score,
                elapsed_seconds=elapsed_seconds,
            ),
            lambda existing: optimistic.synthesize_completed(
                existing, learner_id, content_id, now, score=score, elapsed_seconds=elapsed_seconds
            ),
        )

    async def get_progress(self, learner_id: str, content_id: str) -> Optional[ProgressRecord]:
        """Get a learner's progress, local store first.

        Returns None when the server has no record or cannot be reached.
        """
        _require_id("learner_id", learner_id)
        _require_id("content_id", content_id)
        cached = self.store.get(learner_id, content_id)
        if cached is not None:
            return cached

        try:
            record = await self._call_remote(
                "get_progress", lambda: self.client.get_progress(learner_id, content_id)
            )
        except NotFoundError:
            return None
        except ConnectivityError as e:
            logger.info(f"No local progress for {content_id}:{learner_id} and server unreachable: {e}")
            return None
        return self.store.put(record)

    async def fetch_all_progress(self, learner_id: str) -> List[ProgressRecord]:
        """Refresh all records of a learner from the server.

        Records that still have queued mutations keep their local state. When the
        server cannot be reached the locally known records are returned.
        """
        _require_id("learner_id", learner_id)
        try:
            records = await self._call_remote(
                "list_progress", lambda: self.client.list_progress(learner_id)
            )
        except ConnectivityError as e:
            logger.info(f"Serving local progress for learner {learner_id}: {e}")
            return self.store.list_for_learner(learner_id)

        fresh = [record for record in records if not self.queue.has_pending(record.id)]
        self.store.put_many(fresh)
        return self.store.list_for_learner(learner_id)

    async def get_summary(self, learner_id: str) -> ProgressSummary:
        """Get aggregate progress of a learner.

        When the server cannot be reached, or the learner has unsynced changes,
        the summary is computed from the local store.
        """
        _require_id("learner_id", learner_id)
        local = self.store.list_for_learner(learner_id)
        if any(self.queue.has_pending(record.id) for record in local):
            return ProgressSummary.from_records(local)
        try:
            return await self._call_remote("get_summary", lambda: self.client.get_summary(learner_id))
        except ConnectivityError as e:
            logger.info(f"Summarizing local progress for learner {learner_id}: {e}")
            return ProgressSummary.from_records(local)

    def pending_count(self) -> int:
        """Number of local changes not yet acknowledged by the server."""
        return self.queue.count()

    def reset_learner(self, learner_id: str) -> int:
        """Forget everything stored for a learner, including unsynced changes."""
        _require_id("learner_id", learner_id)
        self.queue.clear_learner(learner_id)
        return self.store.delete_learner(learner_id)

    async def sync(self) -> SyncReport:
        """Replay queued mutations, oldest first.

        Acknowledged entries are removed. A connectivity failure stops the drain and
        keeps that entry and everything after it. Any other failure drops the entry
        and the drain goes on. Concurrent calls run one after another.
        """
        async with self._drain_lock:
            report = SyncReport()
            entry = self.queue.head()
            while entry is not None:
                mutation = entry.mutation
                async with self._record_lock(mutation.record_id):
                    try:
                        record = await self._call_remote(
                            mutation.kind, lambda: mutation.replay(self.client)
                        )
                    except ConnectivityError as e:
                        logger.info(f"Sync interrupted at seq {entry.seq} ({mutation.kind}): {e}")
                        report.interrupted = True
                        break
                    except RemoteError as e:
                        self.queue.remove(entry.seq)
                        report.dropped += 1
                        monitoring.mutations_dropped.labels(reason=e.kind.value).inc()
                        logger.warning(
                            f"Dropped queued {mutation.kind} for {mutation.record_id} "
                            f"(seq {entry.seq}): {e}"
                        )
                    except Exception as e:
                        self.queue.remove(entry.seq)
                        report.dropped += 1
                        monitoring.mutations_dropped.labels(reason="unexpected").inc()
                        logger.error(
                            f"Dropped queued {mutation.kind} for {mutation.record_id} "
                            f"(seq {entry.seq}) after an unexpected error: {e}",
                            exc_info=True,
                        )
                    else:
                        self.queue.remove(entry.seq)
                        report.replayed += 1
                        monitoring.mutations_replayed.labels(kind=mutation.kind).inc()
                        # Later entries for the record are newer than this response
                        if not self.queue.has_pending(mutation.record_id):
                            self.store.put(record)
                entry = self.queue.next_after(entry.seq)

            report.remaining = self.queue.count()

        outcome = "interrupted" if report.interrupted else "completed"
        monitoring.sync_runs.labels(outcome=outcome).inc()
        if report.replayed or report.dropped or report.interrupted:
            logger.info(
                f"Sync {outcome}: replayed={report.replayed} dropped={report.dropped} "
                f"remaining={report.remaining}"
            )
        return report

    async def _write(self, mutation: PendingMutation, synthesize: Synthesizer) -> ProgressRecord:
        """Send a mutation, falling back to the optimistic path when offline."""
        async with self._record_lock(mutation.record_id):
            if self.queue.has_pending(mutation.record_id):
                logger.info(f"{mutation.record_id} has unsynced changes, queueing {mutation.kind}")
                return self._apply_locally(mutation, synthesize)

            try:
                record = await self._call_remote(mutation.kind, lambda: mutation.replay(self.client))
            except ConnectivityError as e:
                logger.warning(f"{mutation.kind} for {mutation.record_id} saved offline: {e}")
                return self._apply_locally(mutation, synthesize)

            return self.store.put(record)

    @asynccontextmanager
    async def _record_lock(self, record_id: str) -> AsyncIterator[None]:
        """Hold the lock of one record; it is forgotten once nobody uses it."""
        lock = self._record_locks.get(record_id)
        if lock is None:
            lock = self._record_locks[record_id] = asyncio.Lock()
        self._lock_users[record_id] = self._lock_users.get(record_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[record_id] -= 1
            if self._lock_users[record_id] == 0:
                del self._lock_users[record_id]
                del self._record_locks[record_id]

    def _apply_locally(self, mutation: PendingMutation, synthesize: Synthesizer) -> ProgressRecord:
        record = self.store.update(mutation.learner_id, mutation.content_id, synthesize)
        self.queue.append(mutation)
        return record

    async def _call_remote(self, operation: str, call: Callable[[], Awaitable]):
        """Run a remote call under the request timeout.

        A timeout counts as a connectivity failure.
        """
        try:
            result = await asyncio.wait_for(call(), timeout=self.settings.request_timeout)
        except asyncio.TimeoutError:
            self._report(online=False)
            raise ConnectivityError(f"{operation} timed out after {self.settings.request_timeout}s")
        except ConnectivityError:
            self._report(online=False)
            raise
        except RemoteError:
            self._report(online=True)
            raise
        self._report(online=True)
        return result

    def _report(self, online: bool) -> None:
        if self.connectivity is None:
            return
        if online:
            self.connectivity.report_success()
        else:
            self.connectivity.report_failure()
