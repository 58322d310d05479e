"""Ordered log of progress mutations not yet acknowledged by the server."""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import sessionmaker

from readcore import monitoring
from readcore.models.base import as_utc
from readcore.models.models import PendingMutationRow
from readcore.models.mutation_models import PendingMutation, mutation_from_payload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueuedMutation:
    """A pending mutation with its position in the queue."""
    seq: int
    mutation: PendingMutation
    enqueued_at: datetime


def _row_to_entry(row: PendingMutationRow) -> QueuedMutation:
    return QueuedMutation(
        seq=row.seq,
        mutation=mutation_from_payload(row.kind, row.payload),
        enqueued_at=as_utc(row.enqueued_at),
    )


class SyncQueue:
    """FIFO of pending mutations persisted on the device.

    Entries leave the queue only through ``remove`` (after a confirmed server
    acknowledgment or a non-retryable rejection). Removing an entry twice is a no-op.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._lock = threading.RLock()

    def append(self, mutation: PendingMutation) -> int:
        """Add a mutation at the tail and return its sequence number."""
        with self._lock, self._session_factory.begin() as session:
            row = PendingMutationRow(
                record_id=mutation.record_id,
                learner_id=mutation.learner_id,
                kind=mutation.kind,
                payload=mutation.to_payload(),
            )
            session.add(row)
            session.flush()
            seq = row.seq
        monitoring.mutations_enqueued.labels(kind=mutation.kind).inc()
        self._update_gauge()
        logger.info(f"Queued {mutation.kind} for {mutation.record_id} (seq {seq})")
        return seq

    def head(self) -> Optional[QueuedMutation]:
        """Get the oldest entry without removing it."""
        with self._lock, self._session_factory() as session:
            row = session.scalars(
                select(PendingMutationRow).order_by(PendingMutationRow.seq).limit(1)
            ).first()
            return _row_to_entry(row) if row else None

    def next_after(self, seq: int) -> Optional[QueuedMutation]:
        """Get the oldest entry enqueued after ``seq``."""
        with self._lock, self._session_factory() as session:
            row = session.scalars(
                select(PendingMutationRow)
                .where(PendingMutationRow.seq > seq)
                .order_by(PendingMutationRow.seq)
                .limit(1)
            ).first()
            return _row_to_entry(row) if row else None

    def entries(self) -> List[QueuedMutation]:
        """Get every entry, head first."""
        with self._lock, self._session_factory() as session:
            rows = session.scalars(
                select(PendingMutationRow).order_by(PendingMutationRow.seq)
            ).all()
            return [_row_to_entry(row) for row in rows]

    def remove(self, seq: int) -> bool:
        """Remove an entry; return False if it was already gone."""
        with self._lock, self._session_factory.begin() as session:
            removed = session.execute(
                delete(PendingMutationRow).where(PendingMutationRow.seq == seq)
            ).rowcount
        self._update_gauge()
        return bool(removed)

    def has_pending(self, record_id: str, after_seq: int = 0) -> bool:
        """Check whether a record has entries enqueued after ``after_seq``."""
        with self._lock, self._session_factory() as session:
            count = session.scalar(
                select(func.count())
                .select_from(PendingMutationRow)
                .where(
                    PendingMutationRow.record_id == record_id,
                    PendingMutationRow.seq > after_seq,
                )
            )
            return count > 0

    def count(self) -> int:
        """Number of pending entries."""
        with self._lock, self._session_factory() as session:
            return session.scalar(select(func.count()).select_from(PendingMutationRow))

    def clear_learner(self, learner_id: str) -> int:
        """Drop every pending entry of a learner (profile reset)."""
        with self._lock, self._session_factory.begin() as session:
            removed = session.execute(
                delete(PendingMutationRow).where(PendingMutationRow.learner_id == learner_id)
            ).rowcount
        self._update_gauge()
        if removed:
            logger.warning(f"Discarded {removed} pending mutations of learner {learner_id}")
        return removed

    def _update_gauge(self) -> None:
        monitoring.pending_mutations.set(self.count())
