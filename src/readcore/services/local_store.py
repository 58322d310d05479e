"""On-device store for progress records and item statistics."""
import logging
import threading
from typing import Callable, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import sessionmaker

from readcore.models.base import as_utc
from readcore.models.models import ProgressRow, WordMasteryRow
from readcore.models.progress_models import (
    ProgressRecord,
    ProgressStatus,
    StepResult,
    WordMasteryRecord,
    record_key,
)

logger = logging.getLogger(__name__)


def _row_to_record(row: ProgressRow) -> ProgressRecord:
    return ProgressRecord(
        learner_id=row.learner_id,
        content_id=row.content_id,
        status=ProgressStatus(row.status),
        started_at=as_utc(row.started_at),
        current_step_index=row.current_step_index,
        step_results=[StepResult.from_dict(item) for item in row.step_results or []],
        overall_score=row.overall_score,
        total_time_seconds=row.total_time_seconds,
        completed_at=as_utc(row.completed_at),
    )


def _copy_to_row(record: ProgressRecord, row: ProgressRow) -> None:
    row.learner_id = record.learner_id
    row.content_id = record.content_id
    row.status = record.status.value
    row.current_step_index = record.current_step_index
    row.step_results = [result.to_dict() for result in record.step_results]
    row.overall_score = record.overall_score
    row.total_time_seconds = record.total_time_seconds
    row.started_at = record.started_at
    row.completed_at = record.completed_at


def _row_to_mastery(row: WordMasteryRow) -> WordMasteryRecord:
    return WordMasteryRecord(
        learner_id=row.learner_id,
        item_id=row.item_id,
        attempts=row.attempts,
        successes=row.successes,
        last_attempted_at=as_utc(row.last_attempted_at),
    )


class LocalStore:
    """Progress records and word statistics persisted on the device.

    Every read-modify-write runs in one transaction under the store lock, so
    concurrent callers on the device never lose each other's updates.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._lock = threading.RLock()

    def _transaction(self):
        return self._session_factory.begin()

    def get(self, learner_id: str, content_id: str) -> Optional[ProgressRecord]:
        """Get the locally known progress of a learner on a content unit."""
        with self._lock, self._session_factory() as session:
            row = session.get(ProgressRow, record_key(content_id, learner_id))
            return _row_to_record(row) if row else None

    def put(self, record: ProgressRecord) -> ProgressRecord:
        """Insert or replace a progress record."""
        with self._lock, self._transaction() as session:
            row = session.get(ProgressRow, record.id)
            if row is None:
                row = ProgressRow(id=record.id)
                session.add(row)
            _copy_to_row(record, row)
        logger.debug(f"Stored progress {record.id} ({record.status.value})")
        return record

    def put_many(self, records: List[ProgressRecord]) -> None:
        """Insert or replace several records in one transaction."""
        with self._lock, self._transaction() as session:
            for record in records:
                row = session.get(ProgressRow, record.id)
                if row is None:
                    row = ProgressRow(id=record.id)
                    session.add(row)
                _copy_to_row(record, row)

    def update(
        self,
        learner_id: str,
        content_id: str,
        change: Callable[[Optional[ProgressRecord]], ProgressRecord],
    ) -> ProgressRecord:
        """Atomically replace a record with ``change(current)``.

        ``change`` receives ``None`` when there is no record yet.
        """
        with self._lock, self._transaction() as session:
            key = record_key(content_id, learner_id)
            row = session.get(ProgressRow, key)
            current = _row_to_record(row) if row else None
            record = change(current)
            if row is None:
                row = ProgressRow(id=key)
                session.add(row)
            _copy_to_row(record, row)
            return record

    def list_for_learner(self, learner_id: str) -> List[ProgressRecord]:
        """Get all locally known records of a learner, most recently updated first."""
        with self._lock, self._session_factory() as session:
            rows = session.scalars(
                select(ProgressRow)
                .where(ProgressRow.learner_id == learner_id)
                .order_by(ProgressRow.updated_at.desc())
            ).all()
            return [_row_to_record(row) for row in rows]

    def delete_learner(self, learner_id: str) -> int:
        """Remove every record and item statistic of a learner."""
        with self._lock, self._transaction() as session:
            deleted = session.execute(
                delete(ProgressRow).where(ProgressRow.learner_id == learner_id)
            ).rowcount
            session.execute(delete(WordMasteryRow).where(WordMasteryRow.learner_id == learner_id))
        logger.info(f"Deleted {deleted} progress records of learner {learner_id}")
        return deleted

    def get_mastery(self, learner_id: str, item_id: str) -> WordMasteryRecord:
        """Get the statistics of an item, empty if it was never attempted."""
        with self._lock, self._session_factory() as session:
            row = session.get(WordMasteryRow, (learner_id, item_id))
            if row is None:
                return WordMasteryRecord(learner_id=learner_id, item_id=item_id)
            return _row_to_mastery(row)

    def update_mastery(
        self,
        learner_id: str,
        item_id: str,
        change: Callable[[WordMasteryRecord], WordMasteryRecord],
    ) -> WordMasteryRecord:
        """Atomically replace the statistics of an item with ``change(current)``."""
        with self._lock, self._transaction() as session:
            row = session.get(WordMasteryRow, (learner_id, item_id))
            if row is None:
                current = WordMasteryRecord(learner_id=learner_id, item_id=item_id)
                row = WordMasteryRow(learner_id=learner_id, item_id=item_id)
                session.add(row)
            else:
                current = _row_to_mastery(row)
            record = change(current)
            row.attempts = record.attempts
            row.successes = record.successes
            row.last_attempted_at = record.last_attempted_at
            return record

    def list_mastery(self, learner_id: str) -> List[WordMasteryRecord]:
        """Get the statistics of every item a learner attempted."""
        with self._lock, self._session_factory() as session:
            rows = session.scalars(
                select(WordMasteryRow)
                .where(WordMasteryRow.learner_id == learner_id)
                .order_by(WordMasteryRow.item_id)
            ).all()
            return [_row_to_mastery(row) for row in rows]
