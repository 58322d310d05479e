"""Local stand-ins for server responses while offline.

These functions mirror what the server does for each write so the caller gets a
plausible record immediately. The server's eventual response is authoritative and
overwrites whatever is synthesized here once the queued mutation replays.
"""
from dataclasses import replace
from datetime import datetime
from typing import List, Optional

from readcore.errors import NotFoundError
from readcore.models.progress_models import ProgressRecord, ProgressStatus, StepResult


def synthesize_started(
    existing: Optional[ProgressRecord], learner_id: str, content_id: str, now: datetime
) -> ProgressRecord:
    """Start (or restart) a content unit: in progress, first start time kept."""
    if existing is None:
        return ProgressRecord(
            learner_id=learner_id,
            content_id=content_id,
            status=ProgressStatus.IN_PROGRESS,
            started_at=now,
        )
    if existing.status is ProgressStatus.COMPLETED:
        # A completed unit stays completed
        return existing
    return replace(existing, status=ProgressStatus.IN_PROGRESS)


def synthesize_updated(
    existing: Optional[ProgressRecord],
    now: datetime,
    status: Optional[ProgressStatus] = None,
    score: Optional[int] = None,
    time_spent: Optional[int] = None,
) -> ProgressRecord:
    """Apply a partial update; only fields that are given change."""
    if existing is None:
        raise NotFoundError("Progress record not found")
    new_status = status or existing.status
    if new_status is ProgressStatus.COMPLETED:
        completed_at = existing.completed_at or now
    else:
        completed_at = None
    return replace(
        existing,
        status=new_status,
        overall_score=score if score is not None else existing.overall_score,
        total_time_seconds=time_spent if time_spent is not None else existing.total_time_seconds,
        completed_at=completed_at,
    )


def synthesize_step(
    existing: Optional[ProgressRecord],
    learner_id: str,
    content_id: str,
    now: datetime,
    step_id: str,
    completed: bool,
    score: Optional[int] = None,
    attempts: Optional[int] = None,
    elapsed_seconds: Optional[int] = None,
    current_step_index: Optional[int] = None,
) -> ProgressRecord:
    """Record one step outcome, replacing an earlier result for the same step."""
    record = existing or synthesize_started(None, learner_id, content_id, now)
    previous = record.step(step_id)

    result = StepResult(
        step_id=step_id,
        completed=completed,
        score=score,
        attempts=attempts if attempts is not None else (previous.attempts if previous else 0) + 1,
        time_spent_seconds=elapsed_seconds or 0,
        completed_at=now if completed else None,
    )
    step_results: List[StepResult] = [
        item for item in record.step_results if item.step_id != step_id
    ]
    step_results.append(result)

    added_time = result.time_spent_seconds - (previous.time_spent_seconds if previous else 0)
    status = record.status
    if status is ProgressStatus.NOT_STARTED:
        status = ProgressStatus.IN_PROGRESS

    return replace(
        record,
        status=status,
        step_results=step_results,
        current_step_index=(
            current_step_index if current_step_index is not None else record.current_step_index
        ),
        total_time_seconds=max(0, record.total_time_seconds + added_time),
    )


def synthesize_completed(
    existing: Optional[ProgressRecord],
    learner_id: str,
    content_id: str,
    now: datetime,
    score: Optional[int] = None,
    elapsed_seconds: Optional[int] = None,
) -> ProgressRecord:
    """Mark a content unit completed, keeping every previously known field.

    ``completed_at`` is stamped with the local clock; the server replaces it with
    its own timestamp when the completion replays.
    """
    if existing is None:
        return ProgressRecord(
            learner_id=learner_id,
            content_id=content_id,
            status=ProgressStatus.COMPLETED,
            started_at=now,
            overall_score=score,
            total_time_seconds=elapsed_seconds or 0,
            completed_at=now,
        )
    return replace(
        existing,
        status=ProgressStatus.COMPLETED,
        overall_score=score if score is not None else existing.overall_score,
        total_time_seconds=(
            elapsed_seconds if elapsed_seconds is not None else existing.total_time_seconds
        ),
        completed_at=now,
    )
