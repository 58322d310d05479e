"""Database models for the on-device store."""
from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Integer,
    String,
)

from readcore.models.base import Base, TimestampMixin, utcnow


class ProgressRow(Base, TimestampMixin):
    """One learner's progress on one content unit."""

    __tablename__ = "progress_records"

    id = Column(String, primary_key=True)  # "<content_id>:<learner_id>"
    learner_id = Column(String, nullable=False, index=True)
    content_id = Column(String, nullable=False)
    status = Column(String, nullable=False)
    current_step_index = Column(Integer, default=0, nullable=False)
    step_results = Column(JSON, default=list, nullable=False)
    overall_score = Column(Integer, nullable=True)
    total_time_seconds = Column(Integer, default=0, nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)


class WordMasteryRow(Base, TimestampMixin):
    """Long-lived attempt statistics for one item."""

    __tablename__ = "word_mastery"

    learner_id = Column(String, primary_key=True)
    item_id = Column(String, primary_key=True)
    attempts = Column(Integer, default=0, nullable=False)
    successes = Column(Integer, default=0, nullable=False)
    last_attempted_at = Column(DateTime(timezone=True), nullable=True)


class PendingMutationRow(Base):
    """A mutation applied locally but not yet acknowledged by the server."""

    __tablename__ = "pending_mutations"
    __table_args__ = {"sqlite_autoincrement": True}  # never reuse a removed seq

    seq = Column(Integer, primary_key=True, autoincrement=True)  # FIFO order
    record_id = Column(String, nullable=False, index=True)
    learner_id = Column(String, nullable=False, index=True)
    kind = Column(String, nullable=False)
    payload = Column(JSON, nullable=False)
    enqueued_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class CacheRow(Base):
    """Cached content payload with its fetch timestamp."""

    __tablename__ = "content_cache"

    key = Column(String, primary_key=True)
    payload = Column(JSON, nullable=False)
    fetched_at = Column(DateTime(timezone=True), nullable=False)
