"""Pending mutations kept in the sync queue."""
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Type

from readcore.errors import ValidationError
from readcore.models.progress_models import ProgressRecord, record_key


@dataclass(frozen=True)
class PendingMutation(ABC):
    """A progress write that still has to reach the server.

    Each kind carries exactly the arguments needed to replay it.
    """
    kind = "base"

    learner_id: str
    content_id: str

    @property
    def record_id(self) -> str:
        return record_key(self.content_id, self.learner_id)

    def to_payload(self) -> Dict[str, Any]:
        return asdict(self)

    @abstractmethod
    async def replay(self, client) -> ProgressRecord:
        """Send the mutation through a ``RemoteProgressClient``."""
        raise NotImplementedError("Subclasses must implement this method")


@dataclass(frozen=True)
class StartContent(PendingMutation):
    kind = "start"

    async def replay(self, client) -> ProgressRecord:
        return await client.start_content(self.learner_id, self.content_id)


@dataclass(frozen=True)
class UpdateProgress(PendingMutation):
    kind = "update"

    status: Optional[str] = None
    score: Optional[int] = None
    time_spent: Optional[int] = None

    async def replay(self, client) -> ProgressRecord:
        return await client.update_progress(
            self.learner_id,
            self.content_id,
            status=self.status,
            score=self.score,
            time_spent=self.time_spent,
        )


@dataclass(frozen=True)
class CompleteContent(PendingMutation):
    kind = "complete"

    score: Optional[int] = None
    elapsed_seconds: Optional[int] = None

    async def replay(self, client) -> ProgressRecord:
        return await client.complete_content(
            self.learner_id,
            self.content_id,
            score=self.score,
            elapsed_seconds=self.elapsed_seconds,
        )


@dataclass(frozen=True)
class RecordStep(PendingMutation):
    kind = "record_step"

    step_id: str = ""
    completed: bool = False
    score: Optional[int] = None
    attempts: Optional[int] = None
    elapsed_seconds: Optional[int] = None
    current_step_index: Optional[int] = None

    async def replay(self, client) -> ProgressRecord:
        return await client.record_step(
            self.learner_id,
            self.content_id,
            self.step_id,
            self.completed,
            score=self.score,
            attempts=self.attempts,
            elapsed_seconds=self.elapsed_seconds,
            current_step_index=self.current_step_index,
        )


MUTATION_TYPES: Dict[str, Type[PendingMutation]] = {
    mutation_type.kind: mutation_type
    for mutation_type in (StartContent, UpdateProgress, CompleteContent, RecordStep)
}


def mutation_from_payload(kind: str, payload: Dict[str, Any]) -> PendingMutation:
    """Rebuild a mutation from its persisted form."""
    mutation_type = MUTATION_TYPES.get(kind)
    if mutation_type is None:
        raise ValidationError(f"Unknown mutation kind: {kind!r}")
    try:
        return mutation_type(**payload)
    except TypeError as e:
        raise ValidationError(f"Malformed {kind} mutation: {e}")
