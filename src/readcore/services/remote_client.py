"""HTTP contract of the backend the offline layer depends on.

The abstract clients are what the services consume; ``HttpProgressClient`` and
``HttpContentClient`` implement them over httpx. Every failure leaves these
clients as one of the ``readcore.errors`` kinds.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from readcore import monitoring
from readcore.errors import ValidationError, error_for_status, error_for_transport
from readcore.models.progress_models import ProgressRecord, ProgressSummary

logger = logging.getLogger(__name__)


class RemoteProgressClient(ABC):
    """Server-side progress operations.

    All writes are idempotent when replayed with identical arguments.
    """

    @abstractmethod
    async def start_content(self, learner_id: str, content_id: str) -> ProgressRecord:
        raise NotImplementedError

    @abstractmethod
    async def update_progress(
        self,
        learner_id: str,
        content_id: str,
        status: Optional[str] = None,
        score: Optional[int] = None,
        time_spent: Optional[int] = None,
    ) -> ProgressRecord:
        raise NotImplementedError

    @abstractmethod
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
    ) -> ProgressRecord:
        raise NotImplementedError

    @abstractmethod
    async def complete_content(
        self,
        learner_id: str,
        content_id: str,
        score: Optional[int] = None,
        elapsed_seconds: Optional[int] = None,
    ) -> ProgressRecord:
        raise NotImplementedError

    @abstractmethod
    async def get_progress(self, learner_id: str, content_id: str) -> ProgressRecord:
        """Get a record; raises ``NotFoundError`` when there is none."""
        raise NotImplementedError

    @abstractmethod
    async def list_progress(self, learner_id: str) -> List[ProgressRecord]:
        raise NotImplementedError

    @abstractmethod
    async def get_summary(self, learner_id: str) -> ProgressSummary:
        """Get aggregate progress of a learner."""
        raise NotImplementedError


class RemoteContentClient(ABC):
    """Server-side content listing."""

    @abstractmethod
    async def list_content(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    async def get_content(self, content_id: str) -> Dict[str, Any]:
        raise NotImplementedError


def _without_none(values: Dict[str, Any]) -> Dict[str, Any]:
    """Drop unset fields so the server keeps its current values."""
    return {key: value for key, value in values.items() if value is not None}


class _HttpClient:
    """Shared request handling for the httpx-based clients."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=self._get_headers(),
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Send a request and return the decoded JSON body."""
        logger.debug(f"{method} {path} ({operation})")
        try:
            with monitoring.remote_request_duration.labels(operation=operation).time():
                response = await self._get_client().request(method, path, json=json, params=params)
        except httpx.TransportError as e:
            logger.warning(f"{operation} failed to reach the server: {e}")
            raise error_for_transport(e)

        if response.status_code >= 400:
            raise error_for_status(response.status_code, self._error_detail(response, operation))

        try:
            return response.json()
        except ValueError:
            raise ValidationError(f"{operation} returned a body that is not JSON")

    @staticmethod
    def _error_detail(response: httpx.Response, operation: str) -> str:
        try:
            data = response.json()
        except ValueError:
            return f"{operation} failed ({response.status_code}): {response.text or response.reason_phrase}"
        if isinstance(data, dict):
            detail = data.get("error") or data.get("message") or str(data)
        else:
            detail = str(data)
        return f"{operation} failed ({response.status_code}): {detail}"


class HttpProgressClient(_HttpClient, RemoteProgressClient):
    """Progress endpoints under ``/progress/learner/<learner_id>``."""

    @staticmethod
    def _path(learner_id: str, content_id: str, suffix: str = "") -> str:
        return f"/progress/learner/{learner_id}/content/{content_id}{suffix}"

    @staticmethod
    def _parse(data: Dict[str, Any], operation: str) -> ProgressRecord:
        progress = data.get("progress") if isinstance(data, dict) else None
        if not isinstance(progress, dict):
            raise ValidationError(f"{operation} response has no progress object")
        return ProgressRecord.from_dict(progress)

    async def start_content(self, learner_id: str, content_id: str) -> ProgressRecord:
        data = await self._request("POST", self._path(learner_id, content_id, "/start"), "start_content")
        return self._parse(data, "start_content")

    async def update_progress(
        self,
        learner_id: str,
        content_id: str,
        status: Optional[str] = None,
        score: Optional[int] = None,
        time_spent: Optional[int] = None,
    ) -> ProgressRecord:
        body = _without_none({"status": status, "score": score, "timeSpent": time_spent})
        data = await self._request("PUT", self._path(learner_id, content_id), "update_progress", json=body)
        return self._parse(data, "update_progress")

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
    ) -> ProgressRecord:
        body = _without_none({
            "stepId": step_id,
            "completed": completed,
            "score": score,
            "attempts": attempts,
            "timeSpentSeconds": elapsed_seconds,
            "currentStepIndex": current_step_index,
        })
        data = await self._request(
            "POST", self._path(learner_id, content_id, "/step"), "record_step", json=body
        )
        return self._parse(data, "record_step")

    async def complete_content(
        self,
        learner_id: str,
        content_id: str,
        score: Optional[int] = None,
        elapsed_seconds: Optional[int] = None,
    ) -> ProgressRecord:
        body = _without_none({"score": score, "timeSpent": elapsed_seconds})
        data = await self._request(
            "POST", self._path(learner_id, content_id, "/complete"), "complete_content", json=body
        )
        return self._parse(data, "complete_content")

    async def get_progress(self, learner_id: str, content_id: str) -> ProgressRecord:
        data = await self._request("GET", self._path(learner_id, content_id), "get_progress")
        return self._parse(data, "get_progress")

    async def list_progress(self, learner_id: str) -> List[ProgressRecord]:
        data = await self._request("GET", f"/progress/learner/{learner_id}", "list_progress")
        items = data.get("progress") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise ValidationError("list_progress response has no progress list")
        return [ProgressRecord.from_dict(item) for item in items]

    async def get_summary(self, learner_id: str) -> ProgressSummary:
        data = await self._request("GET", f"/progress/learner/{learner_id}/summary", "get_summary")
        summary = data.get("summary") if isinstance(data, dict) else None
        if not isinstance(summary, dict):
            raise ValidationError("get_summary response has no summary object")
        return ProgressSummary.from_dict(summary)


class HttpContentClient(_HttpClient, RemoteContentClient):
    """Content listing endpoints under ``/content``."""

    async def list_content(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        data = await self._request("GET", "/content", "list_content", params=_without_none(filters or {}))
        items = data.get("content") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise ValidationError("list_content response has no content list")
        return items

    async def get_content(self, content_id: str) -> Dict[str, Any]:
        data = await self._request("GET", f"/content/{content_id}", "get_content")
        item = data.get("content") if isinstance(data, dict) else None
        if not isinstance(item, dict):
            raise ValidationError("get_content response has no content object")
        return item

