"""TTL cache over the content listing, with offline fallback."""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Optional, Tuple, TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.orm import sessionmaker

from readcore import monitoring
from readcore.config import CacheSettings
from readcore.errors import ConnectivityError
from readcore.models.base import as_utc, utcnow
from readcore.models.models import CacheRow
from readcore.services.connectivity import ConnectivityMonitor
from readcore.services.remote_client import RemoteContentClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

CATALOG_KEY = "catalog"
ITEM_PREFIX = "item:"


class CacheState(Enum):
    """How a listing was served."""
    FRESH = "fresh"  # fetched from the server just now
    CACHED = "cached"  # cache entry still within its TTL
    STALE_OFFLINE = "stale_offline"  # expired entry served because the server is unreachable


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    payload: T
    fetched_at: datetime


@dataclass(frozen=True)
class CacheStats:
    """Snapshot of the cache for debugging and sync-health UI."""
    items_count: int
    listing_count: int
    is_valid: bool
    age_seconds: Optional[float]
    ttl_seconds: float
    is_online: bool

    @property
    def age_description(self) -> str:
        """Human-readable cache age."""
        if self.age_seconds is None:
            return "Not cached"
        if self.age_seconds < 60:
            return f"{int(self.age_seconds)}s ago"
        if self.age_seconds < 3600:
            return f"{int(self.age_seconds / 60)}m ago"
        return f"{int(self.age_seconds / 3600)}h ago"

    @property
    def remaining_ttl(self) -> Optional[float]:
        """Seconds until the entry expires, None when it is already invalid."""
        if self.age_seconds is None or not self.is_valid:
            return None
        return self.ttl_seconds - self.age_seconds


class ContentCache(Generic[T]):
    """One cached payload plus per-item entries, persisted in the local database.

    Lives in its own table, so invalidating it never touches progress or the
    sync queue.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        settings: Optional[CacheSettings] = None,
        connectivity: Optional[ConnectivityMonitor] = None,
        clock: Callable[[], datetime] = utcnow,
        key: str = CATALOG_KEY,
    ):
        self._session_factory = session_factory
        self.settings = settings or CacheSettings()
        self.connectivity = connectivity or ConnectivityMonitor()
        self.clock = clock
        self.key = key
        self._lock = threading.RLock()

    @property
    def ttl(self) -> timedelta:
        return timedelta(seconds=self.settings.ttl_seconds)

    @property
    def is_online(self) -> bool:
        return self.connectivity.is_online

    def entry(self) -> Optional[CacheEntry[T]]:
        """Get the cached payload with its timestamp, regardless of age."""
        with self._lock, self._session_factory() as session:
            row = session.get(CacheRow, self.key)
            if row is None:
                return None
            return CacheEntry(payload=row.payload, fetched_at=as_utc(row.fetched_at))

    def get(self) -> Optional[T]:
        """Get the cached payload without any network access."""
        entry = self.entry()
        return entry.payload if entry else None

    def is_valid(self) -> bool:
        """True if an entry exists and is younger than the TTL."""
        entry = self.entry()
        if entry is None:
            return False
        return self.clock() - entry.fetched_at < self.ttl

    def refresh(self, data: T) -> None:
        """Store a freshly fetched payload and stamp it with the current time."""
        self._put(self.key, data)
        logger.debug(f"Refreshed cache entry {self.key}")

    def invalidate(self) -> None:
        """Drop this listing. Item entries are shared by every listing and stay."""
        with self._lock, self._session_factory.begin() as session:
            session.execute(delete(CacheRow).where(CacheRow.key == self.key))
        logger.info(f"Invalidated cache entry {self.key}")

    def get_item(self, item_id: str) -> Optional[Dict[str, Any]]:
        """Get one cached content item by id."""
        with self._lock, self._session_factory() as session:
            row = session.get(CacheRow, f"{ITEM_PREFIX}{item_id}")
            return row.payload if row else None

    def put_item(self, item: Dict[str, Any]) -> None:
        """Cache one content item under its id."""
        self._put(f"{ITEM_PREFIX}{item['id']}", item)

    def put_items(self, items: List[Dict[str, Any]]) -> None:
        now = self.clock()
        with self._lock, self._session_factory.begin() as session:
            for item in items:
                if "id" not in item:
                    continue
                session.merge(CacheRow(key=f"{ITEM_PREFIX}{item['id']}", payload=item, fetched_at=now))

    def stats(self) -> CacheStats:
        entry = self.entry()
        with self._lock, self._session_factory() as session:
            items_count = session.scalar(
                select(func.count()).select_from(CacheRow).where(CacheRow.key.startswith(ITEM_PREFIX))
            )
        age = (self.clock() - entry.fetched_at).total_seconds() if entry else None
        payload = entry.payload if entry else None
        return CacheStats(
            items_count=items_count,
            listing_count=len(payload) if isinstance(payload, list) else 0,
            is_valid=self.is_valid(),
            age_seconds=age,
            ttl_seconds=self.ttl.total_seconds(),
            is_online=self.is_online,
        )

    def _put(self, key: str, payload: Any) -> None:
        with self._lock, self._session_factory.begin() as session:
            session.merge(CacheRow(key=key, payload=payload, fetched_at=self.clock()))


def filters_key(filters: Optional[Dict[str, Any]]) -> str:
    """Cache key of a listing; the unfiltered listing is the catalog."""
    active = sorted((name, str(value)) for name, value in (filters or {}).items() if value is not None)
    if not active:
        return CATALOG_KEY
    return CATALOG_KEY + "?" + "&".join(f"{name}={value}" for name, value in active)


class ContentLibrary:
    """Read-through access to content listings.

    Serves a valid cache entry as is; otherwise fetches and refreshes the cache.
    If the fetch fails because the server is unreachable, an expired entry is
    served rather than nothing.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        client: RemoteContentClient,
        settings: Optional[CacheSettings] = None,
        connectivity: Optional[ConnectivityMonitor] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self.client = client
        self.settings = settings or CacheSettings()
        self.connectivity = connectivity or ConnectivityMonitor()
        self.clock = clock
        self._caches: Dict[str, ContentCache] = {}

    def cache_for(self, filters: Optional[Dict[str, Any]] = None) -> ContentCache:
        """Get the cache holding a listing."""
        key = filters_key(filters)
        if key not in self._caches:
            self._caches[key] = ContentCache(
                self._session_factory,
                settings=self.settings,
                connectivity=self.connectivity,
                clock=self.clock,
                key=key,
            )
        return self._caches[key]

    async def list_content(
        self, filters: Optional[Dict[str, Any]] = None, force_refresh: bool = False
    ) -> Tuple[List[Dict[str, Any]], CacheState]:
        """Get a content listing and how it was served."""
        cache = self.cache_for(filters)
        if not force_refresh and cache.is_valid():
            monitoring.content_cache_requests.labels(state=CacheState.CACHED.value).inc()
            return cache.get(), CacheState.CACHED

        try:
            items = await self.client.list_content(filters)
        except ConnectivityError as e:
            self.connectivity.report_failure()
            stale = cache.get()
            if stale is None:
                logger.warning(f"Content listing unavailable offline: {e}")
                raise
            logger.info(f"Serving stale content listing {cache.key}: {e}")
            monitoring.content_cache_requests.labels(state=CacheState.STALE_OFFLINE.value).inc()
            return stale, CacheState.STALE_OFFLINE

        self.connectivity.report_success()
        cache.refresh(items)
        cache.put_items(items)
        monitoring.content_cache_requests.labels(state=CacheState.FRESH.value).inc()
        return items, CacheState.FRESH

    async def get_content(self, content_id: str) -> Optional[Dict[str, Any]]:
        """Get one content item, from the cache when present."""
        cache = self.cache_for()
        cached = cache.get_item(content_id)
        if cached is not None:
            return cached
        try:
            item = await self.client.get_content(content_id)
        except ConnectivityError as e:
            self.connectivity.report_failure()
            logger.info(f"Content {content_id} not cached and server unreachable: {e}")
            return None
        self.connectivity.report_success()
        cache.put_item(item)
        return item

    def invalidate_all(self) -> None:
        """Drop every cached listing and item."""
        with self._session_factory.begin() as session:
            session.execute(delete(CacheRow))
        logger.info("Invalidated all cached content")
