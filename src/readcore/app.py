"""Application object wiring the offline reading core."""
import logging
from typing import Optional

from readcore.config import Settings, settings as default_settings
from readcore.models.base import init_db, make_engine, make_session_factory
from readcore.services.answer_matcher import AnswerMatcher
from readcore.services.connectivity import ConnectivityMonitor
from readcore.services.content_cache import ContentLibrary
from readcore.services.difficulty_service import DifficultyController
from readcore.services.local_store import LocalStore
from readcore.services.practice_service import PracticeSession
from readcore.services.progress_service import ProgressService
from readcore.services.remote_client import (
    HttpContentClient,
    HttpProgressClient,
    RemoteContentClient,
    RemoteProgressClient,
)
from readcore.services.sync_queue import SyncQueue
from readcore.services.sync_scheduler import SyncScheduler


class ReadCore:
    """Main application class.

    Builds the local store, the sync queue and the services on top of them.
    Remote clients can be injected; by default they talk to ``API_BASE_URL``.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        progress_client: Optional[RemoteProgressClient] = None,
        content_client: Optional[RemoteContentClient] = None,
    ):
        """Initialize the application."""
        self.settings = settings or default_settings
        self.logger = logging.getLogger(__name__)
        self.running = False

        api = self.settings.api
        timeout = self.settings.sync.request_timeout
        self.progress_client = progress_client or HttpProgressClient(api.base_url, api.token, timeout)
        self.content_client = content_client or HttpContentClient(api.base_url, api.token, timeout)

        self.engine = make_engine(self.settings.database.url, echo=self.settings.database.echo)
        init_db(self.engine)
        self.session_factory = make_session_factory(self.engine)

        self.connectivity = ConnectivityMonitor()
        self.store = LocalStore(self.session_factory)
        self.queue = SyncQueue(self.session_factory)
        self.matcher = AnswerMatcher(self.settings.matching)
        self.controller = DifficultyController(self.settings.difficulty)
        self.progress = ProgressService(
            self.store,
            self.queue,
            self.progress_client,
            settings=self.settings.sync,
            connectivity=self.connectivity,
        )
        self.content = ContentLibrary(
            self.session_factory,
            self.content_client,
            settings=self.settings.cache,
            connectivity=self.connectivity,
        )
        self.scheduler = SyncScheduler(self.progress, self.connectivity, settings=self.settings.sync)

    def new_session(self, learner_id: str) -> PracticeSession:
        """Start an adaptive practice session for a learner."""
        return PracticeSession(learner_id, self.store, self.matcher, self.controller)

    async def start(self) -> None:
        """Start background syncing."""
        if self.running:
            return

        try:
            await self.scheduler.start()
            self.logger.info(f"Sync scheduler started ({self.queue.count()} changes pending)")
            self.running = True
        except Exception as e:
            self.logger.error(f"Failed to start application: {e}")
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop background syncing and release connections."""
        self.running = False
        await self.scheduler.stop()
        for client in (self.progress_client, self.content_client):
            close = getattr(client, "aclose", None)
            if close is not None:
                await close()
        self.engine.dispose()
        self.logger.info("Application stopped")
