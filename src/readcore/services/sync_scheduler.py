"""Background draining of the sync queue."""
import asyncio
import logging
from typing import Callable, Optional

from readcore.config import SyncSettings
from readcore.models.progress_models import SyncReport
from readcore.services.connectivity import ConnectivityMonitor
from readcore.services.progress_service import ProgressService

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Runs ``ProgressService.sync`` periodically and whenever the device reconnects."""

    def __init__(
        self,
        progress_service: ProgressService,
        connectivity: ConnectivityMonitor,
        settings: Optional[SyncSettings] = None,
    ):
        """Initialize the scheduler with the service whose queue it drains."""
        self.progress_service = progress_service
        self.connectivity = connectivity
        self.settings = settings or SyncSettings()
        self.task: Optional[asyncio.Task] = None
        self.running = False
        self.last_report: Optional[SyncReport] = None
        self._wake: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    async def start(self) -> None:
        """Start the scheduler."""
        if self.running:
            return

        self.running = True
        logger.info("Starting sync scheduler...")
        self._loop = asyncio.get_running_loop()
        self._wake = asyncio.Event()
        self._unsubscribe = self.connectivity.subscribe(self._on_connectivity_change)
        # Drain whatever an earlier run left behind
        self._wake.set()
        self.task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the scheduler."""
        if not self.running:
            return

        self.running = False
        logger.info("Stopping sync scheduler...")
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        self.task.cancel()
        await asyncio.gather(self.task, return_exceptions=True)
        self.task = None

    def trigger(self) -> None:
        """Request a drain as soon as possible; safe to call from any thread."""
        if not self.running or self._loop is None:
            return
        self._loop.call_soon_threadsafe(self._wake.set)

    def _on_connectivity_change(self, online: bool) -> None:
        if online:
            logger.info("Back online, scheduling sync")
            self.trigger()

    async def _run(self) -> None:
        while self.running:
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.settings.sync_interval)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()

            if self.progress_service.pending_count() == 0:
                continue

            try:
                self.last_report = await self.progress_service.sync()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Sync run failed: {e}")
