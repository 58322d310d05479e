"""Tests for the sync scheduler."""
import asyncio
from unittest.mock import AsyncMock, Mock

import pytest
from faker import Faker

from readcore.config import SyncSettings
from readcore.models.progress_models import SyncReport
from readcore.services.connectivity import ConnectivityMonitor
from readcore.services.progress_service import ProgressService
from readcore.services.sync_scheduler import SyncScheduler

fake = Faker()


@pytest.fixture
def settings() -> SyncSettings:
    return SyncSettings(request_timeout=1.0, sync_interval=60)


@pytest.fixture
def service(store, queue, progress_client, connectivity, clock, settings) -> ProgressService:
    return ProgressService(store, queue, progress_client, settings=settings, connectivity=connectivity, clock=clock)


@pytest.fixture
def scheduler(service: ProgressService, connectivity: ConnectivityMonitor, settings) -> SyncScheduler:
    """Create a scheduler instance."""
    return SyncScheduler(service, connectivity, settings=settings)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll until the predicate holds."""
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout=timeout)


@pytest.mark.asyncio
async def test_start_stop(scheduler: SyncScheduler):
    """Test starting and stopping the scheduler."""
    await scheduler.start()
    assert scheduler.running
    assert scheduler.task is not None

    await scheduler.start()  # no-op

    await scheduler.stop()
    assert not scheduler.running
    assert scheduler.task is None

    await scheduler.stop()  # no-op


@pytest.mark.asyncio
async def test_drains_leftovers_on_start(
    scheduler: SyncScheduler, service: ProgressService, progress_client
):
    """Test that changes from an earlier run are synced right after start."""
    progress_client.online = False
    await service.start_content(fake.uuid4(), "lesson-1")
    progress_client.online = True

    await scheduler.start()
    try:
        await wait_until(lambda: service.pending_count() == 0)
    finally:
        await scheduler.stop()

    assert scheduler.last_report.replayed == 1


@pytest.mark.asyncio
async def test_drains_on_reconnect(
    scheduler: SyncScheduler, service: ProgressService, progress_client, connectivity: ConnectivityMonitor
):
    """Test that going back online triggers a drain."""
    await scheduler.start()
    try:
        progress_client.online = False
        await service.complete_content(fake.uuid4(), "lesson-1")
        assert not connectivity.is_online
        assert service.pending_count() == 1

        progress_client.online = True
        connectivity.set_online(True)
        await wait_until(lambda: service.pending_count() == 0)
    finally:
        await scheduler.stop()

    assert [call[0] for call in progress_client.calls] == ["complete_content"]


@pytest.mark.asyncio
async def test_stop_unsubscribes(scheduler: SyncScheduler, connectivity: ConnectivityMonitor):
    """Test that a stopped scheduler ignores connectivity changes."""
    await scheduler.start()
    await scheduler.stop()

    connectivity.set_online(False)
    connectivity.set_online(True)
    assert scheduler.task is None


@pytest.mark.asyncio
async def test_failed_run_does_not_stop_scheduler(settings: SyncSettings):
    """Test that an unexpected sync error is logged and the loop goes on."""
    service = Mock(spec=ProgressService)
    service.pending_count.return_value = 1
    service.sync = AsyncMock(side_effect=[RuntimeError("disk full"), SyncReport(replayed=1)])
    connectivity = ConnectivityMonitor()
    scheduler = SyncScheduler(service, connectivity, settings=settings)

    await scheduler.start()
    try:
        await wait_until(lambda: service.sync.await_count == 1)
        assert scheduler.running

        scheduler.trigger()
        await wait_until(lambda: service.sync.await_count == 2)
    finally:
        await scheduler.stop()

    assert scheduler.last_report.replayed == 1
