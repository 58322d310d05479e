"""Run the reading core as a background sync service."""
import asyncio
import logging
import signal

from readcore.app import ReadCore
from readcore.config import ensure_directories, settings
from readcore.logging_config import setup_logging
from readcore.monitoring import start_monitoring

logger = logging.getLogger("readcore")


async def shutdown(sig, loop):
    """Cleanup tasks tied to the service's shutdown."""
    logger.info(f"Received exit signal {sig.name}...")

    tasks = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]
    for task in tasks:
        task.cancel()

    logger.info(f"Cancelling {len(tasks)} outstanding tasks")
    await asyncio.gather(*tasks, return_exceptions=True)

    loop.stop()


def handle_exception(loop, context):
    """Handle exceptions in the event loop."""
    msg = context.get("exception", context["message"])
    logger.error(f"Caught exception: {msg}")
    logger.info("Shutting down...")
    loop.stop()


async def main() -> None:
    """Run the sync service until interrupted."""
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: asyncio.create_task(shutdown(s, loop)))

    loop.set_exception_handler(handle_exception)

    if settings.monitoring.port:
        start_monitoring(settings.monitoring.port)
        logger.info(f"Metrics exported on port {settings.monitoring.port}")

    core = ReadCore()
    try:
        logger.info("Starting sync service...")
        await core.start()

        while True:
            try:
                await asyncio.sleep(1)
            except asyncio.CancelledError:
                break
    finally:
        logger.info("Cleaning up...")
        await core.stop()


if __name__ == "__main__":
    ensure_directories()

    setup_logging("Starting ReadCore sync service ...")

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        loop.run_until_complete(main())
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down...")
    finally:
        loop.close()
