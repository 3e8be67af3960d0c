"""Chime entry point — scheduler actors behind the HTTP API."""

import asyncio
import contextlib
import logging
import signal

from chime.api.server import ApiServer
from chime.config import settings
from chime.scheduler.actor import ActorDirectory

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)


async def _run() -> None:
    directory = ActorDirectory()
    # Start the default domain eagerly so a wake persisted before shutdown is re-armed now.
    await directory.get(settings.scheduler_domain)

    server = ApiServer(directory)
    await server.start()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    try:
        await stop.wait()
    finally:
        await server.stop()
        await directory.stop()


def main() -> None:
    """Start the API server and the scheduler (blocking)."""
    logger.info("Starting Chime on %s:%d...", settings.http_host, settings.http_port)
    asyncio.run(_run())


if __name__ == "__main__":
    main()
