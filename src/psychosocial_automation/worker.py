"""Standalone background worker.

Runs the JobScheduler without the HTTP API. Start as many worker processes as
needed against the same database; job claims are atomic so each job runs on
exactly one of them.

Usage:
    python -m psychosocial_automation.worker
"""

import asyncio
import signal

from psychosocial_automation.adapters.wiring import build_scheduler
from psychosocial_automation.database import close_database, init_database
from psychosocial_automation.observability import configure_logging, get_logger
from psychosocial_automation.settings import Settings

logger = get_logger(__name__)


async def run_worker(settings: Settings, stop_event: asyncio.Event | None = None) -> None:
    """Run the scheduler until SIGINT/SIGTERM or until stop_event is set.

    Args:
        settings: Service settings.
        stop_event: External stop signal; created and wired to the process
            signals when omitted.
    """
    if stop_event is None:
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

    session_factory = init_database(settings.database_url, echo=settings.database_echo)
    scheduler = build_scheduler(settings, session_factory)
    await scheduler.start()
    logger.info("Worker started", service=settings.service_name)
    try:
        await stop_event.wait()
    finally:
        logger.info("Worker stopping")
        await scheduler.stop()
        await close_database()
        logger.info("Worker stopped")


def main() -> None:
    """Console entry point."""
    settings = Settings()
    configure_logging(settings.log_level, json=settings.log_json)
    asyncio.run(run_worker(settings))


if __name__ == "__main__":
    main()
