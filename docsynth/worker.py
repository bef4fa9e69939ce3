"""
Queue worker: runs one consumer per pipeline queue.

Also schedules the daily drift assessment of every repository with
self-healing enabled. Several worker processes may run side by side; the
per-day job id keeps a day's assessment from being scheduled twice.

Usage:
    docsynth-worker            # run until SIGINT/SIGTERM
    docsynth-worker --once     # drain the queues and exit
"""

import argparse
import asyncio
import logging
import signal
from typing import List, Optional

from dotenv import load_dotenv

from .container import Container, build_container
from .core.config import Settings
from .core.logging_config import setup_logging
from .database import create_tables
from .queue import run_until_idle
from .workers import build_consumers

logger = logging.getLogger("docsynth.worker")


async def schedule_drift_scans(container: Container, stop: asyncio.Event) -> None:
    """Enqueue the daily assessment now and then every ``drift_scan_interval`` seconds."""
    interval = container.settings.drift_scan_interval
    while not stop.is_set():
        try:
            container.self_healing.schedule_daily()
        except Exception as e:
            logger.error(f"Failed to schedule drift scans: {e}")
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass


async def run_worker(container: Container, stop: asyncio.Event) -> None:
    consumers = build_consumers(container)
    tasks: List[asyncio.Task] = [asyncio.create_task(c.run(stop)) for c in consumers]
    tasks.append(asyncio.create_task(schedule_drift_scans(container, stop)))
    logger.info(f"Worker started with {len(consumers)} queue consumer(s)")
    try:
        await asyncio.gather(*tasks)
    finally:
        await container.aclose()
        logger.info("Worker stopped")


async def drain(container: Container) -> int:
    try:
        processed = await run_until_idle(build_consumers(container))
    finally:
        await container.aclose()
    logger.info(f"Processed {processed} job(s)")
    return processed


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers.
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop.set))


async def _main(settings: Settings, once: bool) -> None:
    container = build_container(settings)
    create_tables(container.engine)
    if once:
        await drain(container)
        return
    stop = asyncio.Event()
    _install_signal_handlers(stop)
    await run_worker(container, stop)


def main(argv: Optional[List[str]] = None) -> None:
    load_dotenv()
    parser = argparse.ArgumentParser(description="DocSynth queue worker")
    parser.add_argument("--once", action="store_true", help="process queued jobs and exit")
    args = parser.parse_args(argv)

    settings = Settings()
    setup_logging(settings.log_level, settings.log_format)
    asyncio.run(_main(settings, args.once))


if __name__ == "__main__":
    main()
