#!/usr/bin/env python3
"""
Interval scheduler.

Runs a poll cycle shortly after startup and then every CHECK_INTERVAL_MIN
minutes. Manual checks go through ChannelWatcher.request_check(); both paths
share the watcher's re-entry guard, so at most one cycle runs at a time.

Also hosts the optional keep-alive loop that pings the service's own public
/health URL so free-tier hosts do not put it to sleep.
"""

import asyncio
from time import time
from typing import Optional

from aiohttp import ClientError, ClientSession, ClientTimeout

from config import config, get_logger
from telemetry import trace_span
from utils import format_duration
from watcher import ChannelWatcher

# Module-specific logger
logger = get_logger("scheduler")

ERROR_BACKOFF_SECONDS = 60


class IntervalScheduler:
    """Triggers ChannelWatcher.run_cycle() on a fixed interval."""

    def __init__(
        self,
        watcher: ChannelWatcher,
        interval_minutes: Optional[int] = None,
        first_delay_seconds: Optional[float] = None,
    ):
        self.watcher = watcher
        self.interval_seconds = (interval_minutes or config.CHECK_INTERVAL_MIN) * 60
        self.first_delay_seconds = (
            first_delay_seconds if first_delay_seconds is not None else config.FIRST_CHECK_DELAY_SECONDS
        )

    @trace_span("scheduler.tick", tracer_name="scheduler")
    async def _tick(self) -> None:
        record = await self.watcher.run_cycle()
        if record is None:
            logger.info("Scheduled check skipped: another check is still running")

    async def run(self) -> None:
        """Loop until cancelled. Errors in one run never stop the loop."""
        logger.info(
            f"Scheduler started: first check in {format_duration(self.first_delay_seconds)}, "
            f"then every {format_duration(self.interval_seconds)}"
        )
        self.watcher.next_check = time() + self.first_delay_seconds
        delay = self.first_delay_seconds
        while True:
            try:
                await asyncio.sleep(delay)
                await self._tick()
                delay = self.interval_seconds
                self.watcher.next_check = time() + delay
                logger.info(f"Sleeping {format_duration(delay)} until next check")
            except asyncio.CancelledError:
                logger.info("Scheduler cancelled - shutting down")
                raise
            except Exception as e:
                logger.error(f"Error in scheduled check: {e}")
                delay = ERROR_BACKOFF_SECONDS


async def keepalive_loop(base_url: str, interval_minutes: Optional[int] = None) -> None:
    """Ping ``<base_url>/health`` forever; failures are only logged."""
    interval_seconds = (interval_minutes or config.KEEPALIVE_MINUTES) * 60
    url = f"{base_url.rstrip('/')}/health"
    logger.info(f"[Ping] Keep-alive enabled: {url} every {format_duration(interval_seconds)}")
    async with ClientSession(timeout=ClientTimeout(total=config.HTTP_TIMEOUT)) as session:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                async with session.get(url) as response:
                    await response.read()
                    if response.status != 200:
                        logger.warning(f"[Ping] Unexpected response: {response.status}")
            except (ClientError, asyncio.TimeoutError) as e:
                logger.warning(f"[Ping] Error: {e!r}")
