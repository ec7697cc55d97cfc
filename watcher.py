#!/usr/bin/env python3
"""
Poll cycle orchestration.

One cycle walks every configured channel in order: fetch the feed, parse it,
let the seen-set tracker decide what is new, send one notification per new
video (oldest first) and write the state file before moving on. A failing
channel gets an error entry and the cycle carries on with the next one.

The watcher also owns the process-wide counters and the activity log shown
by the status API, and accepts fire-and-forget manual check requests.
"""

import asyncio
from datetime import datetime, timezone
from time import time
from typing import Any, Callable, Dict, List, Optional, Set

from aiohttp import ClientSession

from config import config, get_logger
from errors import WatchError
from feed_parser import parse_feed
from fetcher import FeedFetcher
from models import ActivityLog, CycleRecord, Item, Source, SourceOutcome
from notifier import NotifyResult, ResendNotifier, subject_for
from store import StateStore
from telemetry import trace_span
from tracker import SeenTracker
from utils import format_timestamp, mask_email

logger = get_logger("watcher")

_LOG_LEVELS = {"warn": "warning", "error": "error"}

TEST_VIDEO_ID = "dQw4w9WgXcQ"


class ChannelWatcher:
    """Runs poll cycles and exposes their state to the status API."""

    def __init__(
        self,
        fetcher: Optional[FeedFetcher] = None,
        notifier: Optional[ResendNotifier] = None,
        store: Optional[StateStore] = None,
        channel_loader: Optional[Callable[[], List[Source]]] = None,
        recipient: Optional[str] = None,
        courtesy_delay: Optional[float] = None,
        seen_cap: Optional[int] = None,
        log_size: Optional[int] = None,
        interval_minutes: Optional[int] = None,
    ) -> None:
        self.fetcher = fetcher or FeedFetcher()
        self.notifier = notifier or ResendNotifier()
        self.store = store or StateStore(config.STATE_FILE)
        self.channel_loader = channel_loader or config.load_channels
        self.recipient = recipient if recipient is not None else config.NOTIFY_EMAIL
        self.courtesy_delay = courtesy_delay if courtesy_delay is not None else config.COURTESY_DELAY_SECONDS
        self.interval_seconds = (interval_minutes or config.CHECK_INTERVAL_MIN) * 60

        self.state: Dict[str, Any] = self.store.load()
        self.tracker = SeenTracker(self.state["seen"], seen_cap or config.SEEN_CAP_PER_SOURCE)
        self.activity = ActivityLog(log_size or config.ACTIVITY_LOG_SIZE)
        self.channels: List[Source] = self.channel_loader()

        self.is_checking = False
        self.checks_total = 0
        self.notifications_total = 0
        self.last_check: Optional[float] = None
        self.next_check: Optional[float] = None
        self.last_cycle: Optional[CycleRecord] = None
        self._tasks: Set[asyncio.Task] = set()

    def log(self, message: str, kind: str = "info") -> None:
        """Append to the activity log and mirror the line to the module logger."""
        self.activity.add(message, kind)
        getattr(logger, _LOG_LEVELS.get(kind, "info"))(message)

    def _persist(self) -> None:
        self.store.save(self.state)

    async def run_cycle(self) -> Optional[CycleRecord]:
        """Run one pass over all channels; a no-op if one is already running."""
        if self.is_checking:
            logger.info("Check already in progress; trigger ignored")
            return None
        self.is_checking = True
        try:
            record = await self._run_cycle()
            self.last_cycle = record
            return record
        finally:
            self.last_check = time()
            self.next_check = self.last_check + self.interval_seconds
            self.is_checking = False

    @trace_span("watcher.cycle", tracer_name="watcher")
    async def _run_cycle(self) -> CycleRecord:
        record = CycleRecord(started_at=datetime.now(timezone.utc))
        self.checks_total += 1
        self.channels = self.channel_loader()

        first_pass = not self.state["seen"]
        if first_pass:
            self.log("🚀 First pass: recording current videos as seen (no notifications)")
        else:
            self.log(f"🔍 Checking {len(self.channels)} channel(s)...")

        async with ClientSession() as session:
            for index, source in enumerate(self.channels):
                if index and self.courtesy_delay > 0:
                    await asyncio.sleep(self.courtesy_delay)
                record.outcomes[source.id] = await self._process_source(source, session, record)

        record.finished_at = datetime.now(timezone.utc)
        elapsed = f"{record.elapsed:.1f}s"
        if first_pass:
            self.log(f"✅ First pass complete ({elapsed}), ready to detect new videos")
        elif record.new_items:
            self.log(f"✅ Check complete ({elapsed}): {record.new_items} new video(s)", "success")
        else:
            self.log(f"✅ Check complete ({elapsed}): no new videos")
        return record

    def _record_error(self, source: Source, outcome: SourceOutcome, message: str) -> SourceOutcome:
        self.state["errors"][source.id] = {"msg": message, "time": time()}
        self.log(f"⚠️ [{source.name}] Error: {message}", "error")
        self._persist()
        outcome.ok = False
        outcome.error = message
        return outcome

    async def _process_source(self, source: Source, session: ClientSession, record: CycleRecord) -> SourceOutcome:
        outcome = SourceOutcome(source_id=source.id, name=source.name)
        try:
            body = await self.fetcher.fetch_feed(source, session)
            items = parse_feed(body, source)

            if self.state["errors"].pop(source.id, None) is not None:
                logger.info(f"[{source.name}] recovered, clearing previous error")

            observation = self.tracker.observe(source, items)
            outcome.baseline = observation.baseline
            if not items:
                self.log(f"[{source.name}] No videos in feed")
            elif observation.baseline:
                self.log(f"[{source.name}] {len(items)} video(s) recorded as seen")
            elif not observation.new_items:
                self.log(f"[{source.name}] No new videos")

            for item in observation.new_items:
                outcome.new_items += 1
                record.new_items += 1
                self.log(f"🆕 [{source.name}] {item.title}", "success")
                result = await self.notifier.send(self.recipient, subject_for(item), item, session=session)
                if result.ok:
                    outcome.notified += 1
                    record.notifications_sent += 1
                    self.notifications_total += 1
                    self.log(f"✅ Email sent to {self.recipient}", "success")
                else:
                    self.log(f"❌ Email delivery failed: {result.reason}", "error")
        except WatchError as e:
            return self._record_error(source, outcome, str(e) or e.__class__.__name__)
        except Exception as e:
            logger.exception(f"Unexpected error while processing {source.name}")
            return self._record_error(source, outcome, f"Unexpected error: {e}")

        self._persist()
        return outcome

    def request_check(self) -> bool:
        """Start a cycle in the background unless one is running.

        Returns immediately; True when a cycle was scheduled.
        """
        if self.is_checking:
            logger.info("Manual check requested while a check is in progress; ignored")
            return False
        task = asyncio.get_running_loop().create_task(self.run_cycle())
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return True

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background check failed: {task.exception()!r}")

    async def send_test_email(self) -> NotifyResult:
        """Send a sample notification so the delivery setup can be verified."""
        item = Item(
            item_id=TEST_VIDEO_ID,
            title="✅ Test e-mail: FeedWatch is working",
            link=f"https://www.youtube.com/watch?v={TEST_VIDEO_ID}",
            published=datetime.now(timezone.utc).isoformat(),
            thumbnail=f"https://img.youtube.com/vi/{TEST_VIDEO_ID}/hqdefault.jpg",
            source_id="test",
            source_name="FeedWatch · Test",
        )
        self.log("Sending test e-mail...")
        result = await self.notifier.send(self.recipient, "📧 FeedWatch test: everything works", item)
        if result.ok:
            self.log(f"Test e-mail sent to {self.recipient}", "success")
        else:
            self.log(f"Test e-mail failed: {result.reason}", "error")
        return result

    def status(self) -> Dict[str, Any]:
        """Read-only snapshot for the status API."""
        return {
            "channels": [{"id": source.id, "name": source.name} for source in self.channels],
            "lastCheck": format_timestamp(self.last_check),
            "nextCheck": format_timestamp(self.next_check),
            "isChecking": self.is_checking,
            "checksTotal": self.checks_total,
            "notifTotal": self.notifications_total,
            "channelErrors": {
                source_id: {"msg": error.get("msg"), "time": format_timestamp(error.get("time"))}
                for source_id, error in self.state["errors"].items()
            },
            "notifyEmail": mask_email(self.recipient),
            "resendKey": bool(getattr(self.notifier, "configured", False)),
            "lastCycle": self.last_cycle.to_dict() if self.last_cycle else None,
            "log": self.activity.entries(),
        }
