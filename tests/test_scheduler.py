import asyncio
from time import time

import pytest

from scheduler import IntervalScheduler


class CountingWatcher:
    def __init__(self, error=None):
        self.error = error
        self.calls = 0
        self.next_check = None
        self.ran = asyncio.Event()

    async def run_cycle(self):
        self.calls += 1
        self.ran.set()
        if self.error:
            raise self.error
        return None


@pytest.mark.asyncio
async def test_first_tick_runs_after_initial_delay_and_schedules_next():
    watcher = CountingWatcher()
    task = asyncio.create_task(IntervalScheduler(watcher, interval_minutes=15, first_delay_seconds=0).run())

    await asyncio.wait_for(watcher.ran.wait(), timeout=2)
    await asyncio.sleep(0)

    assert watcher.calls == 1
    assert watcher.next_check >= time() + 14 * 60
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


@pytest.mark.asyncio
async def test_failing_tick_does_not_stop_the_loop():
    watcher = CountingWatcher(error=RuntimeError("boom"))
    task = asyncio.create_task(IntervalScheduler(watcher, interval_minutes=15, first_delay_seconds=0).run())

    await asyncio.wait_for(watcher.ran.wait(), timeout=2)
    await asyncio.sleep(0)

    assert not task.done()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
