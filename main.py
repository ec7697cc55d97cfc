#!/usr/bin/env python3
"""
FeedWatch entry point.

Modes:
    serve        run the interval scheduler and the JSON status API (default)
    run          run a single check and exit
    status       print configuration, channels and recorded errors
    test-email   send a sample notification and exit
"""

import argparse
import asyncio
import json
import signal
import sys

from aiohttp import web

from config import config, get_logger
from scheduler import IntervalScheduler, keepalive_loop
from server import create_app
from telemetry import init_telemetry
from watcher import ChannelWatcher

# Module-specific logger
logger = get_logger("main")


def _log_banner(watcher: ChannelWatcher) -> None:
    logger.info("=" * 54)
    logger.info(f" FeedWatch  ▶  http://localhost:{config.PORT}")
    logger.info("-" * 54)
    logger.info(f" Resend API  : {'configured' if config.RESEND_API_KEY else 'MISSING (set RESEND_API_KEY)'}")
    logger.info(f" Notify to   : {config.NOTIFY_EMAIL or 'MISSING (set NOTIFY_EMAIL)'}")
    logger.info(f" Send from   : {config.FROM_EMAIL}")
    logger.info(f" Channels    : {len(watcher.channels)}")
    logger.info(f" Interval    : every {config.CHECK_INTERVAL_MIN} minutes")
    logger.info(f" Public URL  : {config.RENDER_EXTERNAL_URL or '(local, keep-alive disabled)'}")
    logger.info("=" * 54)


def _handle_loop_exception(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    """Log stray task failures and keep the process alive."""
    exc = context.get("exception")
    logger.error(f"[CRASH] Unhandled error: {context.get('message')}", exc_info=exc)


async def serve() -> None:
    """Run the scheduler and the status API until SIGINT/SIGTERM."""
    loop = asyncio.get_running_loop()
    loop.set_exception_handler(_handle_loop_exception)

    watcher = ChannelWatcher()
    _log_banner(watcher)

    runner = web.AppRunner(create_app(watcher))
    await runner.setup()
    site = web.TCPSite(runner, config.HOST, config.PORT)
    await site.start()

    tasks = [asyncio.create_task(IntervalScheduler(watcher).run(), name="scheduler")]
    if config.RENDER_EXTERNAL_URL:
        tasks.append(asyncio.create_task(keepalive_loop(config.RENDER_EXTERNAL_URL), name="keepalive"))

    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still raises KeyboardInterrupt
            pass

    try:
        await stop.wait()
        logger.info("[Shutdown] Signal received, closing...")
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await runner.cleanup()


async def run_once() -> bool:
    watcher = ChannelWatcher()
    record = await watcher.run_cycle()
    if record is None:
        return False
    logger.info(json.dumps(record.to_dict(), ensure_ascii=False))
    return not record.failed_sources


async def test_email() -> bool:
    watcher = ChannelWatcher()
    result = await watcher.send_test_email()
    return result.ok


def print_status() -> None:
    watcher = ChannelWatcher()
    status = watcher.status()
    print(json.dumps({"config": config.get_config_summary(), **status}, indent=2, ensure_ascii=False))


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description='FeedWatch: new-video notifications from channel feeds')
    parser.add_argument('mode', nargs='?', default='serve', choices=['serve', 'run', 'status', 'test-email'],
                        help='Operation mode (default: serve)')
    args = parser.parse_args()

    init_telemetry("feedwatch")

    try:
        if args.mode == 'serve':
            asyncio.run(serve())
        elif args.mode == 'run':
            success = asyncio.run(run_once())
            sys.exit(0 if success else 1)
        elif args.mode == 'status':
            print_status()
        elif args.mode == 'test-email':
            success = asyncio.run(test_email())
            sys.exit(0 if success else 1)
    except KeyboardInterrupt:
        logger.info("👋 FeedWatch shutting down")


if __name__ == "__main__":
    main()
