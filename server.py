#!/usr/bin/env python3
"""
JSON status API.

    GET  /health, /ping   liveness check for the host and uptime monitors
    GET  /api/status      watcher snapshot (channels, errors, counters, log)
    POST /api/check       start a check now (ignored if one is running)
    POST /api/test-email  send a sample notification
"""

from time import time

from aiohttp import web

from config import get_logger
from watcher import ChannelWatcher

logger = get_logger("server")

WATCHER_KEY = web.AppKey("watcher", ChannelWatcher)
STARTED_KEY = web.AppKey("started", float)


async def health(request: web.Request) -> web.Response:
    watcher = request.app[WATCHER_KEY]
    return web.json_response({
        "ok": True,
        "uptime": int(time() - request.app[STARTED_KEY]),
        "checks": watcher.checks_total,
        "channels": len(watcher.channels),
        "lastCheck": watcher.status()["lastCheck"],
    })


async def api_status(request: web.Request) -> web.Response:
    return web.json_response(request.app[WATCHER_KEY].status())


async def api_check(request: web.Request) -> web.Response:
    started = request.app[WATCHER_KEY].request_check()
    return web.json_response({"ok": True, "started": started})


async def api_test_email(request: web.Request) -> web.Response:
    watcher = request.app[WATCHER_KEY]
    if not watcher.recipient:
        return web.json_response({"ok": False, "error": "NOTIFY_EMAIL is not configured"}, status=400)
    if not getattr(watcher.notifier, "configured", False):
        return web.json_response({"ok": False, "error": "RESEND_API_KEY is not configured"}, status=400)
    result = await watcher.send_test_email()
    if result.ok:
        return web.json_response({"ok": True, "sentTo": watcher.recipient})
    return web.json_response({"ok": False, "error": result.reason or "Delivery failed, check the logs"}, status=500)


def create_app(watcher: ChannelWatcher) -> web.Application:
    app = web.Application()
    app[WATCHER_KEY] = watcher
    app[STARTED_KEY] = time()
    app.router.add_get("/health", health)
    app.router.add_get("/ping", health)
    app.router.add_get("/api/status", api_status)
    app.router.add_post("/api/check", api_check)
    app.router.add_post("/api/test-email", api_test_email)
    return app
