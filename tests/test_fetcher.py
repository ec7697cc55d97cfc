import asyncio
from contextlib import asynccontextmanager
from dataclasses import replace

import pytest
from aiohttp import ClientSession, web
from aiohttp.test_utils import TestServer

import utils
from errors import FetchTimeout, HttpError, MalformedDocument, NetworkError
from feedsamples import feed_of, make_source
from fetcher import FeedFetcher
from utils import RetryHelper

ATOM = "application/atom+xml"


@asynccontextmanager
async def serve(routes):
    app = web.Application()
    for route_path, handler in routes.items():
        app.router.add_get(route_path, handler)
    server = TestServer(app)
    await server.start_server()
    try:
        yield server
    finally:
        await server.close()


@pytest.fixture
def sleeps(monkeypatch):
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    monkeypatch.setattr(utils, "sleep", fake_sleep)
    return delays


def counting(handler):
    calls = []

    async def wrapped(request):
        calls.append(request.path_qs)
        return await handler(request)

    wrapped.calls = calls
    return wrapped


async def feed_handler(request):
    return web.Response(text=feed_of("v2", "v1"), content_type=ATOM)


@pytest.mark.asyncio
async def test_fetch_follows_relative_redirects():
    async def moved(request):
        return web.Response(status=301, headers={"Location": "/hop"})

    async def hop(request):
        return web.Response(status=302, headers={"Location": "/feed"})

    async with serve({"/old": moved, "/hop": hop, "/feed": feed_handler}) as server:
        async with ClientSession() as session:
            response = await FeedFetcher(max_redirects=5).fetch(str(server.make_url("/old")), session)

    assert response.status == 200
    assert response.url.endswith("/feed")
    assert "<yt:videoId>v2</yt:videoId>" in response.body


@pytest.mark.asyncio
async def test_fetch_gives_up_after_too_many_redirects():
    async def loop(request):
        return web.Response(status=307, headers={"Location": "/loop"})

    handler = counting(loop)
    async with serve({"/loop": handler}) as server:
        async with ClientSession() as session:
            with pytest.raises(NetworkError, match="Too many redirects"):
                await FeedFetcher(max_redirects=2).fetch(str(server.make_url("/loop")), session)

    assert len(handler.calls) == 3


@pytest.mark.asyncio
async def test_fetch_times_out():
    async def slow(request):
        await asyncio.sleep(2)
        return web.Response(text="late")

    async with serve({"/slow": slow}) as server:
        async with ClientSession() as session:
            with pytest.raises(FetchTimeout):
                await FeedFetcher(timeout=1).fetch(str(server.make_url("/slow")), session)


@pytest.mark.asyncio
async def test_timeout_covers_the_whole_redirect_chain():
    async def slow_hop(request):
        await asyncio.sleep(0.6)
        step = int(request.query.get("step", "0"))
        return web.Response(status=302, headers={"Location": f"/hop?step={step + 1}"})

    handler = counting(slow_hop)
    async with serve({"/hop": handler}) as server:
        async with ClientSession() as session:
            with pytest.raises(FetchTimeout, match="Timed out after 1s"):
                await FeedFetcher(timeout=1, max_redirects=3).fetch(str(server.make_url("/hop")), session)

    assert len(handler.calls) <= 2


@pytest.mark.asyncio
async def test_connection_failure_is_a_network_error(sleeps):
    fetcher = FeedFetcher(retry_helper=RetryHelper(max_attempts=2, base_delay=1.0))
    async with ClientSession() as session:
        with pytest.raises(NetworkError):
            await fetcher.fetch_with_retry("http://127.0.0.1:1/feed", session)
    assert sleeps == [1.0]


@pytest.mark.asyncio
async def test_non_200_is_retried_with_linear_backoff(sleeps):
    async def unavailable(request):
        return web.Response(status=503, text="busy")

    handler = counting(unavailable)
    fetcher = FeedFetcher(retry_helper=RetryHelper(max_attempts=3, base_delay=3.0))
    async with serve({"/feed": handler}) as server:
        async with ClientSession() as session:
            with pytest.raises(HttpError) as excinfo:
                await fetcher.fetch_with_retry(str(server.make_url("/feed")), session)

    assert excinfo.value.status == 503
    assert len(handler.calls) == 3
    assert sleeps == [3.0, 6.0]


@pytest.mark.asyncio
async def test_retry_recovers_when_a_later_attempt_succeeds(sleeps):
    attempts = []

    async def flaky(request):
        attempts.append(1)
        if len(attempts) < 3:
            return web.Response(status=500)
        return await feed_handler(request)

    fetcher = FeedFetcher(retry_helper=RetryHelper(max_attempts=3, base_delay=2.0))
    async with serve({"/feed": flaky}) as server:
        async with ClientSession() as session:
            response = await fetcher.fetch_with_retry(str(server.make_url("/feed")), session)

    assert response.status == 200
    assert len(attempts) == 3
    assert sleeps == [2.0, 4.0]


@pytest.mark.asyncio
async def test_fetch_feed_falls_back_and_stops_at_first_success(sleeps):
    async def gone(request):
        return web.Response(status=404)

    direct = counting(gone)
    mirror = counting(feed_handler)
    never = counting(feed_handler)
    async with serve({"/direct": direct, "/mirror/{id}": mirror, "/never": never}) as server:
        base = f"http://{server.host}:{server.port}"
        source = replace(make_source(), url=f"{base}/direct")
        fetcher = FeedFetcher(
            retry_helper=RetryHelper(max_attempts=2, base_delay=1.0),
            routes=[
                {"name": "mirror", "template": base + "/mirror/{id}"},
                {"name": "never", "template": base + "/never?u={url}"},
            ],
        )
        async with ClientSession() as session:
            body = await fetcher.fetch_feed(source, session)

    assert "<yt:videoId>v1</yt:videoId>" in body
    assert len(direct.calls) == 2
    assert mirror.calls == [f"/mirror/{source.id}"]
    assert never.calls == []


@pytest.mark.asyncio
async def test_fetch_feed_raises_last_error_and_does_not_retry_malformed(sleeps):
    async def down(request):
        return web.Response(status=502)

    async def consent_page(request):
        return web.Response(text="<html><body>" + "x" * 500 + "</body></html>", content_type="text/html")

    html = counting(consent_page)
    async with serve({"/direct": down, "/html": html}) as server:
        base = f"http://{server.host}:{server.port}"
        source = replace(make_source(), url=f"{base}/direct")
        fetcher = FeedFetcher(
            retry_helper=RetryHelper(max_attempts=3, base_delay=1.0),
            routes=[{"name": "html", "template": base + "/html?c={id}"}],
        )
        async with ClientSession() as session:
            with pytest.raises(MalformedDocument):
                await fetcher.fetch_feed(source, session)

    assert len(html.calls) == 1
    assert sleeps == [1.0, 2.0]


def test_short_body_is_malformed():
    fetcher = FeedFetcher(min_body_bytes=200)
    with pytest.raises(MalformedDocument, match="too short"):
        fetcher._check_body("<feed></feed>")
    assert fetcher._check_body(feed_of("a")).startswith("<?xml")
