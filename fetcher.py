#!/usr/bin/env python3
"""
Channel feed fetcher.

Retrieves feed documents over aiohttp with manual redirect handling, one hard
timeout per fetch and linear retry backoff. When the direct feed URL keeps
failing or returns something that is not a feed, a short ordered list of
fallback routes (an HTTP proxy, or a rewritten URL such as a mirror) is
tried for the same channel; the first usable answer wins.
"""

from asyncio import TimeoutError, get_running_loop
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote, urljoin

from aiohttp import ClientError, ClientSession, ClientTimeout

from config import config, get_logger
from errors import FetchError, FetchTimeout, HttpError, MalformedDocument, NetworkError, WatchError
from feed_parser import ensure_feed_document
from models import Source
from telemetry import trace_span
from utils import RetryHelper, redact_url

# Module-specific logger
logger = get_logger("fetcher")

HTTP_OK = 200
REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
DIRECT_ROUTE = "direct"
PROXY_TIMEOUT_FACTOR = 3


@dataclass
class FetchResponse:
    status: int
    body: str
    url: str


class FeedFetcher:
    def __init__(
        self,
        timeout: Optional[int] = None,
        max_redirects: Optional[int] = None,
        retry_helper: Optional[RetryHelper] = None,
        routes: Optional[List[Dict[str, str]]] = None,
        min_body_bytes: Optional[int] = None,
    ) -> None:
        self.timeout = timeout if timeout is not None else config.HTTP_TIMEOUT
        self.max_redirects = max_redirects if max_redirects is not None else config.MAX_REDIRECTS
        self.retry_helper = retry_helper or RetryHelper(
            max_attempts=config.MAX_RETRIES, base_delay=config.RETRY_DELAY_BASE
        )
        # None means "whatever the channels file declared on its last reload"
        self._routes = routes
        self.min_body_bytes = min_body_bytes if min_body_bytes is not None else config.MIN_FEED_BODY_BYTES
        self.headers = {'User-Agent': config.USER_AGENT}

    @property
    def routes(self) -> List[Dict[str, str]]:
        return self._routes if self._routes is not None else config.ROUTES

    def _compute_timeout(self, proxy_url: Optional[str]) -> int:
        """Return the HTTP timeout, scaling up when routing through a proxy."""
        base_timeout = max(int(self.timeout), 1)
        if proxy_url:
            return base_timeout * PROXY_TIMEOUT_FACTOR
        return base_timeout

    def _format_client_error(self, error: ClientError) -> str:
        """Describe aiohttp client errors with any available status/errno."""
        parts: List[str] = [error.__class__.__name__]
        os_error = getattr(error, 'os_error', None)
        if os_error is not None:
            errno = getattr(os_error, 'errno', None)
            strerror = getattr(os_error, 'strerror', None)
            if errno is not None:
                parts.append(f"errno={errno}")
            if strerror:
                parts.append(str(strerror))
        message = str(error)
        if message:
            parts.append(message)
        return " ".join(parts)

    async def fetch(self, url: str, session: ClientSession, proxy_url: Optional[str] = None) -> FetchResponse:
        """GET a URL, following redirects by hand up to max_redirects hops.

        Raises:
            FetchTimeout: the request and its redirects did not finish in time
            NetworkError: connection/DNS failure or too many redirects
        """
        timeout_seconds = self._compute_timeout(proxy_url)
        loop = get_running_loop()
        # One deadline covers the whole redirect chain
        deadline = loop.time() + timeout_seconds
        current = url
        for hop in range(self.max_redirects + 1):
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise FetchTimeout(f"Timed out after {timeout_seconds}s")
            try:
                async with session.get(
                    current,
                    headers=self.headers,
                    timeout=ClientTimeout(total=remaining),
                    allow_redirects=False,
                    proxy=proxy_url,
                ) as response:
                    location = response.headers.get('Location')
                    if response.status in REDIRECT_STATUSES and location:
                        target = urljoin(current, location)
                        logger.debug(f"Redirect {response.status} ({hop + 1}/{self.max_redirects}): {current} -> {target}")
                        current = target
                        continue
                    body = await response.text(errors='replace')
                    return FetchResponse(status=response.status, body=body, url=current)
            except TimeoutError as e:
                # aiohttp's ServerTimeoutError is also a ClientError, so this must come first
                raise FetchTimeout(f"Timed out after {timeout_seconds}s") from e
            except ClientError as e:
                raise NetworkError(self._format_client_error(e)) from e
        raise NetworkError(f"Too many redirects (more than {self.max_redirects}) for {url}")

    async def fetch_with_retry(
        self,
        url: str,
        session: ClientSession,
        max_attempts: Optional[int] = None,
        proxy_url: Optional[str] = None,
    ) -> FetchResponse:
        """Fetch with retries; a non-200 answer counts as a failed attempt.

        Network errors, timeouts and HTTP errors are retried after a linear
        backoff. The error of the last attempt is re-raised.
        """
        attempts = max_attempts or self.retry_helper.max_attempts
        last_error: Optional[FetchError] = None
        for attempt in range(1, attempts + 1):
            try:
                response = await self.fetch(url, session, proxy_url=proxy_url)
                if response.status != HTTP_OK:
                    raise HttpError(response.status)
                return response
            except FetchError as e:
                last_error = e
                if attempt < attempts:
                    logger.warning("Retry %d/%d for %s due to error: %s", attempt, attempts - 1, url, e)
                    await self.retry_helper.sleep_for_attempt(attempt)
        raise last_error

    def _check_body(self, body: str) -> str:
        """Reject payloads that are too short or clearly not a feed."""
        size = len(body.encode('utf-8', errors='replace'))
        if size < self.min_body_bytes:
            raise MalformedDocument(f"Feed body too short ({size} bytes)")
        return ensure_feed_document(body)

    def resolve_routes(self, source: Source) -> List[Tuple[str, str, Optional[str]]]:
        """List (name, url, proxy) candidates for a source, direct route first."""
        candidates: List[Tuple[str, str, Optional[str]]] = [(DIRECT_ROUTE, source.url, None)]
        for route in self.routes:
            if route.get('proxy'):
                candidates.append((route['name'], source.url, route['proxy']))
            elif route.get('template'):
                try:
                    url = route['template'].format(url=quote(source.url, safe=''), id=source.id)
                except (KeyError, IndexError, ValueError) as e:
                    logger.warning(f"Fallback route '{route['name']}' has an unusable template: {e}")
                    continue
                candidates.append((route['name'], url, None))
        return candidates

    @trace_span(
        "fetch_feed",
        tracer_name="fetcher",
        attr_from_args=lambda self, source, session: {
            "feed.source_id": source.id,
            "feed.url": source.url,
        },
    )
    async def fetch_feed(self, source: Source, session: ClientSession) -> str:
        """Fetch a source's feed document, walking the fallback routes if needed.

        Raises:
            WatchError: the error of the last route tried, when none succeeded
        """
        last_error: Optional[WatchError] = None
        for name, url, proxy_url in self.resolve_routes(source):
            if proxy_url:
                logger.info("Fetching feed %s via proxy %s", source.name, redact_url(proxy_url))
            try:
                response = await self.fetch_with_retry(url, session, proxy_url=proxy_url)
                body = self._check_body(response.body)
            except WatchError as e:
                last_error = e
                logger.warning(f"[{source.name}] route '{name}' failed: {e}")
                continue
            if name != DIRECT_ROUTE:
                logger.info(f"[{source.name}] fetched via fallback route '{name}'")
            return body
        raise last_error
