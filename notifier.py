#!/usr/bin/env python3
"""
E-mail notifications through the Resend HTTP API.

send() never raises: every failure (missing configuration, non-2xx answer,
network error) comes back as a NotifyResult with a human-readable reason.
The watcher logs it and moves on; deliveries are not retried.
"""

from asyncio import TimeoutError
from dataclasses import dataclass
from datetime import datetime, timezone
from json import JSONDecodeError
from typing import Optional

from aiohttp import ClientError, ClientSession, ClientTimeout
from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape

from config import config, get_logger
from errors import NotificationError
from models import Item
from telemetry import trace_span

logger = get_logger("notifier")


@dataclass
class NotifyResult:
    ok: bool
    reason: Optional[str] = None


def format_published(value: str) -> str:
    """Render an ISO 8601 timestamp as e.g. "13 February 2025, 18:00 UTC"."""
    if not value:
        return "Unknown date"
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.strftime("%d %B %Y, %H:%M UTC").lstrip("0")


def subject_for(item: Item) -> str:
    return f"🔔 {item.source_name} uploaded a new video"


class ResendNotifier:
    """Sends one e-mail per item via https://resend.com."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        sender: Optional[str] = None,
        api_url: Optional[str] = None,
        templates_dir: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        self.api_key = api_key if api_key is not None else config.RESEND_API_KEY
        self.sender = sender or config.FROM_EMAIL
        self.api_url = api_url or config.RESEND_API_URL
        self.timeout = timeout or config.NOTIFY_TIMEOUT
        self.env = Environment(
            loader=FileSystemLoader(templates_dir or config.TEMPLATES_DIR),
            autoescape=select_autoescape(['html']),
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def render(self, item: Item) -> tuple:
        """Return (html, text) bodies for an item."""
        context = {"item": item, "published": format_published(item.published)}
        html = self.env.get_template('email.html').render(**context)
        text = self.env.get_template('email.txt').render(**context)
        return html, text

    async def _post(self, payload: dict, session: ClientSession) -> None:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with session.post(
                self.api_url,
                json=payload,
                headers=headers,
                timeout=ClientTimeout(total=self.timeout),
            ) as response:
                if 200 <= response.status < 300:
                    return
                reason = f"HTTP {response.status}"
                try:
                    body = await response.json(content_type=None)
                    if isinstance(body, dict) and body.get("message"):
                        reason += f" - {body['message']}"
                except (JSONDecodeError, ValueError):
                    pass
                raise NotificationError(reason)
        except TimeoutError as e:
            raise NotificationError(f"Timed out after {self.timeout}s") from e
        except ClientError as e:
            raise NotificationError(f"{e.__class__.__name__}: {e}") from e

    @trace_span(
        "notify",
        tracer_name="notifier",
        attr_from_args=lambda self, recipient, subject, item, session=None: {
            "item.id": item.item_id,
            "item.source_id": item.source_id,
        },
    )
    async def send(
        self,
        recipient: str,
        subject: str,
        item: Item,
        session: Optional[ClientSession] = None,
    ) -> NotifyResult:
        """Deliver one notification; failures are reported, not raised."""
        if not self.api_key:
            return NotifyResult(ok=False, reason="RESEND_API_KEY is not configured")
        if not recipient:
            return NotifyResult(ok=False, reason="Recipient address is empty")

        try:
            html, text = self.render(item)
        except TemplateError as e:
            logger.error(f"Could not render notification for {item.item_id}: {e!r}")
            return NotifyResult(ok=False, reason=f"Template error: {e.__class__.__name__}: {e}")

        payload = {
            "from": self.sender,
            "to": [recipient],
            "subject": subject,
            "html": html,
            "text": text,
        }
        try:
            if session is None:
                async with ClientSession() as own_session:
                    await self._post(payload, own_session)
            else:
                await self._post(payload, session)
        except NotificationError as e:
            return NotifyResult(ok=False, reason=e.reason)
        return NotifyResult(ok=True)
