from __future__ import annotations

import logging
from typing import Optional

import httpx

from .config import Settings
from .report import push_message, render_notification
from .schemas import AggregateResult

logger = logging.getLogger(__name__)


def _client(transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    timeout = httpx.Timeout(10.0, connect=5.0)
    return httpx.AsyncClient(timeout=timeout, transport=transport or httpx.AsyncHTTPTransport(retries=3))


async def push_status(url: Optional[str], up: bool, message: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> bool:
    """Uptime Kuma style push: ``GET <url>?status=up|down&msg=...``. Never raises."""
    if not url:
        return False
    try:
        async with _client(transport) as client:
            resp = await client.get(url, params={"status": "up" if up else "down", "msg": message})
            resp.raise_for_status()
        return True
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.warning(f"Failed to push status to monitor: {e}")
        return False


async def post_chat(url: Optional[str], text: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> bool:
    if not url:
        return False
    try:
        async with _client(transport) as client:
            resp = await client.post(url, json={"content": text})
            resp.raise_for_status()
        return True
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.warning(f"Failed to send chat notification: {e}")
        return False


async def notify_update(settings: Settings, result: AggregateResult, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
    await push_status(settings.update_push_url, result.failed == 0, push_message(result), transport=transport)
    await post_chat(settings.chat_webhook_url, render_notification(result), transport=transport)
