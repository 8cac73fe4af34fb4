from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from job_relay.config import Settings

logger = logging.getLogger(__name__)

BROWSER_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"


def build_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=settings.request_timeout_seconds,
        headers={"User-Agent": settings.user_agent},
        follow_redirects=True,
    )


@retry(
    stop=stop_after_attempt(3),
    wait=wait_fixed(1),
    retry=retry_if_exception_type(httpx.HTTPError),
    reraise=True,
)
async def fetch_text(
    client: httpx.AsyncClient,
    url: str,
    *,
    headers: Mapping[str, str] | None = None,
) -> str:
    response = await client.get(url, headers=dict(headers or {}))
    response.raise_for_status()
    return response.text


async def fetch_detail_html(
    client: httpx.AsyncClient,
    url: str,
    *,
    timeout_seconds: float,
    headers: Mapping[str, str] | None = None,
) -> str | None:
    """Single bounded attempt at a detail page; ``None`` on any failure."""
    try:
        response = await asyncio.wait_for(
            client.get(url, headers=dict(headers or {}), timeout=timeout_seconds),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.warning("detail fetch timed out after %ss: %s", timeout_seconds, url)
        return None
    except httpx.HTTPError as exc:
        logger.warning("detail fetch failed for %s: %s", url, exc)
        return None
    if response.status_code >= 400:
        logger.warning("detail fetch for %s returned %s", url, response.status_code)
        return None
    return response.text
