from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urljoin

import feedparser
import httpx

from job_relay.config import Settings
from job_relay.formatting import format_feed_date
from job_relay.models import EnrichedPosting, RawPosting
from job_relay.sources.base import SourceError, SourcePlugin
from job_relay.sources.cleaner import clean_job_description
from job_relay.sources.transport import fetch_text
from job_relay.text import clean_whitespace, decode_entities

logger = logging.getLogger(__name__)

UNKNOWN_EMPLOYER = "Unknown Company"
UNTITLED = "No Title"

FeedProcessor = Callable[[RawPosting], EnrichedPosting]


@dataclass(frozen=True)
class FeedSourceConfig:
    name: str
    feed_url: Callable[[Settings], str]
    base_url: str
    id_extractor: Callable[[str], str]
    processor: FeedProcessor | None = None
    feed_url_env: str | None = None


def _entry_datetime(entry: Any, fallback: datetime) -> datetime:
    for key in ("published_parsed", "updated_parsed"):
        parsed = entry.get(key)
        if parsed:
            return datetime(*parsed[:6], tzinfo=timezone.utc)
    return fallback


def _entry_link_and_image(entry: Any) -> tuple[str, str | None]:
    link = ""
    image: str | None = None
    for item in entry.get("links") or []:
        rel = item.get("rel")
        href = item.get("href")
        if not href:
            continue
        if rel == "alternate" and not link:
            link = href
        elif rel == "enclosure" and image is None:
            image = href
    if not link:
        link = entry.get("link") or ""
    if image is None:
        for enclosure in entry.get("enclosures") or []:
            href = enclosure.get("href") or enclosure.get("url")
            if href:
                image = href
                break
    return link, image


def _entry_employer(entry: Any) -> str:
    detail = entry.get("author_detail") or {}
    name = detail.get("name") if isinstance(detail, dict) else None
    return clean_whitespace(name or entry.get("author") or "") or UNKNOWN_EMPLOYER


def _entry_body(entry: Any) -> str:
    content = entry.get("content") or []
    if content and content[0].get("value"):
        return str(content[0]["value"])
    return str(entry.get("summary") or "")


def parse_feed(
    document: str,
    *,
    source: str,
    base_url: str,
    id_extractor: Callable[[str], str],
    fetched_at: datetime | None = None,
) -> list[RawPosting]:
    """Parse an Atom (entry-based) or RSS (item-based) document into raw postings."""
    parsed = feedparser.parse(document, sanitize_html=False)
    entries = parsed.get("entries") or []
    if parsed.get("bozo") and not entries:
        raise SourceError(f"{source}: unparseable feed: {parsed.get('bozo_exception')}")

    fallback_time = fetched_at or datetime.now(timezone.utc)
    posts: list[RawPosting] = []
    for entry in entries:
        link, image = _entry_link_and_image(entry)
        if not link:
            link = entry.get("id") or ""
        if image and image.startswith("/"):
            image = urljoin(base_url, image)

        local_id = id_extractor(link) if link else str(entry.get("id") or "")
        if not local_id:
            logger.warning("%s: skipping feed entry without link or id", source)
            continue

        posts.append(
            RawPosting(
                source=source,
                source_local_id=local_id,
                title=decode_entities(clean_whitespace(entry.get("title") or "")) or UNTITLED,
                employer=_entry_employer(entry),
                url=link,
                published_at=_entry_datetime(entry, fallback_time),
                image_url=image,
                raw_body=_entry_body(entry),
                categories=tuple(
                    tag.get("term", "").strip() for tag in entry.get("tags") or [] if tag.get("term")
                ),
            )
        )
    return posts


def default_feed_processor(raw: RawPosting) -> EnrichedPosting:
    cleaned = clean_job_description(raw.raw_body)
    return EnrichedPosting(
        source=raw.source,
        title=raw.title,
        employer=raw.employer,
        url=raw.url,
        body_text=cleaned.description,
        image_url=raw.image_url,
        location=cleaned.location,
        posted_label=cleaned.posted or format_feed_date(raw.published_at),
        deadline_label=cleaned.deadline,
    )


class FeedSource(SourcePlugin):
    def __init__(self, config: FeedSourceConfig):
        self.name = config.name
        self.config = config

    async def fetch(self, client: httpx.AsyncClient, settings: Settings) -> list[RawPosting]:
        url = self.config.feed_url(settings)
        if not url:
            setting = self.config.feed_url_env or "feed URL"
            raise SourceError(f"{self.name}: {setting} not configured")
        document = await fetch_text(client, url)
        return parse_feed(
            document,
            source=self.name,
            base_url=self.config.base_url,
            id_extractor=self.config.id_extractor,
        )

    async def process(
        self,
        raw: RawPosting,
        client: httpx.AsyncClient,
        settings: Settings,
    ) -> EnrichedPosting:
        processor = self.config.processor or default_feed_processor
        return processor(raw)
