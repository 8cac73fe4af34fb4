from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup, Tag

from job_relay.config import Settings
from job_relay.formatting import NO_DESCRIPTION
from job_relay.models import EnrichedPosting, RawPosting
from job_relay.sources.base import SourcePlugin
from job_relay.sources.transport import fetch_detail_html, fetch_text
from job_relay.text import clean_whitespace, html_to_text

logger = logging.getLogger(__name__)

UNKNOWN_EMPLOYER = "Unknown Company"

_LISTING_FIELDS = (
    ("location", "Location"),
    ("posted", "PostedDate"),
    ("deadline", "Deadline"),
    ("category", "Category"),
)


@dataclass(frozen=True)
class ListingSelectors:
    container: str
    title: str
    link: str
    link_attr: str = "href"
    employer: str | None = None
    image: str | None = None
    location: str | None = None
    posted: str | None = None
    deadline: str | None = None
    category: str | None = None


@dataclass(frozen=True)
class DetailPageConfig:
    description_selector: str
    cleanup_selectors: tuple[str, ...] = ()
    image_selector: str | None = None


@dataclass(frozen=True)
class ScrapeSourceConfig:
    name: str
    listing_url: str
    base_url: str
    selectors: ListingSelectors
    id_extractor: Callable[[str, str], str | None]
    default_employer: str | None = None
    listing_cleanup_selectors: tuple[str, ...] = ()
    detail: DetailPageConfig | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    response_extractor: Callable[[str], str] | None = None
    default_image: str | None = None
    expired_markers: tuple[str, ...] = ()


def resolve_url(base_url: str, value: str) -> str:
    value = value.strip()
    if value.startswith(("http://", "https://")):
        return value
    return urljoin(base_url.rstrip("/") + "/", value)


def _text(node: Tag, selector: str | None) -> str | None:
    if not selector:
        return None
    target = node.select_one(selector)
    if target is None:
        return None
    return clean_whitespace(target.get_text(" ", strip=True)) or None


def _attr(node: Tag, selector: str, attr: str, base_url: str) -> str | None:
    target = node.select_one(selector)
    if target is None:
        return None
    value = target.get(attr)
    if isinstance(value, list):
        value = " ".join(value)
    if not value or not value.strip():
        return None
    if attr in ("href", "src"):
        return resolve_url(base_url, value)
    return value.strip()


def _listing_link(container: Tag, config: ScrapeSourceConfig) -> str | None:
    selectors = config.selectors
    if selectors.link_attr == "href":
        link = _attr(container, selectors.link, "href", config.base_url)
        if link:
            return link
        own = container.get("href")
        return resolve_url(config.base_url, own) if isinstance(own, str) and own.strip() else None

    # the selector may describe the container itself, which select_one cannot match
    element = container.select_one(selectors.link) or container
    raw = element.get(selectors.link_attr)
    if not isinstance(raw, str) or not raw.strip():
        return None
    return resolve_url(config.base_url, raw)


def parse_listing(
    document: str,
    config: ScrapeSourceConfig,
    *,
    fetched_at: datetime | None = None,
) -> list[RawPosting]:
    """Extract job cards from a listing page using the configured selectors."""
    markup = config.response_extractor(document) if config.response_extractor else document
    soup = BeautifulSoup(markup, "html.parser")
    containers = soup.select(config.selectors.container)
    if not containers:
        logger.warning("%s: no job containers matched %s", config.name, config.selectors.container)
        return []

    seen_at = fetched_at or datetime.now(timezone.utc)
    selectors = config.selectors
    posts: list[RawPosting] = []
    seen_ids: set[str] = set()
    for container in containers:
        for selector in config.listing_cleanup_selectors:
            for noise in container.select(selector):
                noise.decompose()

        title = _text(container, selectors.title)
        if not title:
            continue
        link = _listing_link(container, config)
        if not link:
            continue
        local_id = config.id_extractor(link, title)
        if not local_id or local_id in seen_ids:
            continue
        seen_ids.add(local_id)

        values = {
            "location": _text(container, selectors.location),
            "posted": _text(container, selectors.posted),
            "deadline": _text(container, selectors.deadline),
            "category": _text(container, selectors.category),
        }
        body = "\n".join(
            f"{label}: {values[key]}" for key, label in _LISTING_FIELDS if values[key]
        )
        image = _attr(container, selectors.image, "src", config.base_url) if selectors.image else None

        posts.append(
            RawPosting(
                source=config.name,
                source_local_id=local_id,
                title=title,
                employer=_text(container, selectors.employer) or config.default_employer or UNKNOWN_EMPLOYER,
                url=link,
                published_at=seen_at,
                image_url=image,
                raw_body=body,
            )
        )
    return posts


def parse_listing_fields(body: str) -> dict[str, str | None]:
    fields: dict[str, str | None] = {}
    for key, label in _LISTING_FIELDS:
        match = re.search(rf"^{label}:\s*(.+)$", body or "", flags=re.MULTILINE | re.IGNORECASE)
        fields[key] = match.group(1).strip() if match else None
    return fields


def extract_detail(
    document: str,
    detail: DetailPageConfig,
    base_url: str,
) -> tuple[str | None, str | None]:
    """Return ``(description, image_url)`` from a detail page."""
    soup = BeautifulSoup(document, "html.parser")
    for selector in detail.cleanup_selectors:
        for noise in soup.select(selector):
            noise.decompose()

    description: str | None = None
    node = soup.select_one(detail.description_selector)
    if node is not None:
        description = html_to_text(node.decode_contents()) or None

    image: str | None = None
    if detail.image_selector:
        image = _attr(soup, detail.image_selector, "src", base_url)
    return description, image


class ScrapeSource(SourcePlugin):
    def __init__(self, config: ScrapeSourceConfig):
        self.name = config.name
        self.config = config

    async def fetch(self, client: httpx.AsyncClient, settings: Settings) -> list[RawPosting]:
        document = await fetch_text(client, self.config.listing_url, headers=self.config.headers)
        return parse_listing(document, self.config)

    async def process(
        self,
        raw: RawPosting,
        client: httpx.AsyncClient,
        settings: Settings,
    ) -> EnrichedPosting:
        fields = parse_listing_fields(raw.raw_body)
        description = raw.raw_body
        image = raw.image_url

        if self.config.detail is not None:
            document = await fetch_detail_html(
                client,
                raw.url,
                timeout_seconds=settings.detail_timeout_seconds,
            )
            if document and any(marker in document for marker in self.config.expired_markers):
                logger.info("%s: detail page reports posting expired: %s", self.name, raw.url)
            elif document:
                try:
                    detail_description, detail_image = extract_detail(
                        document,
                        self.config.detail,
                        self.config.base_url,
                    )
                except Exception:
                    logger.warning("%s: could not parse detail page %s", self.name, raw.url, exc_info=True)
                else:
                    description = detail_description or description
                    image = image or detail_image

        return EnrichedPosting(
            source=self.name,
            title=raw.title,
            employer=raw.employer,
            url=raw.url,
            body_text=description or NO_DESCRIPTION,
            image_url=image or self.config.default_image,
            location=fields["location"],
            posted_label=fields["posted"],
            deadline_label=fields["deadline"],
            category=fields["category"],
        )
