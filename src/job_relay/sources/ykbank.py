from __future__ import annotations

import re

from bs4 import BeautifulSoup

from job_relay.formatting import NO_DESCRIPTION, format_feed_date
from job_relay.models import EnrichedPosting, RawPosting
from job_relay.text import clean_lines, decode_entities, html_to_text

SOURCE_NAME = "ykbank"
DEFAULT_EMPLOYER = "Yemen Kuwait Bank"


def ykbank_id(link: str) -> str:
    match = re.search(r"/Careers/(\d+)", link) or re.search(r"/(\d{6,})", link)
    return f"ykbank-{match.group(1)}" if match else link


def _prefix_value(markup: str, label: str) -> str | None:
    match = re.search(rf"{label}:\s*(.+?)\s*<br", markup, flags=re.IGNORECASE)
    if not match:
        return None
    value = re.sub(r"<[^>]+>", "", match.group(1)).strip()
    return value or None


def deduplicate_location(location: str) -> str:
    """Collapse Zoho's repeated city/governorate words: ``Sana'a Sana'a Yemen`` -> ``Sana'a, Yemen``."""
    deduped: list[str] = []
    for part in location.split():
        if not deduped or deduped[-1].lower() != part.lower():
            deduped.append(part)
    return ", ".join(deduped)


def process_ykbank(raw: RawPosting) -> EnrichedPosting:
    markup = raw.raw_body or ""
    category = _prefix_value(markup, "Category")
    raw_location = _prefix_value(markup, "Location")
    location = deduplicate_location(decode_entities(raw_location)) if raw_location else None

    soup = BeautifulSoup(f"<div>{markup}</div>", "html.parser")
    sections = []
    for span_id in ("spandesc", "spanreq"):
        node = soup.select_one(f"#{span_id}")
        if node is not None:
            text = html_to_text(node.decode_contents())
            if text:
                sections.append(text)
    description = "\n\n".join(sections) or clean_lines(html_to_text(markup))

    return EnrichedPosting(
        source=SOURCE_NAME,
        title=decode_entities(raw.title),
        employer=DEFAULT_EMPLOYER,
        url=raw.url,
        body_text=description or NO_DESCRIPTION,
        image_url=raw.image_url,
        location=location,
        posted_label=format_feed_date(raw.published_at),
        category=decode_entities(category) if category else None,
    )
