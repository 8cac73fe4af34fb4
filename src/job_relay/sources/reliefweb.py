from __future__ import annotations

import re

from bs4 import BeautifulSoup

from job_relay.categories import match_category_from_raw
from job_relay.formatting import NO_DESCRIPTION, format_feed_date
from job_relay.models import EnrichedPosting, RawPosting
from job_relay.text import clean_whitespace, html_to_text

SOURCE_NAME = "reliefweb"
RELIEFWEB_LOGO_URL = (
    "https://reliefweb.int/themes/custom/common_design_subtheme/img/logos/ReliefWeb_RSS_logo.png"
)

_CLOSING_DATE_RE = re.compile(r"Closing date:\s*(.+)", re.IGNORECASE)
_EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+\.[\w.]+")
_HOW_TO_APPLY_RE = re.compile(r"<h2[^>]*>\s*How to apply\s*</h2>(.*)$", re.IGNORECASE | re.DOTALL)


def reliefweb_id(link: str) -> str:
    match = re.search(r"/job/(\d+)", link)
    return f"rw-{match.group(1)}" if match else link


def _tag_value(soup: BeautifulSoup, class_name: str, label: str) -> str | None:
    node = soup.select_one(f"div.tag.{class_name}")
    if node is None:
        return None
    text = clean_whitespace(node.get_text(" ", strip=True))
    prefix = f"{label}:"
    if text.lower().startswith(prefix.lower()):
        text = text[len(prefix):].strip()
    return text or None


def _closing_date(soup: BeautifulSoup) -> str | None:
    node = soup.select_one("div.date.closing")
    if node is None:
        return None
    match = _CLOSING_DATE_RE.search(node.get_text(" ", strip=True))
    return clean_whitespace(match.group(1)) if match else None


def _how_to_apply(markup: str) -> tuple[str | None, tuple[str, ...]]:
    match = _HOW_TO_APPLY_RE.search(markup)
    if not match:
        return None, ()
    section = match.group(1)

    links: list[str] = []
    for anchor in BeautifulSoup(section, "html.parser").find_all("a", href=True):
        href = str(anchor["href"]).strip()
        if href.startswith(("http", "mailto:")) and href not in links:
            links.append(href)
    for email in _EMAIL_RE.findall(section):
        if email not in links and f"mailto:{email}" not in links:
            links.append(email)

    text = clean_whitespace(html_to_text(section))
    return text or None, tuple(links)


def process_reliefweb(raw: RawPosting) -> EnrichedPosting:
    soup = BeautifulSoup(raw.raw_body or "", "html.parser")

    organization = _tag_value(soup, "source", "Organization")
    country = _tag_value(soup, "country", "Country")
    closing = _closing_date(soup)
    how_to_apply, links = _how_to_apply(raw.raw_body or "")

    for meta in soup.select("div.tag, div.date"):
        meta.decompose()
    description = html_to_text(str(soup))

    return EnrichedPosting(
        source=SOURCE_NAME,
        title=raw.title,
        employer=organization or raw.employer,
        url=raw.url,
        body_text=description or NO_DESCRIPTION,
        image_url=raw.image_url or RELIEFWEB_LOGO_URL,
        location=country,
        posted_label=format_feed_date(raw.published_at),
        deadline_label=closing,
        how_to_apply=how_to_apply,
        application_contacts=links,
        category=match_category_from_raw(raw.categories, SOURCE_NAME),
    )
