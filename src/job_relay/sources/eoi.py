from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone

import httpx
from bs4 import BeautifulSoup, Tag

from job_relay.config import Settings
from job_relay.formatting import NO_DESCRIPTION
from job_relay.models import EnrichedPosting, RawPosting
from job_relay.sources.base import SourceError, SourcePlugin
from job_relay.sources.transport import BROWSER_USER_AGENT, fetch_detail_html, fetch_text
from job_relay.text import clean_whitespace, html_to_text

logger = logging.getLogger(__name__)

SOURCE_NAME = "eoi"
LISTING_URL = "https://eoi-ye.com/live_search/action1?type=0&title="
LISTING_HEADERS = {
    "X-Requested-With": "XMLHttpRequest",
    "User-Agent": BROWSER_USER_AGENT,
    "Accept": "application/json",
    "Referer": "https://eoi-ye.com/jobs/",
}
DETAIL_HEADERS = {"User-Agent": BROWSER_USER_AGENT, "Accept": "text/html"}
EXPIRED_MARKERS = ("هذا الإعلان منتهي", "هذه الوظيفة لم تعد متاحة", "الصفحة غير موجودة")

LABEL_CATEGORY = "الفئة"
LABEL_LOCATION = "الموقع"
LABEL_POSTED = "تاريخ النشر"
LABEL_DEADLINE = "آخر موعد للتقديم"

_JOB_URL_RE = re.compile(r"https://eoi-ye\.com/jobs/(\d+)/?")
_CF_LINK_RE = re.compile(
    r"<a[^>]+href=\"/cdn-cgi/l/email-protection#([0-9a-fA-F]+)\"[^>]*>.*?</a>",
    re.DOTALL,
)
_CF_SPAN_RE = re.compile(r"<span[^>]+data-cfemail=\"([0-9a-fA-F]+)\"[^>]*>.*?</span>", re.DOTALL)
_WORD_ARTIFACT_RES = (
    re.compile(r"<o:p[^>]*>.*?</o:p>", re.IGNORECASE | re.DOTALL),
    re.compile(r"<!\[if[^>]*>.*?<!\[endif\]>", re.IGNORECASE | re.DOTALL),
    re.compile(r"class=\"Mso[^\"]*\"", re.IGNORECASE),
    re.compile(r"style=\"[^\"]*mso-[^\"]*\"", re.IGNORECASE),
    re.compile(r"<img[^>]+src=\"data:[^\"]*\"[^>]*>", re.IGNORECASE),
)
_DEADLINE_RE = re.compile(r"الموعد الاخير\s*:\s*(\d{2}-\d{2}-\d{4})")
_DEADLINE_TIME_RE = re.compile(r"الوقت:\s*(\d{2}:\d{2})")
_LOGO_RE = re.compile(r"<img[^>]+src=\"(https://eoi-ye\.com/storage/users/[^\"]+)\"")
_APPLY_SECTION_RE = re.compile(
    r"(?:How(?:\s|<[^>]*>)*to(?:\s|<[^>]*>)*Apply|طريقة\s+التقديم|Application\s+(?:Information|Process)|كيفية\s+التقديم)(.*)$",
    re.IGNORECASE | re.DOTALL,
)
_URL_RE = re.compile(r"https?://[^\s\"'<>)]+")
_EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_PHONE_RE = re.compile(r"(?:\+?967|00967)[\s-]?\d[\s-]?\d{2,3}[\s-]?\d{3,4}[\s-]?\d{0,3}")
_APPLY_URL_HINTS = (
    "forms.gle",
    "forms.google",
    "docs.google.com/forms",
    "apply",
    "recruitment",
    "careers",
    "jobs",
    "submit",
    "smartsheet",
    "surveymonkey",
    "kobo",
    "reliefweb",
)


@dataclass(frozen=True)
class EOIDetail:
    description: str
    image_url: str | None = None
    deadline: str | None = None
    how_to_apply: str | None = None
    contacts: tuple[str, ...] = ()


def _cell_text(node: Tag | None) -> str:
    if node is None:
        return ""
    for label in node.find_all("div"):
        label.decompose()
    return clean_whitespace(node.get_text(" ", strip=True))


def _parse_post_date(value: str, fallback: datetime) -> datetime:
    try:
        return datetime.strptime(value.strip(), "%d-%m-%Y").replace(tzinfo=timezone.utc)
    except ValueError:
        return fallback


def parse_listing_rows(markup: str, *, fetched_at: datetime | None = None) -> list[RawPosting]:
    """Parse the HTML rows that the live-search endpoint returns in ``table_data``."""
    seen_at = fetched_at or datetime.now(timezone.utc)
    soup = BeautifulSoup(markup, "html.parser")
    posts: list[RawPosting] = []
    for anchor in soup.find_all("a", href=_JOB_URL_RE):
        match = _JOB_URL_RE.search(str(anchor["href"]))
        content = anchor.select_one('div[class*="job-content"]')
        if match is None or content is None:
            continue

        date_cell = content.select_one("div.data.col-md-1")
        post_date = clean_whitespace(date_cell.get_text(" ", strip=True)) if date_cell else ""
        title_cell = content.select_one("div.data.col-md-3")
        title_node = title_cell.find("div", class_=False) if title_cell else None
        title = clean_whitespace(title_node.get_text(" ", strip=True)) if title_node else ""
        cells = [_cell_text(cell) for cell in content.select("div.data.col-md-2")]
        cells += [""] * (4 - len(cells))
        category, company, location, deadline = cells[:4]

        lines = [
            f"{label}: {value}"
            for label, value in (
                (LABEL_CATEGORY, category),
                (LABEL_LOCATION, location),
                (LABEL_POSTED, post_date),
                (LABEL_DEADLINE, deadline),
            )
            if value
        ]
        posts.append(
            RawPosting(
                source=SOURCE_NAME,
                source_local_id=f"eoi-{match.group(1)}",
                title=title or "No Title",
                employer=company or "Unknown",
                url=f"https://eoi-ye.com/jobs/{match.group(1)}/",
                published_at=_parse_post_date(post_date, seen_at) if post_date else seen_at,
                raw_body="\n".join(lines),
            )
        )
    return posts


def _decode_cf_email(encoded: str) -> str:
    key = int(encoded[:2], 16)
    return "".join(chr(int(encoded[i : i + 2], 16) ^ key) for i in range(2, len(encoded), 2))


def decode_cf_emails(markup: str) -> str:
    markup = _CF_LINK_RE.sub(lambda match: _decode_cf_email(match.group(1)), markup)
    return _CF_SPAN_RE.sub(lambda match: _decode_cf_email(match.group(1)), markup)


def strip_word_artifacts(markup: str) -> str:
    for pattern in _WORD_ARTIFACT_RES:
        markup = pattern.sub("", markup)
    return markup


def clean_description(markup: str) -> str:
    if not markup:
        return ""
    soup = BeautifulSoup(strip_word_artifacts(markup), "html.parser")
    for anchor in soup.find_all("a", href=True):
        href = str(anchor["href"])
        text = clean_whitespace(anchor.get_text(" ", strip=True))
        anchor.replace_with(f"{text} ({href})" if text and text != href else href)
    for cell in soup.find_all("td"):
        cell.insert_before(" | ")
    return html_to_text(str(soup))


def extract_deadline(markup: str) -> str | None:
    match = _DEADLINE_RE.search(markup)
    if not match:
        return None
    deadline = match.group(1)
    time_match = _DEADLINE_TIME_RE.search(markup)
    if time_match:
        deadline = f"{deadline} {time_match.group(1)}"
    return deadline


def extract_how_to_apply(markup: str) -> tuple[str | None, tuple[str, ...]]:
    """Return the how-to-apply text and every application URL, e-mail and Yemeni phone number."""
    links: list[str] = []
    for url in _URL_RE.findall(markup):
        if any(hint in url for hint in _APPLY_URL_HINTS) and url not in links:
            links.append(url)
    emails: list[str] = []
    for email in _EMAIL_RE.findall(markup):
        if email not in emails:
            emails.append(email)
    phones: list[str] = []
    for phone in _PHONE_RE.findall(markup):
        cleaned = re.sub(r"[\s-]", "", phone)
        if cleaned not in phones:
            phones.append(cleaned)

    section = _APPLY_SECTION_RE.search(markup)
    text = clean_description(section.group(1)) if section else ""
    return text or None, tuple(links + emails + phones)


def parse_detail_page(markup: str) -> EOIDetail | None:
    markup = decode_cf_emails(markup)
    if any(marker in markup for marker in EXPIRED_MARKERS):
        return None

    soup = BeautifulSoup(markup, "html.parser")
    node = soup.select_one('div[class*="detail-adv"]')
    description_html = strip_word_artifacts(node.decode_contents()) if node is not None else ""
    logo = _LOGO_RE.search(markup)
    how_to_apply, contacts = extract_how_to_apply(description_html)
    return EOIDetail(
        description=clean_description(description_html),
        image_url=logo.group(1) if logo else None,
        deadline=extract_deadline(markup),
        how_to_apply=how_to_apply,
        contacts=contacts,
    )


def _listing_value(body: str, label: str) -> str | None:
    match = re.search(rf"^{label}:\s*(.+)$", body or "", flags=re.MULTILINE)
    return match.group(1).strip() if match else None


class EOISource(SourcePlugin):
    name = SOURCE_NAME

    async def fetch(self, client: httpx.AsyncClient, settings: Settings) -> list[RawPosting]:
        body = await fetch_text(client, LISTING_URL, headers=LISTING_HEADERS)
        try:
            payload = json.loads(body)
        except json.JSONDecodeError as exc:
            raise SourceError(f"{SOURCE_NAME}: listing endpoint returned invalid JSON") from exc
        table = payload.get("table_data") if isinstance(payload, dict) else None
        if not table:
            return []
        return parse_listing_rows(table)

    async def process(
        self,
        raw: RawPosting,
        client: httpx.AsyncClient,
        settings: Settings,
    ) -> EnrichedPosting:
        location = _listing_value(raw.raw_body, LABEL_LOCATION)
        posted = _listing_value(raw.raw_body, LABEL_POSTED)
        category = _listing_value(raw.raw_body, LABEL_CATEGORY)
        listing_deadline = _listing_value(raw.raw_body, LABEL_DEADLINE)

        document = await fetch_detail_html(
            client,
            raw.url,
            timeout_seconds=settings.detail_timeout_seconds,
            headers=DETAIL_HEADERS,
        )
        detail: EOIDetail | None = None
        if document:
            try:
                detail = parse_detail_page(document)
            except Exception:
                logger.warning("%s: could not parse detail page %s", SOURCE_NAME, raw.url, exc_info=True)
                document = None
        if detail is None:
            if document:
                logger.info("%s: posting expired or removed: %s", SOURCE_NAME, raw.url)
            return EnrichedPosting(
                source=SOURCE_NAME,
                title=raw.title,
                employer=raw.employer,
                url=raw.url,
                body_text=raw.raw_body or NO_DESCRIPTION,
                location=location,
                posted_label=posted,
                deadline_label=listing_deadline,
                category=category,
            )

        return EnrichedPosting(
            source=SOURCE_NAME,
            title=raw.title,
            employer=raw.employer,
            url=raw.url,
            body_text=detail.description or raw.raw_body or NO_DESCRIPTION,
            image_url=detail.image_url,
            location=location,
            posted_label=posted,
            deadline_label=detail.deadline or listing_deadline,
            how_to_apply=detail.how_to_apply,
            application_contacts=detail.contacts,
            category=category,
        )
