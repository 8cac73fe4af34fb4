from __future__ import annotations

import html
import re
from datetime import datetime

from job_relay.models import ChannelMessage, EnrichedPosting
from job_relay.text import strip_markdown, truncate

UNKNOWN = "غير محدد"
DIVIDER = "━━━━━━━━━━━━━━━━━━━━"
MAX_CAPTION_LENGTH = 1024
MAX_TEXT_LENGTH = 4096
FALLBACK_DESCRIPTION_LIMIT = 600
FALLBACK_APPLY_LIMIT = 200
NO_DESCRIPTION = "No description available"

ARABIC_MONTHS = (
    "يناير",
    "فبراير",
    "مارس",
    "أبريل",
    "مايو",
    "يونيو",
    "يوليو",
    "أغسطس",
    "سبتمبر",
    "أكتوبر",
    "نوفمبر",
    "ديسمبر",
)
ENGLISH_MONTHS = {
    name: index
    for index, name in enumerate(
        ("jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec")
    )
}

_NUMERIC_DATE_RE = re.compile(r"^(\d{2})-(\d{2})-(\d{4})")
_TEXT_DATE_RE = re.compile(r"(\d{1,2})\s+([A-Za-z]{3}),?\s*(\d{2,4})")
_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
_PHONE_RE = re.compile(r"^\+?\d")


def format_arabic_date(value: str | None) -> str:
    """Render the date formats the boards publish as ``DD <Arabic month> YYYY``.

    Handles ``DD-MM-YYYY[ HH:mm]``, ``DD Mon, YY[YY]``, RFC-822 feed dates and
    ISO-8601 timestamps. Anything else is returned unchanged.
    """
    if not value:
        return UNKNOWN

    numeric = _NUMERIC_DATE_RE.match(value)
    if numeric:
        day, month, year = numeric.groups()
        month_index = int(month) - 1
        if 0 <= month_index <= 11:
            return f"{day} {ARABIC_MONTHS[month_index]} {year}"

    iso = _ISO_DATE_RE.match(value)
    if iso:
        year, month, day = iso.groups()
        month_index = int(month) - 1
        if 0 <= month_index <= 11:
            return f"{day} {ARABIC_MONTHS[month_index]} {year}"

    textual = _TEXT_DATE_RE.search(value)
    if textual:
        day, month_name, year = textual.groups()
        month_index = ENGLISH_MONTHS.get(month_name.lower())
        if month_index is not None:
            if len(year) == 2:
                year = f"20{year}"
            return f"{day} {ARABIC_MONTHS[month_index]} {year}"

    return value


def format_feed_date(value: datetime) -> str:
    return f"{value.day:02d}-{value.month:02d}-{value.year}"


def build_job_header(posting: EnrichedPosting) -> str:
    return (
        f"📋 المسمى الوظيفي:\n{posting.title}\n\n"
        f"🏢 الجهة:\n{posting.employer}\n\n"
        f"📍 الموقع:\n{posting.location or UNKNOWN}\n\n"
        f"📅 تاريخ النشر:\n{format_arabic_date(posting.posted_label)}\n\n"
        f"⏰ آخر موعد للتقديم:\n{format_arabic_date(posting.deadline_label)}\n\n"
        f"{DIVIDER}"
    )


def contact_line(contact: str) -> str:
    if "@" in contact:
        return f"📩 إيميل: {contact}"
    if _PHONE_RE.match(contact):
        return f"📱 واتساب/هاتف: {contact}"
    return f"🔗 رابط: {contact}"


def build_no_ai_fallback(posting: EnrichedPosting) -> str:
    parts = [build_job_header(posting)]

    description = posting.body_text.strip()
    if description and description != NO_DESCRIPTION:
        parts.append(f"\n📋 الوصف الوظيفي:\n{truncate(description, FALLBACK_DESCRIPTION_LIMIT)}")
    else:
        parts.append("\n📋 الوصف الوظيفي:\nالرجاء زيارة رابط الوظيفة للمزيد من التفاصيل.")

    if posting.how_to_apply or posting.application_contacts:
        parts.append(f"\n{DIVIDER}")
        parts.append("\n📧 كيفية التقديم:")
        if posting.how_to_apply:
            parts.append(truncate(posting.how_to_apply, FALLBACK_APPLY_LIMIT))
        parts.extend(contact_line(contact) for contact in posting.application_contacts)

    return "\n".join(parts)


def build_apply_context(posting: EnrichedPosting) -> str:
    context = ""
    if posting.application_contacts:
        context = (
            "\n\nApplication links/contacts (PRESERVE EXACTLY as-is, do not translate or modify):\n"
            + "\n".join(posting.application_contacts)
        )
    if posting.how_to_apply:
        context += f"\n\nHow to Apply section:\n{posting.how_to_apply}"
    return context


def build_apply_fallback_section(text: str) -> str:
    return f"\n\n{DIVIDER}\n\n📧 كيفية التقديم:\n{text}"


def hashtag(value: str | None) -> str | None:
    if not value:
        return None
    tag = re.sub(r"[^\w]+", "_", value.strip()).strip("_")
    return f"#{tag}" if tag else None


def escape_html(value: str) -> str:
    return html.escape(value, quote=False)


def _footer(
    url: str,
    *,
    source_tag: str | None,
    category: str | None,
    footer_url: str | None,
) -> str:
    lines = ["", "", DIVIDER, "🔗 رابط الوظيفة:", escape_html(url)]
    tags = [tag for tag in (hashtag(source_tag), hashtag(category)) if tag]
    if tags:
        lines.extend(["", " ".join(tags)])
    if footer_url:
        lines.extend(["", "❤️ نتمنى لكم التوفيق! تابعونا للمزيد:", escape_html(footer_url)])
    return "\n".join(lines)


def format_channel_message(
    summary: str,
    url: str,
    image_url: str | None = None,
    *,
    source_tag: str | None = None,
    category: str | None = None,
    footer_url: str | None = None,
) -> ChannelMessage:
    valid_image = image_url if image_url and image_url.startswith("http") else None
    footer = _footer(url, source_tag=source_tag, category=category, footer_url=footer_url)
    limit = MAX_CAPTION_LENGTH if valid_image else MAX_TEXT_LENGTH

    raw = strip_markdown(summary).strip()
    body = escape_html(raw)
    budget = max(limit - len(footer) - 10, 0)
    # escaping may grow the text, so trim the raw summary until the escaped form fits
    while len(body) + len(footer) > limit and budget > 0:
        body = escape_html(truncate(raw, budget))
        budget -= 10

    return ChannelMessage(text=body + footer, image_url=valid_image)
