from __future__ import annotations

import re
from dataclasses import dataclass

from job_relay.formatting import NO_DESCRIPTION
from job_relay.text import html_to_text

_TRAILING_SECTIONS = tuple(
    re.compile(pattern, re.IGNORECASE | re.DOTALL)
    for pattern in (
        r"Important Notes.*$",
        r"Time Remaining.*$",
        r"Save & Share.*$",
        r"Save &amp; Share.*$",
        r"Sign in to track your application.*$",
        r"Track Your Application.*$",
    )
)

_LOCATION_PATTERNS = (
    re.compile(r"Location[:\s]+([^\n]+)", re.IGNORECASE),
    re.compile(r"الموقع[:\s]+([^\n]+)"),
    re.compile(r"Governorate[:\s]+([^\n]+)", re.IGNORECASE),
    re.compile(r"City[:\s]+([^\n]+)", re.IGNORECASE),
)
_POSTED_PATTERNS = (
    re.compile(r"Posted[:\s]+([^\n]+)", re.IGNORECASE),
    re.compile(r"تاريخ النشر[:\s]+([^\n]+)"),
    re.compile(r"Publication Date[:\s]+([^\n]+)", re.IGNORECASE),
    re.compile(r"Date Posted[:\s]+([^\n]+)", re.IGNORECASE),
)
_DEADLINE_PATTERNS = (
    re.compile(r"Deadline[:\s]+([^\n]+)", re.IGNORECASE),
    re.compile(r"آخر موعد[:\s]+([^\n]+)"),
    re.compile(r"Closing Date[:\s]+([^\n]+)", re.IGNORECASE),
    re.compile(r"Application Deadline[:\s]+([^\n]+)", re.IGNORECASE),
    re.compile(r"Last Date[:\s]+([^\n]+)", re.IGNORECASE),
)

_CONTENT_MARKERS = ("Job Description", "الوصف الوظيفي", "Vacancy id", "Job title", "Posted:", "Deadline:")
_NOISE_LINE_RE = re.compile(
    r"^(CTG Logo|Back to Jobs|New|Sign in to Track|Track Your Application|Keep track of your job)$"
)


@dataclass(frozen=True)
class CleanedDescription:
    description: str
    location: str | None = None
    posted: str | None = None
    deadline: str | None = None


def _first_match(text: str, patterns: tuple[re.Pattern[str], ...]) -> str | None:
    for pattern in patterns:
        match = pattern.search(text)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return None


def clean_job_description(markup: str) -> CleanedDescription:
    """Clean a job-board page or feed body and pull out its labelled fields.

    Content is kept from the first job marker line onwards; boards without
    markers keep the whole text.
    """
    if not markup or not markup.strip():
        return CleanedDescription(description=NO_DESCRIPTION)

    trimmed = markup
    for pattern in _TRAILING_SECTIONS:
        trimmed = pattern.sub("", trimmed)
    text = html_to_text(trimmed)

    lines = [line.strip() for line in text.splitlines()]
    kept: list[str] = []
    capturing = False
    for line in lines:
        if not line and not kept:
            continue
        if any(marker in line for marker in _CONTENT_MARKERS):
            capturing = True
        if _NOISE_LINE_RE.match(line):
            continue
        if capturing:
            kept.append(line)
    if not capturing:
        kept = [line for line in lines if line and not _NOISE_LINE_RE.match(line)]

    cleaned = "\n".join(kept)
    cleaned = re.sub(r"\|\s*\|", "", cleaned)
    cleaned = re.sub(r"^\|\s*", "", cleaned, flags=re.MULTILINE)
    cleaned = re.sub(r"\s*\|$", "", cleaned, flags=re.MULTILINE)
    cleaned = cleaned.strip()

    return CleanedDescription(
        description=cleaned or NO_DESCRIPTION,
        location=_first_match(text, _LOCATION_PATTERNS),
        posted=_first_match(text, _POSTED_PATTERNS),
        deadline=_first_match(text, _DEADLINE_PATTERNS),
    )
