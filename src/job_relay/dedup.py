from __future__ import annotations

import re

# applied after lowercasing: ASCII letters, digits and the Arabic block survive
_PUNCTUATION_RE = re.compile(r"[^a-z0-9\s\u0600-\u06FF]")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize(value: str | None) -> str:
    lowered = (value or "").lower()
    stripped = _PUNCTUATION_RE.sub("", lowered)
    return _WHITESPACE_RE.sub(" ", stripped).strip()


def fuzzy_key(title: str, employer: str | None) -> str:
    return f"{normalize(title)}:{normalize(employer)}"
