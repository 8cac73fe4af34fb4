from __future__ import annotations

import html
import re

from bs4 import BeautifulSoup

_BLOCK_TAGS = ("p", "div", "li", "tr", "h1", "h2", "h3", "h4", "h5", "h6", "section", "article")


def decode_entities(value: str) -> str:
    # feeds double-escape fairly often
    decoded = html.unescape(value or "")
    if "&" in decoded and ";" in decoded:
        decoded = html.unescape(decoded)
    return decoded


def clean_whitespace(value: str) -> str:
    return re.sub(r"\s+", " ", value or "").strip()


def clean_lines(value: str) -> str:
    lines = [clean_whitespace(line) for line in (value or "").splitlines()]
    collapsed: list[str] = []
    for line in lines:
        if not line and (not collapsed or not collapsed[-1]):
            continue
        collapsed.append(line)
    return "\n".join(collapsed).strip()


def html_to_text(markup: str) -> str:
    """Render an HTML fragment as plain text, keeping block boundaries as newlines."""
    if not markup:
        return ""
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for tag in soup.find_all(_BLOCK_TAGS):
        tag.insert_before("\n")
        tag.insert_after("\n")
    for item in soup.find_all("li"):
        item.insert(0, "• ")
    return clean_lines(decode_entities(soup.get_text()))


def strip_markdown(value: str) -> str:
    text = re.sub(r"\*\*(.+?)\*\*", r"\1", value)
    text = text.replace("**", "")
    text = re.sub(r"\[([^\]]+)\]\((https?://[^)\s]+)\)", r"\1: \2", text)
    text = re.sub(r"(?<![\w/])_([^_\n]+)_(?![\w/])", r"\1", text)
    text = re.sub(r"^#{1,6}\s+", "", text, flags=re.MULTILINE)
    return text


def truncate(value: str, limit: int, suffix: str = "...") -> str:
    if len(value) <= limit:
        return value
    return value[: max(limit - len(suffix), 0)].rstrip() + suffix
