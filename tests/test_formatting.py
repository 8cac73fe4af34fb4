from datetime import datetime, timezone

from job_relay.formatting import (
    DIVIDER,
    MAX_CAPTION_LENGTH,
    MAX_TEXT_LENGTH,
    NO_DESCRIPTION,
    UNKNOWN,
    build_job_header,
    build_no_ai_fallback,
    contact_line,
    format_arabic_date,
    format_channel_message,
    format_feed_date,
    hashtag,
)
from job_relay.models import EnrichedPosting


def _posting(**overrides) -> EnrichedPosting:
    values = dict(
        source="eoi",
        title="Project Officer",
        employer="CARE",
        url="https://eoi-ye.com/jobs/1/",
        body_text="Manage the cash programme in Taiz.",
        location="Taiz",
        posted_label="01-03-2026",
        deadline_label="15-03-2026 23:59",
    )
    values.update(overrides)
    return EnrichedPosting(**values)


def test_format_arabic_date_variants() -> None:
    assert format_arabic_date("01-03-2026") == "01 مارس 2026"
    assert format_arabic_date("15-03-2026 23:59") == "15 مارس 2026"
    assert format_arabic_date("5 Jan, 26") == "5 يناير 2026"
    assert format_arabic_date("Tue, 03 Mar 2026 10:00:00 +0000") == "03 مارس 2026"
    assert format_arabic_date("2026-12-31T08:00:00Z") == "31 ديسمبر 2026"
    assert format_arabic_date(None) == UNKNOWN
    assert format_arabic_date("soon") == "soon"


def test_format_feed_date() -> None:
    assert format_feed_date(datetime(2026, 3, 7, tzinfo=timezone.utc)) == "07-03-2026"


def test_header_fills_unknown_fields() -> None:
    header = build_job_header(_posting(location=None, deadline_label=None))
    assert "📋 المسمى الوظيفي:\nProject Officer" in header
    assert f"📍 الموقع:\n{UNKNOWN}" in header
    assert f"⏰ آخر موعد للتقديم:\n{UNKNOWN}" in header
    assert header.endswith(DIVIDER)


def test_contact_line_types() -> None:
    assert contact_line("jobs@care.org") == "📩 إيميل: jobs@care.org"
    assert contact_line("+967777123456") == "📱 واتساب/هاتف: +967777123456"
    assert contact_line("https://forms.gle/x") == "🔗 رابط: https://forms.gle/x"


def test_no_ai_fallback_truncates_and_lists_contacts() -> None:
    posting = _posting(
        body_text="x" * 900,
        how_to_apply="y" * 300,
        application_contacts=("jobs@care.org",),
    )
    fallback = build_no_ai_fallback(posting)

    assert ("x" * 597 + "...") in fallback
    assert "x" * 598 not in fallback
    assert ("y" * 197 + "...") in fallback
    assert "📧 كيفية التقديم:" in fallback
    assert "📩 إيميل: jobs@care.org" in fallback


def test_no_ai_fallback_without_description() -> None:
    fallback = build_no_ai_fallback(_posting(body_text=NO_DESCRIPTION))
    assert "الرجاء زيارة رابط الوظيفة" in fallback
    assert "كيفية التقديم" not in fallback


def test_hashtag() -> None:
    assert hashtag("محاسبة ومالية") == "#محاسبة_ومالية"
    assert hashtag("Banking") == "#Banking"
    assert hashtag("  ") is None
    assert hashtag(None) is None


def test_channel_message_escapes_and_appends_footer() -> None:
    message = format_channel_message(
        "**R&D** <lead>",
        "https://example.org/job?a=1&b=2",
        source_tag="EOI",
        category="هندسة",
        footer_url="https://t.me/yemen_jobs",
    )

    assert message.image_url is None
    assert not message.has_image
    assert message.text.startswith("R&amp;D &lt;lead&gt;")
    assert "https://example.org/job?a=1&amp;b=2" in message.text
    assert "#EOI #هندسة" in message.text
    assert message.text.endswith("https://t.me/yemen_jobs")


def test_caption_is_capped_when_image_present() -> None:
    summary = "وصف " * 600
    message = format_channel_message(summary, "https://eoi-ye.com/jobs/1/", "https://eoi-ye.com/logo.png")

    assert message.has_image
    assert len(message.text) <= MAX_CAPTION_LENGTH
    assert "..." in message.text
    assert message.text.rstrip().endswith("https://eoi-ye.com/jobs/1/")


def test_text_message_uses_larger_limit_and_ignores_bad_image() -> None:
    summary = "a" * 3000
    message = format_channel_message(summary, "https://eoi-ye.com/jobs/1/", "/relative/logo.png")

    assert message.image_url is None
    assert len(message.text) <= MAX_TEXT_LENGTH
    assert "a" * 3000 in message.text
