import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from job_relay.config import Settings
from job_relay.sources.base import SourceError
from job_relay.sources.feed import UNKNOWN_EMPLOYER, FeedSource, default_feed_processor, parse_feed
from job_relay.sources.registry import RELIEFWEB, YEMENHR, yemenhr_id
from job_relay.sources.reliefweb import reliefweb_id

ATOM_FEED = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Yemen HR Jobs</title>
  <id>https://yemenhr.com/jobs</id>
  <updated>2026-03-03T08:00:00Z</updated>
  <entry>
    <title>Finance Officer</title>
    <link rel="alternate" href="https://yemenhr.com/jobs/finance-officer-123"/>
    <link rel="enclosure" type="image/png" href="/storage/logos/care.png"/>
    <id>https://yemenhr.com/jobs/finance-officer-123</id>
    <author><name>CARE International</name></author>
    <published>2026-03-02T08:00:00Z</published>
    <updated>2026-03-03T08:00:00Z</updated>
    <content type="html">&lt;p&gt;Back to Jobs&lt;/p&gt;&lt;h2&gt;Job Description&lt;/h2&gt;&lt;p&gt;Location: Aden&lt;/p&gt;&lt;p&gt;Deadline: 15-03-2026&lt;/p&gt;&lt;p&gt;Prepare monthly financial reports.&lt;/p&gt;</content>
  </entry>
  <entry>
    <title>Nurse</title>
    <link href="https://yemenhr.com/jobs/nurse-9"/>
    <id>https://yemenhr.com/jobs/nurse-9</id>
    <updated>2026-03-01T10:00:00Z</updated>
    <summary>Nursing role in Sanaa</summary>
  </entry>
</feed>
"""

RSS_FEED = """<?xml version="1.0" encoding="utf-8"?>
<rss version="2.0">
  <channel>
    <title>ReliefWeb - Jobs</title>
    <link>https://reliefweb.int/jobs</link>
    <item>
      <title>Health Coordinator</title>
      <link>https://reliefweb.int/job/4123456/health-coordinator</link>
      <guid>https://reliefweb.int/job/4123456</guid>
      <pubDate>Mon, 02 Mar 2026 09:30:00 +0000</pubDate>
      <category>Health</category>
      <description><![CDATA[<div class="tag source">Organization: Médecins Sans Frontières</div><div class="tag country">Country: Yemen</div><div class="date closing">Closing date: 20 Mar 2026</div><p>Lead the health programme in Aden.</p><h2>How to apply</h2><p>Apply via <a href="https://msf.org/apply">the portal</a> or jobs@msf.org</p>]]></description>
    </item>
  </channel>
</rss>
"""

FETCHED_AT = datetime(2026, 3, 5, tzinfo=timezone.utc)


def test_parse_atom_entries() -> None:
    posts = parse_feed(
        ATOM_FEED,
        source="yemenhr",
        base_url="https://yemenhr.com",
        id_extractor=yemenhr_id,
        fetched_at=FETCHED_AT,
    )

    assert [post.source_local_id for post in posts] == ["finance-officer-123", "nurse-9"]
    finance, nurse = posts
    assert finance.employer == "CARE International"
    assert finance.image_url == "https://yemenhr.com/storage/logos/care.png"
    assert finance.published_at == datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)
    assert "Prepare monthly financial reports." in finance.raw_body

    assert nurse.employer == UNKNOWN_EMPLOYER
    assert nurse.image_url is None
    assert nurse.published_at == datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
    assert nurse.raw_body == "Nursing role in Sanaa"


def test_parse_rss_items() -> None:
    posts = parse_feed(
        RSS_FEED,
        source="reliefweb",
        base_url="https://reliefweb.int",
        id_extractor=reliefweb_id,
        fetched_at=FETCHED_AT,
    )

    assert len(posts) == 1
    post = posts[0]
    assert post.source_local_id == "rw-4123456"
    assert post.url == "https://reliefweb.int/job/4123456/health-coordinator"
    assert post.categories == ("Health",)
    assert post.published_at == datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)
    assert 'class="tag source"' in post.raw_body


def test_unparseable_document_raises_source_error() -> None:
    with pytest.raises(SourceError):
        parse_feed(
            "<html><body>Service unavailable",
            source="yemenhr",
            base_url="https://yemenhr.com",
            id_extractor=yemenhr_id,
        )


def test_default_processor_cleans_board_markup() -> None:
    raw = parse_feed(
        ATOM_FEED,
        source="yemenhr",
        base_url="https://yemenhr.com",
        id_extractor=yemenhr_id,
        fetched_at=FETCHED_AT,
    )[0]

    posting = default_feed_processor(raw)

    assert posting.body_text.startswith("Job Description")
    assert "Back to Jobs" not in posting.body_text
    assert posting.location == "Aden"
    assert posting.deadline_label == "15-03-2026"
    assert posting.posted_label == "02-03-2026"
    assert posting.image_url == raw.image_url


def test_feed_source_fetches_and_processes() -> None:
    requested: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        return httpx.Response(200, text=RSS_FEED)

    settings = Settings(reliefweb_feed_url="https://reliefweb.int/jobs/rss.xml")
    source = FeedSource(RELIEFWEB)

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            posts = await source.fetch(client, settings)
            return posts, await source.process(posts[0], client, settings)

    posts, posting = asyncio.run(scenario())

    assert requested == ["https://reliefweb.int/jobs/rss.xml"]
    assert len(posts) == 1
    assert posting.employer == "Médecins Sans Frontières"
    assert posting.category == "صحة"


def test_feed_source_without_url_is_an_error() -> None:
    source = FeedSource(YEMENHR)

    async def scenario():
        async with httpx.AsyncClient() as client:
            await source.fetch(client, Settings())

    with pytest.raises(SourceError, match="YEMENHR_FEED_URL"):
        asyncio.run(scenario())
