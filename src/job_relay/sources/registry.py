from __future__ import annotations

import logging
import re

from job_relay.config import Settings
from job_relay.prompts import AIPromptConfig
from job_relay.sources.base import SourcePlugin
from job_relay.sources.eoi import EOISource
from job_relay.sources.feed import FeedSource, FeedSourceConfig
from job_relay.sources.reliefweb import process_reliefweb, reliefweb_id
from job_relay.sources.scrape import DetailPageConfig, ListingSelectors, ScrapeSource, ScrapeSourceConfig
from job_relay.sources.ykbank import process_ykbank, ykbank_id

logger = logging.getLogger(__name__)

DEFAULT_SOURCE = "yemenhr"


def _prefixed_id(prefix: str, pattern: str):
    compiled = re.compile(pattern)

    def extract(link: str, _title: str | None = None) -> str:
        match = compiled.search(link)
        return f"{prefix}-{match.group(1)}" if match else f"{prefix}-{link}"

    return extract


def yemenhr_id(link: str) -> str:
    match = re.search(r"/jobs/([^/?#]+)", link)
    return match.group(1) if match else link


YEMENHR = FeedSourceConfig(
    name="yemenhr",
    feed_url=lambda settings: settings.yemenhr_feed_url,
    base_url="https://yemenhr.com",
    id_extractor=yemenhr_id,
    feed_url_env="YEMENHR_FEED_URL",
)

RELIEFWEB = FeedSourceConfig(
    name="reliefweb",
    feed_url=lambda settings: settings.reliefweb_feed_url,
    base_url="https://reliefweb.int",
    id_extractor=reliefweb_id,
    processor=process_reliefweb,
    feed_url_env="RELIEFWEB_FEED_URL",
)

YKBANK = FeedSourceConfig(
    name="ykbank",
    feed_url=lambda settings: settings.ykbank_feed_url,
    base_url="https://yk-bank.zohorecruit.com",
    id_extractor=ykbank_id,
    processor=process_ykbank,
    feed_url_env="YKBANK_FEED_URL",
)

KURAIMI = ScrapeSourceConfig(
    name="kuraimi",
    listing_url="https://jobs.kuraimibank.com/vacancies",
    base_url="https://jobs.kuraimibank.com",
    selectors=ListingSelectors(
        container=".single-job-items",
        title=".job-tittle h4",
        link=".job-tittle a",
    ),
    id_extractor=_prefixed_id("kuraimi", r"/job/(\d+)"),
    default_employer="بنك الكريمي",
    detail=DetailPageConfig(description_selector=".job-post-details"),
)

QTB = ScrapeSourceConfig(
    name="qtb",
    listing_url="https://jobs.qtbbank.com",
    base_url="https://jobs.qtbbank.com",
    selectors=ListingSelectors(
        container=".col-12.col-md-6.col-lg-4.p-3",
        title="h4.font-3",
        link='a[href*="detals_job"]',
        location="h4.font-3:nth-of-type(2)",
        image="img",
    ),
    id_extractor=_prefixed_id("qtb", r"id_job=(\d+)"),
    default_employer="بنك القطيبي الإسلامي",
    detail=DetailPageConfig(
        description_selector=".container",
        cleanup_selectors=("nav", "footer", "script", "style"),
    ),
)

YLDF = ScrapeSourceConfig(
    name="yldf",
    listing_url="https://erp.yldf.org/jobs",
    base_url="https://erp.yldf.org",
    selectors=ListingSelectors(
        container='[name="card"]',
        title="h4.jobs-page",
        link='[name="card"]',
        link_attr="id",
        employer=".font-weight-bold",
        location=".text-14 > div.mt-3:first-child",
        deadline=".job-card-footer .col-6:last-child b",
    ),
    id_extractor=_prefixed_id("yldf", r"jobs/[^/]+/(.+)"),
    default_employer="Youth Leadership Development Foundation",
    detail=DetailPageConfig(description_selector=".ql-editor.read-mode"),
)

SOURCES: dict[str, SourcePlugin] = {
    "yemenhr": FeedSource(YEMENHR),
    "eoi": EOISource(),
    "reliefweb": FeedSource(RELIEFWEB),
    "ykbank": FeedSource(YKBANK),
    "kuraimi": ScrapeSource(KURAIMI),
    "qtb": ScrapeSource(QTB),
    "yldf": ScrapeSource(YLDF),
}

SOURCE_HASHTAGS: dict[str, str] = {
    "yemenhr": "YemenHR",
    "eoi": "EOI",
    "reliefweb": "ReliefWeb",
    "ykbank": "YKBank",
    "kuraimi": "بنك_الكريمي",
    "qtb": "بنك_القطيبي",
    "yldf": "YLDF",
}

# Only sources that publish real contact data get a how-to-apply section from the model.
PROMPT_DEFAULTS: dict[str, AIPromptConfig] = {
    "yemenhr": AIPromptConfig(
        source_hint=(
            "Yemen HR job board. Text may mix Arabic and English. "
            "Location and dates are already extracted; focus on duties and requirements."
        ),
    ),
    "eoi": AIPromptConfig(
        include_how_to_apply=True,
        source_hint=(
            "EOI Yemen job board. Descriptions are usually Arabic and often copied from Word documents. "
            "Application e-mails, forms and WhatsApp numbers are provided separately."
        ),
    ),
    "reliefweb": AIPromptConfig(
        include_how_to_apply=True,
        source_hint=(
            "ReliefWeb humanitarian jobs. English descriptions from NGOs and UN agencies; "
            "keep organisation acronyms in Latin letters."
        ),
    ),
    "ykbank": AIPromptConfig(
        source_hint="Yemen Kuwait Bank careers page. Banking roles; applications go through the careers portal.",
        apply_fallback="قدّم عبر بوابة التوظيف في رابط الوظيفة أدناه",
    ),
    "kuraimi": AIPromptConfig(source_hint="Kuraimi Islamic Microfinance Bank vacancies, usually in Arabic."),
    "qtb": AIPromptConfig(source_hint="Al-Qutaibi Islamic Bank vacancies, usually in Arabic."),
    "yldf": AIPromptConfig(
        source_hint="Youth Leadership Development Foundation (Yemeni NGO) vacancies, usually in English."
    ),
}


def get_source(name: str) -> SourcePlugin | None:
    return SOURCES.get(name)


def source_hashtag(name: str) -> str:
    return SOURCE_HASHTAGS.get(name, name)


def enabled_sources(settings: Settings) -> list[SourcePlugin]:
    names = settings.enabled_source_names or list(SOURCES)
    plugins: list[SourcePlugin] = []
    for name in names:
        plugin = SOURCES.get(name)
        if plugin is None:
            logger.warning("ignoring unknown source in ENABLED_SOURCES: %s", name)
            continue
        plugins.append(plugin)
    return plugins
