from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

import httpx

from job_relay.config import Settings
from job_relay.formatting import escape_html, format_channel_message
from job_relay.inference import Summarizer, WorkersAIClient
from job_relay.ledger import RunLedger
from job_relay.models import RawPosting, RunSummary, SourceResult, SourceStats, TriggerKind
from job_relay.prompts import PromptConfigResolver
from job_relay.sources.base import SourcePlugin
from job_relay.sources.registry import PROMPT_DEFAULTS, enabled_sources, get_source, source_hashtag
from job_relay.sources.transport import build_client
from job_relay.storage import IdempotencyStore
from job_relay.telegram import TelegramChannel

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class RunCounters:
    fetched: int = 0
    processed: int = 0
    posted: int = 0
    skipped: int = 0
    failed: int = 0
    sources: dict[str, SourceStats] = field(default_factory=dict)

    def stats_for(self, source: str) -> SourceStats:
        return self.sources.setdefault(source, SourceStats())


async def fetch_all(
    plugins: Sequence[SourcePlugin],
    client: httpx.AsyncClient,
    settings: Settings,
) -> list[SourceResult]:
    """Fetch every source concurrently, collecting failures instead of short-circuiting."""
    outcomes = await asyncio.gather(
        *(plugin.fetch(client, settings) for plugin in plugins),
        return_exceptions=True,
    )
    results: list[SourceResult] = []
    for plugin, outcome in zip(plugins, outcomes):
        if isinstance(outcome, Exception):
            logger.warning("source %s failed to fetch: %s", plugin.name, outcome)
            error = str(outcome) or type(outcome).__name__
            results.append(SourceResult(source=plugin.name, posts=[], error=error))
        elif isinstance(outcome, BaseException):
            raise outcome
        else:
            logger.info("source %s returned %d postings", plugin.name, len(outcome))
            results.append(SourceResult(source=plugin.name, posts=list(outcome)))
    return results


def select_postings(results: Sequence[SourceResult], limit: int) -> list[RawPosting]:
    """Oldest first across all sources, capped at ``limit``."""
    merged = [post for result in results for post in result.posts]
    merged.sort(key=lambda post: post.published_at)
    return merged[:limit]


def build_progress_message(
    counters: RunCounters,
    *,
    run_id: int | None,
    trigger: TriggerKind,
    finished: bool,
) -> str:
    state = "completed" if finished else "in progress"
    label = f"Run #{run_id}" if run_id is not None else "Run"
    lines = [f"📊 <b>{label}</b> ({trigger}) {state}", ""]
    for name, stats in counters.sources.items():
        if stats.error:
            lines.append(f"❌ {name}: {escape_html(stats.error)}")
            continue
        marker = "⚠️" if stats.failed else "✅"
        lines.append(
            f"{marker} {name}: {stats.fetched} fetched, {stats.posted} posted, "
            f"{stats.skipped} skipped, {stats.failed} failed"
        )
    lines.append("")
    lines.append(
        f"Total: {counters.fetched} fetched, {counters.posted} posted, "
        f"{counters.skipped} skipped, {counters.failed} failed"
    )
    return "\n".join(lines)


class RunProgress:
    """Single admin message that is created on first activity and edited in place."""

    def __init__(
        self,
        channel: TelegramChannel,
        admin_chat_id: str | None,
        *,
        run_id: int | None,
        trigger: TriggerKind,
    ):
        self.channel = channel
        self.admin_chat_id = admin_chat_id
        self.run_id = run_id
        self.trigger = trigger
        self.message_id: int | None = None

    async def update(self, counters: RunCounters, *, finished: bool = False) -> None:
        if not self.admin_chat_id:
            return
        text = build_progress_message(counters, run_id=self.run_id, trigger=self.trigger, finished=finished)
        if self.message_id is None:
            self.message_id = await self.channel.send_with_id(self.admin_chat_id, text)
            return
        if not await self.channel.edit_message(self.admin_chat_id, self.message_id, text):
            logger.warning("could not update progress message %s", self.message_id)

    async def finish(self, counters: RunCounters) -> None:
        if self.message_id is None and not (counters.posted or counters.failed):
            return
        await self.update(counters, finished=True)


def _record_delivery(store: IdempotencyStore, raw: RawPosting) -> None:
    try:
        store.mark_posted(raw.source_local_id, raw.title, raw.employer)
        store.mark_fuzzy(raw.title, raw.employer)
    except sqlite3.Error:
        logger.error(
            "delivered %s but could not record it; it may be posted again",
            raw.source_local_id,
            exc_info=True,
        )


async def _deliver_posting(
    raw: RawPosting,
    plugin: SourcePlugin,
    settings: Settings,
    *,
    run_id: int | None,
    store: IdempotencyStore,
    ledger: RunLedger,
    summarizer: Summarizer,
    channel: TelegramChannel,
    prompts: PromptConfigResolver,
    template: str,
    client: httpx.AsyncClient,
) -> bool:
    posting = await plugin.process(raw, client, settings)
    ledger.save_posting_on_fetch(raw, posting, run_id)

    summary = await summarizer.summarize(posting, prompts.resolve(raw.source), template=template)
    message = format_channel_message(
        summary.summary,
        posting.url,
        posting.image_url,
        source_tag=source_hashtag(raw.source),
        category=summary.category,
        footer_url=settings.channel_footer_url,
    )
    result = await channel.deliver(settings.telegram_chat_id, message)
    if not result.success:
        logger.warning("delivery failed for %s; will retry next run", raw.source_local_id)
        ledger.update_posting_status(raw.source_local_id, "failed")
        return False

    _record_delivery(store, raw)
    ledger.update_posting_status(
        raw.source_local_id,
        "posted",
        summary=summary.summary,
        category=summary.category,
        message_id=result.message_id,
    )
    logger.info("posted %s (%s)", raw.source_local_id, raw.title)
    return True


async def run_pipeline(
    settings: Settings,
    *,
    trigger: TriggerKind,
    sources: Sequence[SourcePlugin],
    store: IdempotencyStore,
    ledger: RunLedger,
    summarizer: Summarizer,
    channel: TelegramChannel,
    prompts: PromptConfigResolver,
    client: httpx.AsyncClient,
    sleep: Sleep = asyncio.sleep,
) -> RunSummary:
    run_id = ledger.create_run(trigger, settings.environment)
    counters = RunCounters()
    progress = RunProgress(channel, settings.admin_chat_id, run_id=run_id, trigger=trigger)
    plugins = {plugin.name: plugin for plugin in sources}

    try:
        results = await fetch_all(list(sources), client, settings)
        for result in results:
            stats = counters.stats_for(result.source)
            stats.fetched = len(result.posts)
            stats.error = result.error
            counters.fetched += len(result.posts)

        selected = select_postings(results, settings.max_postings_per_run)
        template = prompts.template()
        delay_pending = False

        for raw in selected:
            stats = counters.stats_for(raw.source)

            if store.is_posted(raw.source_local_id):
                counters.skipped += 1
                stats.skipped += 1
                ledger.save_skipped_posting(raw, "skipped", run_id)
                continue

            if store.is_duplicate(raw.title, raw.employer):
                logger.info("cross-source duplicate %s: %s", raw.source_local_id, raw.title)
                counters.skipped += 1
                stats.skipped += 1
                try:
                    store.mark_posted(raw.source_local_id, raw.title, raw.employer)
                except sqlite3.Error:
                    logger.warning("could not record duplicate %s", raw.source_local_id, exc_info=True)
                ledger.save_skipped_posting(raw, "duplicate", run_id)
                continue

            plugin = plugins.get(raw.source) or get_source(raw.source)
            if plugin is None:
                logger.error("no source plugin registered for %s", raw.source)
                counters.failed += 1
                stats.failed += 1
                continue

            if delay_pending and settings.delivery_delay_seconds > 0:
                await sleep(settings.delivery_delay_seconds)
            delay_pending = False

            counters.processed += 1
            try:
                delivered = await _deliver_posting(
                    raw,
                    plugin,
                    settings,
                    run_id=run_id,
                    store=store,
                    ledger=ledger,
                    summarizer=summarizer,
                    channel=channel,
                    prompts=prompts,
                    template=template,
                    client=client,
                )
            except Exception:
                logger.exception("failed to process %s", raw.source_local_id)
                ledger.update_posting_status(raw.source_local_id, "failed")
                delivered = False

            if delivered:
                counters.posted += 1
                stats.posted += 1
                delay_pending = True
            else:
                counters.failed += 1
                stats.failed += 1
            await progress.update(counters)

        ledger.complete_run(
            run_id,
            fetched=counters.fetched,
            posted=counters.posted,
            skipped=counters.skipped,
            failed=counters.failed,
            source_stats=counters.sources,
        )
        await progress.finish(counters)
    except Exception as exc:
        logger.exception("pipeline run %s failed", run_id)
        ledger.complete_run(
            run_id,
            fetched=counters.fetched,
            posted=counters.posted,
            skipped=counters.skipped,
            failed=counters.failed,
            source_stats=counters.sources,
            error=str(exc) or type(exc).__name__,
        )
        await channel.send_alert(
            settings.admin_chat_id,
            f"Pipeline run {run_id if run_id is not None else '?'} failed: {escape_html(str(exc))}",
        )
        raise

    logger.info(
        "run %s finished: fetched=%d processed=%d posted=%d skipped=%d failed=%d",
        run_id,
        counters.fetched,
        counters.processed,
        counters.posted,
        counters.skipped,
        counters.failed,
    )
    return RunSummary(
        run_id=run_id,
        trigger=trigger,
        fetched=counters.fetched,
        processed=counters.processed,
        posted=counters.posted,
        skipped=counters.skipped,
        failed=counters.failed,
        source_stats=counters.sources,
    )


async def trigger_run(settings: Settings, trigger: TriggerKind = "manual") -> RunSummary:
    async with build_client(settings) as client:
        with IdempotencyStore(settings.state_db_path) as store, RunLedger(
            settings.ledger_db_path, archive_postings=settings.archive_postings
        ) as ledger:
            generator = WorkersAIClient(
                client,
                settings.cf_account_id,
                settings.cf_api_token,
                timeout_seconds=settings.ai_timeout_seconds,
            )
            return await run_pipeline(
                settings,
                trigger=trigger,
                sources=enabled_sources(settings),
                store=store,
                ledger=ledger,
                summarizer=Summarizer(
                    generator,
                    model=settings.ai_model,
                    backoff_seconds=settings.ai_backoff_seconds,
                ),
                channel=TelegramChannel(client, settings.telegram_bot_token),
                prompts=PromptConfigResolver(PROMPT_DEFAULTS, store),
                client=client,
            )
