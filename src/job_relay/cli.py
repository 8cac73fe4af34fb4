from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

from job_relay.config import (
    RUN_REQUIRED_ENVS,
    assert_required_envs,
    load_settings,
    mask_secret,
    missing_envs,
)
from job_relay.ledger import RunLedger
from job_relay.logging_setup import configure_logging
from job_relay.pipeline import trigger_run
from job_relay.prompts import OVERRIDE_FIELDS, PromptConfigResolver
from job_relay.sources.registry import PROMPT_DEFAULTS, SOURCES, enabled_sources
from job_relay.storage import IdempotencyStore

TRIGGERS = ("scheduled", "manual", "webhook")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="job-relay")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ...)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Fetch, deduplicate, summarize and post new jobs")
    run_parser.add_argument("--trigger", choices=TRIGGERS, default="manual")

    subparsers.add_parser("healthcheck", help="Validate config and local runtime readiness")

    runs_parser = subparsers.add_parser("runs", help="Show recent pipeline runs")
    runs_parser.add_argument("--limit", type=int, default=10)

    postings_parser = subparsers.add_parser("postings", help="Show archived postings")
    postings_parser.add_argument("--status", default=None)
    postings_parser.add_argument("--source", default=None)
    postings_parser.add_argument("--search", default=None)
    postings_parser.add_argument("--limit", type=int, default=20)

    clear_parser = subparsers.add_parser(
        "clear-posted",
        help="Forget a delivery record so the posting can be sent again",
    )
    clear_parser.add_argument("posting_id")

    prompt_parser = subparsers.add_parser("prompt", help="Inspect or override per-source AI prompt settings")
    prompt_sub = prompt_parser.add_subparsers(dest="prompt_command", required=True)

    show_parser = prompt_sub.add_parser("show", help="Show effective prompt settings")
    show_parser.add_argument("source", nargs="?", default=None)

    set_parser = prompt_sub.add_parser("set", help="Override one prompt setting for a source")
    set_parser.add_argument("source")
    set_parser.add_argument("field", choices=sorted(OVERRIDE_FIELDS))
    set_parser.add_argument("value")

    reset_parser = prompt_sub.add_parser("reset", help="Drop overrides for one source or all sources")
    reset_parser.add_argument("source", nargs="?", default=None)

    template_parser = prompt_sub.add_parser("template", help="Show, replace or reset the prompt template")
    template_group = template_parser.add_mutually_exclusive_group()
    template_group.add_argument("--file", type=Path, default=None, help="Load a new template from a file")
    template_group.add_argument("--reset", action="store_true", help="Restore the built-in template")

    return parser


def _cmd_run(args: argparse.Namespace) -> int:
    settings = load_settings()
    assert_required_envs(RUN_REQUIRED_ENVS)
    try:
        result = asyncio.run(trigger_run(settings, args.trigger))
    except Exception as exc:
        print(f"run failed: {exc}")
        return 1

    print(
        "run summary:",
        f"run_id={result.run_id}",
        f"fetched={result.fetched}",
        f"processed={result.processed}",
        f"posted={result.posted}",
        f"skipped={result.skipped}",
        f"failed={result.failed}",
    )
    for name, stats in result.source_stats.items():
        if stats.error:
            print(f"  {name}: error: {stats.error}")

    failed_sources = sum(1 for stats in result.source_stats.values() if stats.error)
    if result.source_stats and failed_sources == len(result.source_stats):
        return 1
    return 0


def _cmd_healthcheck() -> int:
    settings = load_settings()
    missing = missing_envs(RUN_REQUIRED_ENVS)
    if missing:
        print("missing required env vars:", ", ".join(missing))
        return 1

    try:
        with IdempotencyStore(settings.state_db_path):
            pass
        with RunLedger(settings.ledger_db_path):
            pass
    except Exception as exc:
        print(f"state db check failed: {exc}")
        return 1

    print(f"telegram bot token: {mask_secret(settings.telegram_bot_token)}")
    print(f"inference token: {mask_secret(settings.cf_api_token)} (model {settings.ai_model})")
    print("enabled sources:", ", ".join(plugin.name for plugin in enabled_sources(settings)))
    if not settings.admin_chat_id:
        print("ADMIN_CHAT_ID not set; run progress and alerts are disabled")
    print("healthcheck passed")
    return 0


def _cmd_runs(args: argparse.Namespace) -> int:
    settings = load_settings()
    with RunLedger(settings.ledger_db_path) as ledger:
        runs = ledger.list_runs(limit=args.limit)
    if not runs:
        print("no runs recorded")
        return 0
    for run in runs:
        line = (
            f"#{run['id']} {run['started_at']} {run['trigger_type']} {run['status']} "
            f"fetched={run['jobs_fetched']} posted={run['jobs_posted']} "
            f"skipped={run['jobs_skipped']} failed={run['jobs_failed']}"
        )
        if run["error"]:
            line += f" error={run['error']}"
        print(line)
    return 0


def _cmd_postings(args: argparse.Namespace) -> int:
    settings = load_settings()
    with RunLedger(settings.ledger_db_path) as ledger:
        postings = ledger.list_postings(
            source=args.source,
            status=args.status,
            search=args.search,
            limit=args.limit,
        )
        counts = ledger.count_by_status()
    for posting in postings:
        print(f"[{posting['status']}] {posting['id']} {posting['title']} - {posting['company']}")
    print("totals:", ", ".join(f"{status}={count}" for status, count in sorted(counts.items())) or "none")
    return 0


def _cmd_clear_posted(args: argparse.Namespace) -> int:
    settings = load_settings()
    with IdempotencyStore(settings.state_db_path) as store:
        cleared = store.clear_posted(args.posting_id)
    if not cleared:
        print(f"no delivery record for {args.posting_id}")
        return 1
    print(f"cleared delivery record for {args.posting_id}")
    return 0


def _print_prompt_config(resolver: PromptConfigResolver, source: str, overridden: bool) -> None:
    config = resolver.resolve(source)
    marker = " (overridden)" if overridden else ""
    print(f"{source}{marker}:")
    print(f"  howtoapply: {'on' if config.include_how_to_apply else 'off'}")
    print(f"  hint: {config.source_hint or '-'}")
    print(f"  apply: {config.apply_fallback or '-'}")


def _cmd_prompt(args: argparse.Namespace) -> int:
    settings = load_settings()
    with IdempotencyStore(settings.state_db_path) as store:
        resolver = PromptConfigResolver(PROMPT_DEFAULTS, store)

        if args.prompt_command == "show":
            overrides = resolver.overrides()
            names = [args.source] if args.source else list(SOURCES)
            for name in names:
                _print_prompt_config(resolver, name, name in overrides)
            return 0

        if args.prompt_command == "set":
            if args.source not in SOURCES:
                raise ValueError(f"Unknown source: {args.source}")
            resolver.set_override(args.source, args.field, args.value)
            _print_prompt_config(resolver, args.source, True)
            return 0

        if args.prompt_command == "reset":
            cleared = resolver.clear_override(args.source)
            target = args.source or "all sources"
            print(f"reset prompt overrides for {target}" if cleared else f"no overrides for {target}")
            return 0

        if args.prompt_command == "template":
            if args.reset:
                resolver.reset_template()
                print("prompt template reset to default")
            elif args.file is not None:
                resolver.set_template(args.file.read_text(encoding="utf-8"))
                print(f"prompt template loaded from {args.file}")
            else:
                print(resolver.template())
            return 0

    return 1


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level.upper())

    try:
        if args.command == "run":
            return _cmd_run(args)
        if args.command == "healthcheck":
            return _cmd_healthcheck()
        if args.command == "runs":
            return _cmd_runs(args)
        if args.command == "postings":
            return _cmd_postings(args)
        if args.command == "clear-posted":
            return _cmd_clear_posted(args)
        if args.command == "prompt":
            return _cmd_prompt(args)
    except ValueError as exc:
        print(exc)
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
