import sqlite3
from datetime import datetime, timezone

import pytest

from job_relay.ledger import RunLedger
from job_relay.models import EnrichedPosting, RawPosting, SourceStats


def _raw(local_id: str = "rw-100", source: str = "reliefweb") -> RawPosting:
    return RawPosting(
        source=source,
        source_local_id=local_id,
        title="WASH Officer",
        employer="Oxfam",
        url=f"https://reliefweb.int/job/{local_id}",
        published_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
        raw_body="<p>Water and sanitation programme</p>",
    )


def _posting(raw: RawPosting) -> EnrichedPosting:
    return EnrichedPosting(
        source=raw.source,
        title=raw.title,
        employer=raw.employer,
        url=raw.url,
        body_text="Water and sanitation programme in Aden",
        location="Aden",
        deadline_label="15 Mar 2026",
        application_contacts=("jobs@oxfam.org",),
    )


def test_run_lifecycle(tmp_path) -> None:
    with RunLedger(tmp_path / "ledger.sqlite") as ledger:
        run_id = ledger.create_run("scheduled", "production")
        assert run_id is not None
        assert ledger.get_run(run_id)["status"] == "running"

        ledger.complete_run(
            run_id,
            fetched=4,
            posted=2,
            skipped=1,
            failed=1,
            source_stats={"eoi": SourceStats(fetched=4, posted=2, skipped=1, failed=1)},
        )
        run = ledger.get_run(run_id)

    assert run["status"] == "completed"
    assert run["completed_at"]
    assert run["jobs_posted"] == 2
    assert run["source_stats"] == {"eoi": {"fetched": 4, "posted": 2, "skipped": 1, "failed": 1}}


def test_run_with_error_is_marked_failed(tmp_path) -> None:
    with RunLedger(tmp_path / "ledger.sqlite") as ledger:
        run_id = ledger.create_run("manual")
        ledger.complete_run(
            run_id,
            fetched=0,
            posted=0,
            skipped=0,
            failed=0,
            source_stats={"yemenhr": SourceStats(error="timeout")},
            error="boom",
        )
        run = ledger.get_run(run_id)

    assert run["status"] == "failed"
    assert run["error"] == "boom"
    assert run["source_stats"]["yemenhr"]["error"] == "timeout"


def test_posting_row_is_inserted_once_and_advanced(tmp_path) -> None:
    raw = _raw()
    with RunLedger(tmp_path / "ledger.sqlite") as ledger:
        first_run = ledger.create_run("scheduled")
        ledger.save_posting_on_fetch(raw, _posting(raw), first_run)
        ledger.update_posting_status(raw.source_local_id, "failed")

        second_run = ledger.create_run("scheduled")
        ledger.save_posting_on_fetch(raw, _posting(raw), second_run)
        ledger.update_posting_status(
            raw.source_local_id,
            "posted",
            summary="ملخص",
            category="مياه وصرف صحي",
            message_id=42,
        )
        row = ledger.get_posting(raw.source_local_id)

    assert row["run_id"] == first_run
    assert row["status"] == "posted"
    assert row["ai_summary"] == "ملخص"
    assert row["category"] == "مياه وصرف صحي"
    assert row["telegram_message_id"] == 42
    assert row["posted_at"]
    assert row["application_links"] == ["jobs@oxfam.org"]
    assert row["word_count"] == 6


def test_skipped_postings_keep_first_status(tmp_path) -> None:
    raw = _raw("eoi-3", source="eoi")
    with RunLedger(tmp_path / "ledger.sqlite") as ledger:
        ledger.save_skipped_posting(raw, "duplicate", None)
        ledger.save_skipped_posting(raw, "skipped", None)
        assert ledger.get_posting("eoi-3")["status"] == "duplicate"
        assert ledger.count_by_status() == {"duplicate": 1}


def test_list_postings_filters(tmp_path) -> None:
    with RunLedger(tmp_path / "ledger.sqlite") as ledger:
        for local_id, source in (("rw-1", "reliefweb"), ("rw-2", "reliefweb"), ("eoi-1", "eoi")):
            raw = _raw(local_id, source=source)
            ledger.save_posting_on_fetch(raw, _posting(raw), None)
        ledger.update_posting_status("rw-2", "posted")

        assert {row["id"] for row in ledger.list_postings(source="reliefweb")} == {"rw-1", "rw-2"}
        assert [row["id"] for row in ledger.list_postings(status="posted")] == ["rw-2"]
        assert len(ledger.list_postings(search="wash")) == 3
        assert len(ledger.list_postings(limit=2)) == 2
        assert len(ledger.list_postings(page=2, limit=2)) == 1


def test_preview_ledger_skips_posting_archive(tmp_path) -> None:
    raw = _raw()
    with RunLedger(tmp_path / "ledger.sqlite", archive_postings=False) as ledger:
        run_id = ledger.create_run("manual", "preview")
        ledger.save_posting_on_fetch(raw, _posting(raw), run_id)
        ledger.save_skipped_posting(raw, "skipped", run_id)

        assert run_id is not None
        assert ledger.get_posting(raw.source_local_id) is None


def test_writes_are_best_effort_but_reads_raise(tmp_path) -> None:
    ledger = RunLedger(tmp_path / "ledger.sqlite")
    ledger.close()

    assert ledger.create_run("manual") is None
    ledger.update_posting_status("rw-1", "failed")
    with pytest.raises(sqlite3.ProgrammingError):
        ledger.list_runs()
