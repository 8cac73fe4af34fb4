from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import AbstractContextManager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from job_relay.models import EnrichedPosting, PostingStatus, RawPosting, RunStatus, SourceStats, TriggerKind

logger = logging.getLogger(__name__)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


class RunLedger(AbstractContextManager["RunLedger"]):
    """Relational record of pipeline runs and of every posting ever seen.

    Writes are best-effort: a failing write is logged and the run carries on.
    Reads are for inspection and let ``sqlite3.Error`` propagate.
    """

    def __init__(self, db_path: Path | str, *, archive_postings: bool = True):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path)
        self.conn.row_factory = sqlite3.Row
        self.archive_postings = archive_postings
        self._init_schema()

    def _init_schema(self) -> None:
        with self.conn:
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS runs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    trigger_type TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'running',
                    jobs_fetched INTEGER NOT NULL DEFAULT 0,
                    jobs_posted INTEGER NOT NULL DEFAULT 0,
                    jobs_skipped INTEGER NOT NULL DEFAULT 0,
                    jobs_failed INTEGER NOT NULL DEFAULT 0,
                    source_stats TEXT,
                    error TEXT,
                    environment TEXT
                )
                """
            )
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS postings (
                    id TEXT PRIMARY KEY,
                    source TEXT NOT NULL,
                    title TEXT NOT NULL,
                    company TEXT,
                    location TEXT,
                    description_raw TEXT,
                    description_clean TEXT,
                    ai_summary TEXT,
                    image_url TEXT,
                    source_url TEXT,
                    posted_date TEXT,
                    deadline TEXT,
                    how_to_apply TEXT,
                    application_links TEXT,
                    category TEXT,
                    status TEXT NOT NULL DEFAULT 'fetched',
                    telegram_message_id INTEGER,
                    run_id INTEGER,
                    word_count INTEGER,
                    scraped_at TEXT NOT NULL,
                    posted_at TEXT
                )
                """
            )
            self.conn.execute("CREATE INDEX IF NOT EXISTS idx_postings_status ON postings (status)")
            self.conn.execute("CREATE INDEX IF NOT EXISTS idx_postings_source ON postings (source)")

    def create_run(self, trigger: TriggerKind, environment: str | None = None) -> int | None:
        try:
            with self.conn:
                cursor = self.conn.execute(
                    """
                    INSERT INTO runs (started_at, trigger_type, status, environment)
                    VALUES (?, ?, 'running', ?)
                    """,
                    (_utc_now_iso(), trigger, environment),
                )
        except sqlite3.Error:
            logger.warning("failed to create run record", exc_info=True)
            return None
        return cursor.lastrowid

    def complete_run(
        self,
        run_id: int | None,
        *,
        fetched: int,
        posted: int,
        skipped: int,
        failed: int,
        source_stats: dict[str, SourceStats],
        error: str | None = None,
    ) -> None:
        if run_id is None:
            return
        stats_json = json.dumps({name: stats.as_dict() for name, stats in source_stats.items()})
        status: RunStatus = "failed" if error else "completed"
        try:
            with self.conn:
                self.conn.execute(
                    """
                    UPDATE runs SET
                        completed_at = ?,
                        status = ?,
                        jobs_fetched = ?,
                        jobs_posted = ?,
                        jobs_skipped = ?,
                        jobs_failed = ?,
                        source_stats = ?,
                        error = ?
                    WHERE id = ?
                    """,
                    (
                        _utc_now_iso(),
                        status,
                        fetched,
                        posted,
                        skipped,
                        failed,
                        stats_json,
                        error,
                        run_id,
                    ),
                )
        except sqlite3.Error:
            logger.warning("failed to complete run %s", run_id, exc_info=True)

    def save_posting_on_fetch(
        self,
        raw: RawPosting,
        posting: EnrichedPosting,
        run_id: int | None,
    ) -> None:
        if not self.archive_postings:
            return
        body = posting.body_text or ""
        try:
            with self.conn:
                self.conn.execute(
                    """
                    INSERT OR IGNORE INTO postings (
                        id, source, title, company, location, description_raw,
                        description_clean, image_url, source_url, posted_date, deadline,
                        how_to_apply, application_links, category, status, run_id,
                        word_count, scraped_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'fetched', ?, ?, ?)
                    """,
                    (
                        raw.source_local_id,
                        raw.source,
                        posting.title,
                        posting.employer,
                        posting.location,
                        raw.raw_body or None,
                        body,
                        posting.image_url,
                        posting.url,
                        posting.posted_label,
                        posting.deadline_label,
                        posting.how_to_apply,
                        json.dumps(list(posting.application_contacts)),
                        posting.category,
                        run_id,
                        len(body.split()),
                        _utc_now_iso(),
                    ),
                )
        except sqlite3.Error:
            logger.warning("failed to archive posting %s", raw.source_local_id, exc_info=True)

    def save_skipped_posting(
        self,
        raw: RawPosting,
        status: PostingStatus,
        run_id: int | None,
    ) -> None:
        if not self.archive_postings:
            return
        try:
            with self.conn:
                self.conn.execute(
                    """
                    INSERT OR IGNORE INTO postings (
                        id, source, title, company, image_url, source_url, status,
                        run_id, scraped_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        raw.source_local_id,
                        raw.source,
                        raw.title,
                        raw.employer,
                        raw.image_url,
                        raw.url,
                        status,
                        run_id,
                        _utc_now_iso(),
                    ),
                )
        except sqlite3.Error:
            logger.warning("failed to archive skipped posting %s", raw.source_local_id, exc_info=True)

    def update_posting_status(
        self,
        posting_id: str,
        status: PostingStatus,
        *,
        summary: str | None = None,
        category: str | None = None,
        message_id: int | None = None,
    ) -> None:
        if not self.archive_postings:
            return
        try:
            with self.conn:
                if status == "posted":
                    self.conn.execute(
                        """
                        UPDATE postings SET
                            status = ?,
                            ai_summary = COALESCE(?, ai_summary),
                            category = COALESCE(?, category),
                            telegram_message_id = ?,
                            posted_at = ?
                        WHERE id = ?
                        """,
                        (status, summary, category, message_id, _utc_now_iso(), posting_id),
                    )
                else:
                    self.conn.execute(
                        "UPDATE postings SET status = ? WHERE id = ?",
                        (status, posting_id),
                    )
        except sqlite3.Error:
            logger.warning("failed to update posting %s to %s", posting_id, status, exc_info=True)

    def get_run(self, run_id: int) -> dict[str, Any] | None:
        row = self.conn.execute("SELECT * FROM runs WHERE id = ?", (run_id,)).fetchone()
        return _run_row(row) if row is not None else None

    def list_runs(self, page: int = 1, limit: int = 20) -> list[dict[str, Any]]:
        offset = max(page - 1, 0) * limit
        rows = self.conn.execute(
            "SELECT * FROM runs ORDER BY id DESC LIMIT ? OFFSET ?",
            (limit, offset),
        ).fetchall()
        return [_run_row(row) for row in rows]

    def get_posting(self, posting_id: str) -> dict[str, Any] | None:
        row = self.conn.execute("SELECT * FROM postings WHERE id = ?", (posting_id,)).fetchone()
        return _posting_row(row) if row is not None else None

    def list_postings(
        self,
        *,
        source: str | None = None,
        status: str | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> list[dict[str, Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if source:
            clauses.append("source = ?")
            params.append(source)
        if status:
            clauses.append("status = ?")
            params.append(status)
        if search:
            clauses.append("(title LIKE ? OR company LIKE ?)")
            params.extend([f"%{search}%", f"%{search}%"])
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.extend([limit, max(page - 1, 0) * limit])
        rows = self.conn.execute(
            f"SELECT * FROM postings {where} ORDER BY scraped_at DESC, id LIMIT ? OFFSET ?",
            params,
        ).fetchall()
        return [_posting_row(row) for row in rows]

    def count_by_status(self) -> dict[str, int]:
        rows = self.conn.execute(
            "SELECT status, COUNT(*) AS c FROM postings GROUP BY status"
        ).fetchall()
        return {str(row["status"]): int(row["c"]) for row in rows}

    def close(self) -> None:
        self.conn.close()

    def __exit__(self, exc_type, exc, exc_tb) -> None:
        self.close()


def _run_row(row: sqlite3.Row) -> dict[str, Any]:
    payload = dict(row)
    raw_stats = payload.get("source_stats")
    payload["source_stats"] = json.loads(raw_stats) if raw_stats else {}
    return payload


def _posting_row(row: sqlite3.Row) -> dict[str, Any]:
    payload = dict(row)
    raw_links = payload.get("application_links")
    payload["application_links"] = json.loads(raw_links) if raw_links else []
    return payload
