from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Callable
from contextlib import AbstractContextManager
from datetime import datetime, timedelta, timezone
from pathlib import Path

from job_relay.dedup import fuzzy_key
from job_relay.models import DeliveryRecord

logger = logging.getLogger(__name__)

POSTED_TTL = timedelta(days=30)
POSTED_KEY_PREFIX = "job:"
FUZZY_KEY_PREFIX = "dedup:"

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).replace(microsecond=0).isoformat()


class IdempotencyStore(AbstractContextManager["IdempotencyStore"]):
    """Key/value state with per-key expiry.

    Holds the delivery records (``job:<id>``), the fuzzy identity records
    (``dedup:<title>:<employer>``) and the runtime prompt overrides.
    """

    def __init__(self, db_path: Path | str, *, clock: Clock = _utc_now):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path)
        self.conn.row_factory = sqlite3.Row
        self._clock = clock
        self._init_schema()

    def _init_schema(self) -> None:
        with self.conn:
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expires_at TEXT
                )
                """
            )

    def get(self, key: str) -> str | None:
        row = self.conn.execute(
            "SELECT value, expires_at FROM kv WHERE key = ?",
            (key,),
        ).fetchone()
        if row is None:
            return None
        expires_at = row["expires_at"]
        if expires_at and datetime.fromisoformat(expires_at) <= self._clock():
            return None
        return str(row["value"])

    def put(self, key: str, value: str, *, ttl: timedelta | None = None) -> None:
        expires_at = _iso(self._clock() + ttl) if ttl is not None else None
        with self.conn:
            self.conn.execute(
                """
                INSERT INTO kv (key, value, expires_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    expires_at = excluded.expires_at
                """,
                (key, value, expires_at),
            )

    def delete(self, key: str) -> bool:
        with self.conn:
            cursor = self.conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        return cursor.rowcount == 1

    def list_keys(self, prefix: str = "") -> list[str]:
        rows = self.conn.execute(
            """
            SELECT key FROM kv
            WHERE key LIKE ? ESCAPE '\\' AND (expires_at IS NULL OR expires_at > ?)
            ORDER BY key
            """,
            (_escape_like(prefix) + "%", _iso(self._clock())),
        ).fetchall()
        return [str(row["key"]) for row in rows]

    def purge_expired(self) -> int:
        with self.conn:
            cursor = self.conn.execute(
                "DELETE FROM kv WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (_iso(self._clock()),),
            )
        return cursor.rowcount

    def _safe_get(self, key: str) -> str | None:
        try:
            return self.get(key)
        except sqlite3.Error:
            logger.warning("idempotency read failed for %s; treating as unseen", key, exc_info=True)
            return None

    def is_posted(self, source_local_id: str) -> bool:
        return self._safe_get(f"{POSTED_KEY_PREFIX}{source_local_id}") is not None

    def get_posted(self, source_local_id: str) -> DeliveryRecord | None:
        raw = self.get(f"{POSTED_KEY_PREFIX}{source_local_id}")
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            return None
        return DeliveryRecord(
            delivered_at=str(payload.get("postedAt", "")),
            title=str(payload.get("title", "")),
            employer=payload.get("company"),
        )

    def mark_posted(self, source_local_id: str, title: str, employer: str | None = None) -> None:
        payload = {"postedAt": _iso(self._clock()), "title": title, "company": employer}
        self.put(
            f"{POSTED_KEY_PREFIX}{source_local_id}",
            json.dumps(payload, ensure_ascii=False),
            ttl=POSTED_TTL,
        )

    def clear_posted(self, source_local_id: str) -> bool:
        return self.delete(f"{POSTED_KEY_PREFIX}{source_local_id}")

    def is_duplicate(self, title: str, employer: str | None) -> bool:
        return self._safe_get(f"{FUZZY_KEY_PREFIX}{fuzzy_key(title, employer)}") is not None

    def mark_fuzzy(self, title: str, employer: str | None) -> None:
        self.put(
            f"{FUZZY_KEY_PREFIX}{fuzzy_key(title, employer)}",
            _iso(self._clock()),
            ttl=POSTED_TTL,
        )

    def close(self) -> None:
        self.conn.close()

    def __exit__(self, exc_type, exc, exc_tb) -> None:
        self.close()


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
