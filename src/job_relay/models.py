from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Literal

PostingStatus = Literal["fetched", "posted", "failed", "skipped", "duplicate"]
TriggerKind = Literal["scheduled", "manual", "webhook"]
RunStatus = Literal["running", "completed", "failed"]


@dataclass(frozen=True)
class RawPosting:
    source: str
    source_local_id: str
    title: str
    employer: str
    url: str
    published_at: datetime
    image_url: str | None = None
    raw_body: str = ""
    categories: tuple[str, ...] = ()


@dataclass(frozen=True)
class EnrichedPosting:
    source: str
    title: str
    employer: str
    url: str
    body_text: str
    image_url: str | None = None
    location: str | None = None
    posted_label: str | None = None
    deadline_label: str | None = None
    how_to_apply: str | None = None
    application_contacts: tuple[str, ...] = ()
    category: str | None = None


@dataclass(frozen=True)
class SourceResult:
    source: str
    posts: list[RawPosting]
    error: str | None = None


@dataclass(frozen=True)
class DeliveryRecord:
    delivered_at: str
    title: str
    employer: str | None = None


@dataclass(frozen=True)
class AISummary:
    summary: str
    category: str


@dataclass(frozen=True)
class ChannelMessage:
    text: str
    image_url: str | None = None

    @property
    def has_image(self) -> bool:
        return self.image_url is not None


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    message_id: int | None = None


@dataclass
class SourceStats:
    fetched: int = 0
    posted: int = 0
    skipped: int = 0
    failed: int = 0
    error: str | None = None

    def as_dict(self) -> dict[str, object]:
        payload = asdict(self)
        if payload["error"] is None:
            payload.pop("error")
        return payload


@dataclass(frozen=True)
class RunSummary:
    run_id: int | None
    trigger: TriggerKind
    fetched: int
    processed: int
    posted: int
    skipped: int
    failed: int
    source_stats: dict[str, SourceStats] = field(default_factory=dict)
