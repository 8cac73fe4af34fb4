from __future__ import annotations

from abc import ABC, abstractmethod

import httpx

from job_relay.config import Settings
from job_relay.models import EnrichedPosting, RawPosting


class SourceError(RuntimeError):
    """A source is misconfigured or returned a document that cannot be parsed."""


class SourcePlugin(ABC):
    """One job board.

    ``fetch`` returns an empty list when the board simply has nothing new and
    raises only for transport or parse failures. ``process`` degrades to the
    listing metadata when detail enrichment is unavailable and does not raise
    for expired or missing detail pages.
    """

    name: str

    @abstractmethod
    async def fetch(self, client: httpx.AsyncClient, settings: Settings) -> list[RawPosting]: ...

    @abstractmethod
    async def process(
        self,
        raw: RawPosting,
        client: httpx.AsyncClient,
        settings: Settings,
    ) -> EnrichedPosting: ...
