"""Shared fixtures: scripted sources and fresh observability state."""

import asyncio
from typing import Callable, List, Optional, Sequence

import pytest

from lookout.daemon.error_handling import ErrorTracker
from lookout.daemon.metrics import MetricsCollector
from lookout.daemon.models import Candidate, CandidateFlags, Query
from lookout.daemon.sources.base import CancelToken, Source


def make_candidate(
    source_id: str,
    key: str,
    score: Optional[int] = None,
    exclude: bool = False,
    action: Optional[Callable] = None,
) -> Candidate:
    return Candidate(
        id=f"{source_id}:{key}",
        title=key,
        source_id=source_id,
        rank_score=score,
        flags=CandidateFlags(exclude_from_usage_learning=exclude),
        action=action,
    )


class StaticSource(Source):
    """Source returning a fixed list after an optional delay."""

    def __init__(
        self,
        source_id: str,
        titles: Sequence[str] = (),
        delay: float = 0,
        fail: bool = False,
        accepts_blank: bool = True,
        enabled: bool = True,
        scores: Optional[Sequence[int]] = None,
    ):
        super().__init__(enabled=enabled)
        self.id = source_id
        self.display_name = source_id.title()
        self.titles = list(titles)
        self.delay = delay
        self.fail = fail
        self.accepts_blank = accepts_blank
        self.scores = list(scores) if scores is not None else None
        self.calls: List[str] = []
        self.cancelled_calls = 0

    def accepts(self, query: Query) -> bool:
        return self.accepts_blank or not query.is_blank

    async def search(self, query: Query, token: CancelToken) -> List[Candidate]:
        self.calls.append(query.raw_text)
        if self.delay:
            try:
                await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                self.cancelled_calls += 1
                raise
        if self.fail:
            raise RuntimeError(f"{self.id} exploded")
        return [
            make_candidate(
                self.id,
                title,
                score=self.scores[i] if self.scores is not None else None,
            )
            for i, title in enumerate(self.titles)
        ]


class MemoryAliasStore:
    def __init__(self, entries=None, fail_load: bool = False):
        self.entries = list(entries or [])
        self.fail_load = fail_load
        self.saved = []

    def load_all(self):
        if self.fail_load:
            raise ValueError("corrupt")
        return list(self.entries)

    def on_changed(self, entries):
        self.saved.append(list(entries))


class MemoryUsageStore:
    def __init__(self, counters=None):
        self.counters = counters if counters is not None else {}
        self.saved = []

    def load(self):
        return self.counters

    def on_changed(self, counters):
        self.saved.append(counters)


class MemoryOrderStore:
    def __init__(self, order=None):
        self.order = order if order is not None else []
        self.saved = []

    def load(self):
        return self.order

    def on_changed(self, order):
        self.saved.append(list(order))


@pytest.fixture
def tracker() -> ErrorTracker:
    return ErrorTracker()


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()
