"""Concurrent fan-out of one query turn to every accepting source."""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from loguru import logger

from . import fuzzy
from .error_handling import ErrorTracker, FailureKind, get_error_tracker
from .metrics import MetricsCollector, get_metrics
from .models import Candidate, Query
from .sources.base import CancelToken, Source


@dataclass
class DispatchResult:
    """Candidates of one turn, grouped by source in registration order."""
    query: Query
    groups: Dict[str, List[Candidate]] = field(default_factory=dict)
    cancelled: bool = False
    source_latencies: Dict[str, float] = field(default_factory=dict)
    timed_out: List[str] = field(default_factory=list)

    @property
    def candidates(self) -> List[Candidate]:
        return [candidate for group in self.groups.values() for candidate in group]


class Dispatcher:
    """
    Drives the fan-out/join for a query turn.

    Every enabled source whose `accepts()` is true gets its own task. The
    join waits for all of them or for the turn's cancel token, whichever
    comes first. A source that runs past its soft timeout contributes
    nothing for the turn.
    """

    def __init__(
        self,
        sources: Sequence[Source],
        source_timeout_ms: int = 250,
        metrics: Optional[MetricsCollector] = None,
        error_tracker: Optional[ErrorTracker] = None,
    ):
        ids = [source.id for source in sources]
        duplicates = sorted({source_id for source_id in ids if ids.count(source_id) > 1})
        if duplicates:
            raise ValueError(f"Duplicate source ids: {', '.join(duplicates)}")

        self.sources: Tuple[Source, ...] = tuple(sources)
        self.source_timeout_ms = source_timeout_ms
        self.metrics = metrics or get_metrics()
        self.error_tracker = error_tracker or get_error_tracker()
        # one health view for failures seen by sources and timeouts seen here
        for source in self.sources:
            source.error_tracker = self.error_tracker

    @property
    def source_ids(self) -> List[str]:
        return [source.id for source in self.sources]

    def get_source(self, source_id: str) -> Optional[Source]:
        for source in self.sources:
            if source.id == source_id:
                return source
        return None

    def accepted_sources(self, query: Query) -> List[Source]:
        accepted = []
        for source in self.sources:
            if not source.enabled:
                continue
            try:
                if source.accepts(query):
                    accepted.append(source)
            except Exception as e:
                logger.error(f"Source {source.id} accepts() raised: {e}")
        return accepted

    async def run(self, query: Query, token: Optional[CancelToken] = None) -> DispatchResult:
        """
        Fan the query out and join the results.

        Args:
            query: Query for this turn
            token: Turn-scoped cancel token; a new one is created if omitted

        Returns:
            DispatchResult. When the token fires first, `cancelled` is set
            and no candidates are returned.
        """
        token = token or CancelToken()
        accepted = self.accepted_sources(query)
        if not accepted:
            return DispatchResult(query=query)

        tasks = {
            asyncio.create_task(self._run_source(source, query, token)): source.id
            for source in accepted
        }
        cancel_waiter = asyncio.create_task(token.wait())
        pending = set(tasks)
        arrived: Dict[str, List[Candidate]] = {}
        latencies: Dict[str, float] = {}
        timed_out: List[str] = []

        try:
            while pending and not token.cancelled:
                done, _ = await asyncio.wait(
                    pending | {cancel_waiter},
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if token.cancelled:
                    break

                for task in done:
                    if task is cancel_waiter:
                        continue
                    pending.discard(task)
                    source_id, candidates, latency, late = task.result()
                    arrived[source_id] = candidates
                    latencies[source_id] = latency
                    if late:
                        timed_out.append(source_id)
        finally:
            cancel_waiter.cancel()
            for task in pending:
                task.cancel()

        if token.cancelled:
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            logger.debug(f"Turn for {query.normalized_text!r} cancelled, {len(pending)} sources dropped")
            return DispatchResult(query=query, cancelled=True)

        # registration order, independent of arrival order
        groups = {
            source.id: arrived[source.id]
            for source in self.sources
            if source.id in arrived
        }
        self._score_unscored(query, groups)

        return DispatchResult(
            query=query,
            groups=groups,
            source_latencies=latencies,
            timed_out=sorted(timed_out),
        )

    async def _run_source(
        self,
        source: Source,
        query: Query,
        token: CancelToken,
    ) -> Tuple[str, List[Candidate], float, bool]:
        """Wrapper to enforce the soft timeout and track timing."""
        start = time.perf_counter()
        late = False
        try:
            candidates = await asyncio.wait_for(
                source.resolve(query, token),
                timeout=self.source_timeout_ms / 1000.0,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Source {source.id} exceeded {self.source_timeout_ms}ms, dropping its results")
            self.error_tracker.record_failure(source.id, FailureKind.TIMEOUT)
            self.metrics.increment_counter(f"source.{source.id}.timeout")
            candidates = []
            late = True

        latency = (time.perf_counter() - start) * 1000
        self.metrics.record_latency(f"source.{source.id}", latency)
        return source.id, candidates, latency, late

    @staticmethod
    def _score_unscored(query: Query, groups: Dict[str, List[Candidate]]) -> None:
        """Give candidates without a source score a comparable fuzzy score."""
        for candidates in groups.values():
            for candidate in candidates:
                if candidate.rank_score is not None:
                    continue
                result = fuzzy.match(query.normalized_text, candidate.title)
                candidate.rank_score = result.score if result else 0
                if result and not candidate.title_match_positions:
                    candidate.title_match_positions = result.matched_positions
