"""Caller-facing query engine: alias short-circuit, fan-out, ranking, selection."""

import asyncio
import inspect
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import ulid
from loguru import logger

from .aliases import AliasIndex, InsertResult
from .bus import Event, EventBus
from .config import EngineConfig
from .dispatcher import Dispatcher
from .error_handling import ErrorTracker, get_error_tracker
from .metrics import MetricsCollector, get_metrics
from .models import AliasMatch, AliasTarget, Candidate, CandidateFlags, Query, QueryOrigin
from .ranking import Direction, RankingPolicy, SourceOrderPersistence
from .sources.base import CancelToken, Source
from .usage import UsageLedger, normalize_query


ALIAS_SOURCE_ID = "alias"

AliasHandler = Callable[[AliasTarget, str], Any]


@dataclass
class TurnResult:
    """Outcome of one submitted query."""
    turn_id: str
    query: Query
    candidates: List[Candidate] = field(default_factory=list)
    superseded: bool = False
    alias_match: Optional[AliasMatch] = None
    timed_out: List[str] = field(default_factory=list)
    latency_ms: float = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "turn_id": self.turn_id,
            "query": self.query.raw_text,
            "superseded": self.superseded,
            "alias": self.alias_match.entry.alias_key if self.alias_match else None,
            "candidates": [c.to_dict() for c in self.candidates],
            "timed_out": self.timed_out,
            "latency_ms": round(self.latency_ms, 2),
        }


@dataclass
class _Turn:
    turn_id: str
    query: Query
    token: CancelToken
    task: "asyncio.Task[TurnResult]"


class SearchEngine:
    """
    One engine per process.

    Each `submit()` starts a turn. Source order and usage counters are
    snapshotted when the turn starts, so selections and reorders made
    while it runs only affect later turns. A newer distinct submission
    cancels the in-flight turn, which then resolves as superseded.
    """

    def __init__(
        self,
        sources: Sequence[Source],
        aliases: Optional[AliasIndex] = None,
        ledger: Optional[UsageLedger] = None,
        source_order_persistence: Optional[SourceOrderPersistence] = None,
        config: Optional[EngineConfig] = None,
        alias_handler: Optional[AliasHandler] = None,
        event_bus: Optional[EventBus] = None,
        metrics: Optional[MetricsCollector] = None,
        error_tracker: Optional[ErrorTracker] = None,
    ):
        self.config = config or EngineConfig()
        self.metrics = metrics or get_metrics()
        self.error_tracker = error_tracker or get_error_tracker()
        self.dispatcher = Dispatcher(
            sources,
            source_timeout_ms=self.config.source_timeout_ms,
            metrics=self.metrics,
            error_tracker=self.error_tracker,
        )
        self.aliases = aliases or AliasIndex()
        self.ledger = ledger or UsageLedger()
        self.ranking = RankingPolicy(self.dispatcher.source_ids, self.ledger, source_order_persistence)
        self.alias_handler = alias_handler
        self.event_bus = event_bus

        self._current: Optional[_Turn] = None
        self._last_delivered: Optional[TurnResult] = None
        self._stats = {"turns": 0, "superseded": 0, "alias_hits": 0, "selections": 0}

    @property
    def sources(self) -> Sequence[Source]:
        return self.dispatcher.sources

    @property
    def last_result(self) -> Optional[TurnResult]:
        return self._last_delivered

    async def start(self) -> None:
        """Run each source's initialize hook. A failing source stays registered."""
        for source in self.sources:
            try:
                await source.initialize()
            except Exception as e:
                logger.error(f"Source {source.id} failed to initialize: {e}")
        logger.info(f"Engine ready with sources: {', '.join(self.ranking.source_order)}")

    async def stop(self) -> None:
        self.cancel()
        for source in self.sources:
            try:
                await source.close()
            except Exception as e:
                logger.error(f"Source {source.id} failed to close: {e}")

    def submit(
        self,
        raw_text: str,
        origin: QueryOrigin = QueryOrigin.USER_INPUT,
    ) -> "asyncio.Task[TurnResult]":
        """
        Start a turn for `raw_text`. Must be called from the event loop.

        Returns the in-flight task unchanged when the text equals the
        in-flight turn's text; otherwise cancels that turn and starts a
        new one.
        """
        current = self._current
        if current is not None and not current.task.done():
            if current.query.raw_text == raw_text:
                return current.task
            current.token.cancel()

        query = Query(raw_text=raw_text, origin=origin)
        token = CancelToken()
        turn_id = str(ulid.ULID())
        task = asyncio.create_task(self._run_turn(turn_id, query, token))
        self._current = _Turn(turn_id=turn_id, query=query, token=token, task=task)
        return task

    async def search(self, raw_text: str, origin: QueryOrigin = QueryOrigin.USER_INPUT) -> TurnResult:
        return await self.submit(raw_text, origin)

    def cancel(self) -> bool:
        """Cancel the in-flight turn, if any."""
        current = self._current
        if current is None or current.task.done():
            return False
        current.token.cancel()
        return True

    async def _run_turn(self, turn_id: str, query: Query, token: CancelToken) -> TurnResult:
        start = time.perf_counter()
        self._stats["turns"] += 1
        self._emit("turn.started", {"query": query.raw_text, "origin": query.origin.value}, turn_id)

        source_order = self.ranking.source_order
        usage = self._usage_snapshot(query)

        alias_match = self.aliases.resolve(query.raw_text)
        if alias_match is not None:
            result = TurnResult(
                turn_id=turn_id,
                query=query,
                candidates=[self._alias_candidate(alias_match)],
                alias_match=alias_match,
            )
            self._stats["alias_hits"] += 1
            self._emit("alias.hit", {
                "alias": alias_match.entry.alias_key,
                "residual": alias_match.residual,
            }, turn_id)
        else:
            dispatch = await self.dispatcher.run(query, token)
            if dispatch.cancelled or token.cancelled:
                return self._superseded(turn_id, query)

            ordered = self.ranking.order(
                dispatch.groups,
                source_order,
                usage,
                self.config.use_frequency_ranking,
                query.normalized_text,
            )
            result = TurnResult(
                turn_id=turn_id,
                query=query,
                candidates=ordered[:self.config.max_results],
                timed_out=dispatch.timed_out,
            )

        if token.cancelled:
            return self._superseded(turn_id, query)

        result.latency_ms = (time.perf_counter() - start) * 1000
        self.metrics.record_latency("turn.total", result.latency_ms)
        self._last_delivered = result
        self._emit("turn.completed", {
            "query": query.raw_text,
            "count": len(result.candidates),
            "latency_ms": round(result.latency_ms, 2),
        }, turn_id)
        logger.debug(f"Turn {turn_id} for {query.raw_text!r}: {len(result.candidates)} results "
                     f"in {result.latency_ms:.1f}ms")
        return result

    def _superseded(self, turn_id: str, query: Query) -> TurnResult:
        self._stats["superseded"] += 1
        self.metrics.increment_counter("turn.superseded")
        self._emit("turn.superseded", {"query": query.raw_text}, turn_id)
        return TurnResult(turn_id=turn_id, query=query, superseded=True)

    def _usage_snapshot(self, query: Query) -> Dict[str, Dict[str, int]]:
        if self.config.query_based_ranking:
            return self.ledger.snapshot()
        # global mode: every query ranks against the aggregated counts
        return {normalize_query(query.normalized_text): self.ledger.global_snapshot()}

    def _alias_candidate(self, match: AliasMatch) -> Candidate:
        entry, residual = match.entry, match.residual
        target = entry.target
        return Candidate(
            id=f"{ALIAS_SOURCE_ID}:{entry.alias_key}",
            title=residual or target.summary,
            subtitle=f'Alias "{entry.alias_key}" -> {target.summary}',
            source_id=ALIAS_SOURCE_ID,
            rank_score=0,
            flags=CandidateFlags(exclude_from_usage_learning=True),
            action=lambda: self._handle_alias(target, residual),
            alias_target=target,
        )

    def _handle_alias(self, target: AliasTarget, residual: str) -> Any:
        if self.alias_handler is None:
            logger.warning(f"No alias handler installed, ignoring {target.summary}")
            return None
        return self.alias_handler(target, residual)

    def find_candidate(self, candidate_id: str) -> Optional[Candidate]:
        """Candidate with `candidate_id` in the last delivered turn."""
        result = self._last_delivered
        if result is None:
            return None
        for candidate in result.candidates:
            if candidate.id == candidate_id:
                return candidate
        return None

    async def select(self, candidate_id: str) -> bool:
        """
        Act on a candidate from the last delivered turn.

        The selection is counted (unless the candidate is excluded from
        usage learning) before its action runs.

        Returns:
            False when the id is unknown or the action raised
        """
        candidate = self.find_candidate(candidate_id)
        if candidate is None:
            logger.debug(f"Select for unknown candidate {candidate_id}")
            return False

        query = self._last_delivered.query
        count = self.ranking.record_selection(
            candidate.id,
            query.normalized_text,
            candidate.flags.exclude_from_usage_learning,
        )
        self._stats["selections"] += 1
        self._emit("selection.recorded", {
            "candidate_id": candidate.id,
            "query": query.normalized_text,
            "count": count,
        }, self._last_delivered.turn_id)

        if candidate.action is None:
            return True
        try:
            outcome = candidate.action()
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.error(f"Action for {candidate.id} failed: {e}")
            return False
        return True

    def add_alias(self, alias_key: str, target: AliasTarget) -> InsertResult:
        return self.aliases.insert(alias_key, target)

    def remove_alias(self, alias_key: str) -> None:
        self.aliases.remove(alias_key)

    def alias_from_candidate(
        self,
        candidate_id: str,
        alias_key: Optional[str] = None,
    ) -> Optional[InsertResult]:
        """
        Bind an alias to the target of a delivered candidate.

        Without `alias_key` a free key is suggested from the candidate's
        target. Returns None when the candidate is unknown or has no
        alias target.
        """
        candidate = self.find_candidate(candidate_id)
        if candidate is None or candidate.alias_target is None:
            return None
        key = alias_key if alias_key is not None else self.aliases.suggest_key(candidate.alias_target.summary)
        return self.aliases.insert(key, candidate.alias_target)

    def move_source(self, source_id: str, direction: Union[Direction, str]) -> bool:
        if not isinstance(direction, Direction):
            direction = Direction(direction)
        return self.ranking.reorder_sources(source_id, direction, self._is_enabled)

    def _is_enabled(self, source_id: str) -> bool:
        source = self.dispatcher.get_source(source_id)
        return source is not None and source.enabled

    def reset_usage(self) -> None:
        self.ledger.reset()

    def stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "in_flight": self._current is not None and not self._current.task.done(),
            "aliases": len(self.aliases),
            "usage_buckets": len(self.ledger.snapshot()),
            "source_order": list(self.ranking.source_order),
            "sources": [
                {
                    "id": source.id,
                    "name": source.display_name,
                    "enabled": source.enabled,
                    "rank": self.ranking.source_rank(source.id),
                    "health": self.error_tracker.health(source.id).to_dict(),
                }
                for source in self.sources
            ],
        }

    def _emit(self, event_type: str, data: Dict[str, Any], turn_id: Optional[str] = None) -> None:
        if self.event_bus is None:
            return
        self.event_bus.emit_nowait(Event(
            type=event_type,
            data=data,
            source="engine",
            correlation_id=turn_id,
        ))
