"""Tests for concurrent fan-out and join."""

import asyncio

import pytest
from conftest import StaticSource

from lookout.daemon.dispatcher import Dispatcher
from lookout.daemon.error_handling import FailureKind, SourceState
from lookout.daemon.models import Query
from lookout.daemon.sources.base import CancelToken


def dispatcher(sources, tracker, metrics, timeout_ms=250):
    return Dispatcher(sources, source_timeout_ms=timeout_ms, metrics=metrics, error_tracker=tracker)


@pytest.mark.asyncio
async def test_groups_follow_registration_not_arrival(tracker, metrics):
    slow = StaticSource("slow", ["Slow One"], delay=0.05)
    fast = StaticSource("fast", ["Fast One"])
    d = dispatcher([slow, fast], tracker, metrics)

    result = await d.run(Query("one"))

    assert list(result.groups) == ["slow", "fast"]
    assert [c.id for c in result.candidates] == ["slow:Slow One", "fast:Fast One"]
    assert not result.cancelled


@pytest.mark.asyncio
async def test_repeated_runs_are_identical_despite_delays(tracker, metrics):
    sources = [
        StaticSource("a", ["alpha", "apex"], delay=0.03),
        StaticSource("b", ["beta"], delay=0.0),
        StaticSource("c", ["gamma"], delay=0.01),
    ]
    d = dispatcher(sources, tracker, metrics)

    first = await d.run(Query("a"))
    sources[0].delay, sources[1].delay = 0.0, 0.03
    second = await d.run(Query("a"))

    assert [c.id for c in first.candidates] == [c.id for c in second.candidates]


@pytest.mark.asyncio
async def test_only_enabled_accepting_sources_run(tracker, metrics):
    picky = StaticSource("picky", ["x"], accepts_blank=False)
    off = StaticSource("off", ["y"], enabled=False)
    on = StaticSource("on", ["z"])
    d = dispatcher([picky, off, on], tracker, metrics)

    result = await d.run(Query("   "))

    assert list(result.groups) == ["on"]
    assert picky.calls == [] and off.calls == []


@pytest.mark.asyncio
async def test_failing_source_is_isolated(tracker, metrics):
    bad = StaticSource("bad", ["x"], fail=True)
    good = StaticSource("good", ["ok"])
    d = dispatcher([bad, good], tracker, metrics)

    result = await d.run(Query("ok"))

    assert result.groups["bad"] == []
    assert [c.title for c in result.groups["good"]] == ["ok"]
    assert tracker.health("bad").state is SourceState.DEGRADED
    assert tracker.recent_failures("bad")[0].kind is FailureKind.ERROR
    assert tracker.health("good").success_count == 1


@pytest.mark.asyncio
async def test_slow_source_times_out_to_empty(tracker, metrics):
    slow = StaticSource("slow", ["late"], delay=1.0)
    fast = StaticSource("fast", ["early"])
    d = dispatcher([slow, fast], tracker, metrics, timeout_ms=50)

    result = await d.run(Query("e"))

    assert result.groups["slow"] == []
    assert result.timed_out == ["slow"]
    assert slow.cancelled_calls == 1
    assert tracker.health("slow").timeout_count == 1
    assert metrics.counters["source.slow.timeout"] == 1


@pytest.mark.asyncio
async def test_cancel_token_discards_everything(tracker, metrics):
    slow = StaticSource("slow", ["late"], delay=0.5)
    fast = StaticSource("fast", ["early"])
    d = dispatcher([slow, fast], tracker, metrics, timeout_ms=2000)
    token = CancelToken()

    task = asyncio.create_task(d.run(Query("e"), token))
    await asyncio.sleep(0.05)
    token.cancel()
    result = await task

    assert result.cancelled
    assert result.candidates == []
    assert slow.cancelled_calls == 1


@pytest.mark.asyncio
async def test_already_cancelled_token(tracker, metrics):
    source = StaticSource("s", ["x"])
    token = CancelToken()
    token.cancel()

    result = await dispatcher([source], tracker, metrics).run(Query("x"), token)
    assert result.cancelled
    assert source.calls == []


@pytest.mark.asyncio
async def test_unscored_candidates_get_fuzzy_scores(tracker, metrics):
    source = StaticSource("apps", ["Gmail", "Maps"])
    result = await dispatcher([source], tracker, metrics).run(Query("gm"))

    gmail, maps = result.groups["apps"]
    assert gmail.rank_score == 30
    assert gmail.title_match_positions == (0, 1)
    assert maps.rank_score == 0
    assert maps.title_match_positions == ()


@pytest.mark.asyncio
async def test_source_scores_are_kept(tracker, metrics):
    source = StaticSource("calc", ["= 4"], scores=[100])
    result = await dispatcher([source], tracker, metrics).run(Query("2+2"))
    assert result.candidates[0].rank_score == 100


@pytest.mark.asyncio
async def test_latency_recorded_per_source(tracker, metrics):
    await dispatcher([StaticSource("a", ["x"])], tracker, metrics).run(Query("x"))
    assert metrics.histogram("source.a").total_count == 1


def test_duplicate_source_ids_rejected(tracker, metrics):
    with pytest.raises(ValueError):
        dispatcher([StaticSource("a"), StaticSource("a")], tracker, metrics)
