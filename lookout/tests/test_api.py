"""Tests for the HTTP API, served in-process."""

import asyncio
import json
from pathlib import Path

import pytest
from aiohttp.test_utils import TestClient, TestServer

from lookout.daemon.api import create_api_app
from lookout.daemon.bus import EventBus
from lookout.daemon.config import Config
from lookout.daemon.main import LookoutDaemon
from lookout.daemon.sources import AppCatalogSource, AppEntry, CalculatorSource, WebSearchSource
from lookout.daemon.store import flush_writes


GMAIL_ID = "app-list:com.google.gmail"
GOOGLE_TARGET = {"type": "web-search", "siteId": "google", "displayName": "Google"}


class Harness:
    def __init__(self, data_dir: Path):
        self.launched = []
        self.opened = []
        sources = [
            AppCatalogSource(
                catalog=[AppEntry("com.google.gmail", "Gmail"), AppEntry("org.gnome.Maps", "Maps")],
                launcher=lambda app: self.launched.append(app.app_id),
            ),
            CalculatorSource(),
            WebSearchSource(opener=self.opened.append),
        ]
        self.daemon = LookoutDaemon(Config(data_dir=data_dir), sources=sources, event_bus=EventBus())


@pytest.fixture
def harness(tmp_path: Path) -> Harness:
    return Harness(tmp_path)


def api_client(harness: Harness) -> TestClient:
    return TestClient(TestServer(create_api_app(harness.daemon)))


@pytest.mark.asyncio
async def test_search_and_select(harness):
    async with api_client(harness) as client:
        resp = await client.get("/search", params={"q": "gm"})
        assert resp.status == 200
        data = await resp.json()

        ids = [c["id"] for c in data["candidates"]]
        assert ids[0] == GMAIL_ID
        assert ids[1].startswith("web-search:bing:")
        assert data["candidates"][0]["title_matches"] == [0, 1]
        assert not data["superseded"]
        assert resp.headers["Access-Control-Allow-Origin"] == "*"

        resp = await client.post("/select", json={"id": GMAIL_ID})
        assert resp.status == 200
        assert harness.launched == ["com.google.gmail"]
        assert harness.daemon.engine.ledger.count("gm", GMAIL_ID) == 1

        resp = await client.post("/select", json={"id": "nope"})
        assert resp.status == 404


@pytest.mark.asyncio
async def test_failed_action_is_not_reported_as_missing(harness):
    def broken(app):
        raise OSError("no such executable")

    harness.daemon.engine.dispatcher.get_source("app-list")._launcher = broken

    async with api_client(harness) as client:
        await client.get("/search", params={"q": "gm"})

        resp = await client.post("/select", json={"id": GMAIL_ID})
        assert resp.status == 500
        assert (await resp.json())["error"]["code"] == "action_failed"
        # the selection still counts
        assert harness.daemon.engine.ledger.count("gm", GMAIL_ID) == 1

        resp = await client.post("/select", json={"id": "app-list:missing"})
        assert resp.status == 404
        assert (await resp.json())["error"]["code"] == "not_found"


@pytest.mark.asyncio
async def test_calculator_through_api(harness):
    async with api_client(harness) as client:
        resp = await client.get("/search", params={"q": "6*7"})
        data = await resp.json()
        assert data["candidates"][0]["title"] == "= 42"


@pytest.mark.asyncio
async def test_blank_query_lists_defaults(harness):
    async with api_client(harness) as client:
        resp = await client.get("/search")
        data = await resp.json()
        assert [c["title"] for c in data["candidates"]] == ["Gmail", "Maps"]


@pytest.mark.asyncio
async def test_bad_requests(harness):
    async with api_client(harness) as client:
        resp = await client.post("/select", data="not json")
        assert resp.status == 400
        assert (await resp.json())["error"]["code"] == "invalid_request"

        resp = await client.post("/select", json={})
        assert resp.status == 400

        resp = await client.get("/search", params={"q": "x", "origin": "telepathy"})
        assert resp.status == 400

        resp = await client.get("/metrics", params={"format": "xml"})
        assert resp.status == 400


@pytest.mark.asyncio
async def test_alias_lifecycle(harness, tmp_path: Path):
    async with api_client(harness) as client:
        resp = await client.post("/aliases", json={"alias": "G", "target": GOOGLE_TARGET})
        assert resp.status == 201
        assert (await resp.json())["alias"] == "g"

        resp = await client.post("/aliases", json={"alias": "g", "target": GOOGLE_TARGET})
        assert resp.status == 409

        resp = await client.post("/aliases", json={"alias": "  ", "target": GOOGLE_TARGET})
        assert resp.status == 400

        resp = await client.post("/aliases", json={"alias": "x", "target": {"type": "bogus"}})
        assert resp.status == 400

        resp = await client.get("/search", params={"q": "g cute cats"})
        data = await resp.json()
        assert data["alias"] == "g"
        assert [c["id"] for c in data["candidates"]] == ["alias:g"]

        resp = await client.post("/select", json={"id": "alias:g"})
        assert resp.status == 200
        assert harness.opened == ["https://www.google.com/search?q=cute%20cats"]

        await flush_writes()
        saved = json.loads((tmp_path / "aliases.json").read_text())
        assert saved[0]["target"] == GOOGLE_TARGET

        resp = await client.get("/aliases")
        assert [a["alias"] for a in (await resp.json())["aliases"]] == ["g"]

        resp = await client.delete("/aliases/g")
        assert (await resp.json())["removed"]
        resp = await client.delete("/aliases/g")
        assert not (await resp.json())["removed"]


@pytest.mark.asyncio
async def test_alias_from_result(harness):
    async with api_client(harness) as client:
        await client.get("/search", params={"q": "gm"})

        resp = await client.post("/aliases", json={"candidate_id": GMAIL_ID})
        assert resp.status == 201
        assert (await resp.json())["alias"] == "gmail"

        resp = await client.post("/aliases", json={"candidate_id": "missing"})
        assert resp.status == 404


@pytest.mark.asyncio
async def test_move_source_and_reset_usage(harness):
    async with api_client(harness) as client:
        resp = await client.post("/sources/web-search/move", json={"direction": "up"})
        data = await resp.json()
        assert data["moved"]
        assert data["order"] == ["app-list", "web-search", "calculator"]

        resp = await client.post("/sources/app-list/move", json={"direction": "up"})
        assert not (await resp.json())["moved"]

        resp = await client.post("/sources/web-search/move", json={"direction": "sideways"})
        assert resp.status == 400

        await client.get("/search", params={"q": "gm"})
        await client.post("/select", json={"id": GMAIL_ID})
        resp = await client.post("/usage/reset")
        assert resp.status == 200
        assert harness.daemon.engine.ledger.snapshot() == {}


@pytest.mark.asyncio
async def test_status_and_metrics(harness):
    async with api_client(harness) as client:
        await client.get("/search", params={"q": "maps"})

        resp = await client.get("/status")
        data = await resp.json()
        assert data["status"] == "running"
        assert [s["id"] for s in data["engine"]["sources"]] == ["app-list", "calculator", "web-search"]

        resp = await client.get("/metrics")
        assert "latencies" in json.loads(await resp.text())

        resp = await client.get("/metrics", params={"format": "prometheus"})
        assert "lookout_" in await resp.text()


@pytest.mark.asyncio
async def test_shutdown_request(harness):
    async with api_client(harness) as client:
        resp = await client.post("/shutdown")
        assert resp.status == 200

    await asyncio.wait_for(harness.daemon.wait_closed(), timeout=2)
