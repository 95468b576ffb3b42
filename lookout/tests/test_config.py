"""Tests for YAML configuration loading."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from lookout.daemon.config import Config, EngineConfig, WebSearchSite


def test_defaults():
    config = Config()
    assert config.engine.source_timeout_ms == 250
    assert config.engine.use_frequency_ranking
    assert config.engine.query_based_ranking
    assert config.api.port == 8765
    assert config.sources.web.default_site_id == "bing"
    assert config.data_dir == Path("~/.local/share/lookout").expanduser()


def test_load_yaml(tmp_path: Path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "data_dir: " + str(tmp_path / "data") + "\n"
        "engine:\n"
        "  source_timeout_ms: 100\n"
        "  use_frequency_ranking: false\n"
        "sources:\n"
        "  calculator:\n"
        "    enabled: false\n"
        "  web:\n"
        "    default_site_id: google\n"
        "    quicklinks:\n"
        "      - {id: docs, title: Docs, url: 'https://docs.example.org'}\n"
    )
    config = Config.load(path)

    assert config.data_dir == tmp_path / "data"
    assert config.engine.source_timeout_ms == 100
    assert not config.engine.use_frequency_ranking
    assert not config.sources.calculator.enabled
    assert config.sources.apps.enabled
    assert config.sources.web.default_site_id == "google"
    assert config.sources.web.quicklinks[0].domain() == "docs.example.org"


def test_missing_file_gives_defaults(tmp_path: Path):
    assert Config.load(tmp_path / "nope.yaml") == Config()


@pytest.mark.parametrize("content", [
    "engine: [not, a, mapping",
    "- just\n- a list\n",
    "engine:\n  source_timeout_ms: -5\n",
    "api:\n  port: not-a-number\n",
])
def test_broken_config_gives_defaults(tmp_path: Path, content: str):
    path = tmp_path / "config.yaml"
    path.write_text(content)
    assert Config.load(path) == Config()


def test_save_round_trip(tmp_path: Path):
    config = Config(engine=EngineConfig(max_results=7), data_dir=tmp_path)
    path = tmp_path / "out" / "config.yaml"
    config.save(path)
    assert Config.load(path) == config


def test_engine_rejects_non_positive_values():
    with pytest.raises(ValidationError):
        EngineConfig(max_results=0)


def test_site_url_building():
    site = WebSearchSite(id="x", display_name="X", url_template="https://x.test/find?q={query}")
    assert site.build_url("a&b c") == "https://x.test/find?q=a%26b%20c"

    bare = WebSearchSite(id="y", display_name="Y", url_template="https://y.test/search")
    assert bare.build_url("cats") == "https://y.test/search?q=cats"
