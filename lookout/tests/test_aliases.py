"""Tests for the alias index."""

from conftest import MemoryAliasStore

from lookout.daemon.aliases import AliasIndex, InsertResult
from lookout.daemon.models import AliasEntry, AppLaunchTarget, QuicklinkTarget, WebSearchTarget


GOOGLE = WebSearchTarget(site_id="google", display_name="Google")
MAPS = AppLaunchTarget(app_id="org.maps", label="Maps")


def test_boundary_rule():
    index = AliasIndex()
    index.insert("g", GOOGLE)

    match = index.resolve("g maps")
    assert match.entry.alias_key == "g"
    assert match.residual == "maps"

    assert index.resolve("github") is None


def test_exact_and_colon_boundary():
    index = AliasIndex()
    index.insert("yt", GOOGLE)

    assert index.resolve("yt").residual == ""
    assert index.resolve("yt:cats").residual == "cats"
    assert index.resolve("  YT   Cute Cats").residual == "Cute Cats"


def test_single_separator_is_dropped():
    index = AliasIndex()
    index.insert("g", GOOGLE)
    # one separator goes, then leading whitespace; a second ':' stays
    assert index.resolve("g::x").residual == ":x"
    assert index.resolve("g: x").residual == "x"


def test_blank_query_never_resolves():
    index = AliasIndex()
    index.insert("g", GOOGLE)
    assert index.resolve("") is None
    assert index.resolve("   ") is None


def test_first_match_wins_over_longest():
    index = AliasIndex()
    index.insert("g", GOOGLE)
    index.insert("g m", MAPS)

    match = index.resolve("g m paris")
    assert match.entry.target == GOOGLE
    assert match.residual == "m paris"


def test_insert_results():
    store = MemoryAliasStore()
    index = AliasIndex(store)

    assert index.insert("  Gm ", GOOGLE) is InsertResult.SUCCESS
    assert index.get("gm").alias_key == "gm"
    assert index.insert("GM", MAPS) is InsertResult.DUPLICATE
    assert index.insert("   ", MAPS) is InsertResult.INVALID_KEY
    assert len(store.saved) == 1
    assert [e.alias_key for e in store.saved[0]] == ["gm"]


def test_remove_is_noop_when_absent():
    store = MemoryAliasStore()
    index = AliasIndex(store)
    index.insert("gm", GOOGLE)

    index.remove("missing")
    assert len(store.saved) == 1

    index.remove("GM")
    assert index.resolve("gm") is None
    assert store.saved[-1] == []


def test_loads_from_persistence_and_skips_bad_entries():
    store = MemoryAliasStore([
        AliasEntry("gm", GOOGLE),
        AliasEntry("gm", MAPS),
        AliasEntry("  ", MAPS),
        "garbage",
        AliasEntry("maps", MAPS),
    ])
    index = AliasIndex(store)
    assert [e.alias_key for e in index.entries] == ["gm", "maps"]


def test_loaded_keys_are_normalized():
    index = AliasIndex(MemoryAliasStore([AliasEntry(" GH ", GOOGLE)]))

    assert [e.alias_key for e in index.entries] == ["gh"]
    assert index.get("gh").target == GOOGLE
    assert index.resolve("GH cats").residual == "cats"
    assert index.insert("gh", MAPS) is InsertResult.DUPLICATE
    assert len(index) == 1


def test_keys_that_expand_when_lowercased():
    index = AliasIndex()
    index.insert("İstanbul", GOOGLE)

    assert index.get("İstanbul").alias_key == "İstanbul".lower()
    assert index.resolve("İstanbul").residual == ""
    assert index.resolve("İstanbul x").residual == "x"
    assert index.resolve("İSTANBUL:Taksim").residual == "Taksim"
    assert index.resolve("İstanbulx") is None


def test_key_cannot_end_inside_an_expanded_character():
    index = AliasIndex()
    index.insert("i", GOOGLE)
    # "İ" lowers to "i" plus a combining dot, so "i" is only half of it
    assert index.resolve("İ x") is None
    assert index.resolve("i x").residual == "x"


def test_corrupt_persistence_means_no_aliases():
    index = AliasIndex(MemoryAliasStore(fail_load=True))
    assert len(index) == 0
    assert index.resolve("g maps") is None


def test_for_target_and_suggest_key():
    index = AliasIndex()
    index.insert("visual", MAPS)

    assert [e.alias_key for e in index.for_target(MAPS)] == ["visual"]
    assert index.for_target(GOOGLE) == []

    assert index.suggest_key("Visual Studio Code") == "visual2"
    assert index.suggest_key("Firefox") == "firefox"
    assert index.suggest_key("   ") == "alias"


def test_entry_round_trip_keeps_wire_names():
    entry = AliasEntry("docs", QuicklinkTarget(link_id="q1", title="Docs"), created_at=1700000000000)
    data = entry.to_dict()
    assert data == {
        "alias": "docs",
        "target": {"type": "quicklink", "quicklinkId": "q1", "title": "Docs"},
        "createdAt": 1700000000000,
    }
    assert AliasEntry.from_dict(data) == entry


def test_from_dict_rejects_malformed():
    assert AliasEntry.from_dict({"alias": "x"}) is None
    assert AliasEntry.from_dict({"alias": "", "target": MAPS.to_dict()}) is None
    assert AliasEntry.from_dict({"alias": "x", "target": {"type": "unknown"}}) is None
    assert AliasEntry.from_dict(["not", "a", "dict"]) is None
