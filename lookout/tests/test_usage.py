"""Tests for the usage ledger."""

from conftest import MemoryUsageStore

from lookout.daemon.usage import UsageLedger, sanitize_counters


def test_increment_counts_exactly_n():
    store = MemoryUsageStore()
    ledger = UsageLedger(store)

    for _ in range(4):
        ledger.increment("gm", "app-list:gmail")

    assert ledger.count("gm", "app-list:gmail") == 4
    assert len(store.saved) == 4
    assert store.saved[-1] == {"gm": {"app-list:gmail": 4}}


def test_buckets_are_normalized():
    ledger = UsageLedger()
    ledger.increment("Gmail ", "a")
    ledger.increment("gmail", "a")
    assert ledger.count("GMAIL", "a") == 2
    assert ledger.bucket(" gmail") == {"a": 2}


def test_snapshot_is_detached():
    ledger = UsageLedger()
    ledger.increment("q", "a")
    snapshot = ledger.snapshot()
    ledger.increment("q", "a")
    assert snapshot == {"q": {"a": 1}}


def test_global_counts_sum_buckets():
    ledger = UsageLedger(MemoryUsageStore({"a": {"x": 2}, "b": {"x": 1, "y": 4}}))
    assert ledger.global_count("x") == 3
    assert ledger.global_snapshot() == {"x": 3, "y": 4}

    ledger.increment("c", "x")
    assert ledger.global_count("x") == 4


def test_reset_clears_and_persists():
    store = MemoryUsageStore({"q": {"a": 3}})
    ledger = UsageLedger(store)
    ledger.reset()
    assert ledger.snapshot() == {}
    assert ledger.global_snapshot() == {}
    assert store.saved[-1] == {}


def test_malformed_data_gives_empty_counters():
    assert UsageLedger(MemoryUsageStore(["not", "a", "mapping"])).snapshot() == {}

    class Broken:
        def load(self):
            raise OSError("disk gone")

        def on_changed(self, counters):
            pass

    assert UsageLedger(Broken()).snapshot() == {}


def test_sanitize_drops_bad_values_and_merges_buckets():
    raw = {
        "Q": {"a": 1, "b": -1, "c": "3", "d": True},
        "q ": {"a": 2},
        "r": "nope",
        5: {"a": 1},
    }
    assert sanitize_counters(raw) == {"q": {"a": 3}}
