"""Usage counters keyed by normalized query text and candidate id."""

from typing import Dict, Mapping, Optional, Protocol

from loguru import logger


UsageCounters = Dict[str, Dict[str, int]]


class UsagePersistence(Protocol):
    """Storage collaborator for usage counters."""

    def load(self) -> Mapping[str, Mapping[str, int]]:
        ...

    def on_changed(self, counters: UsageCounters) -> None:
        ...


def normalize_query(query: str) -> str:
    return query.strip().lower()


def sanitize_counters(raw) -> UsageCounters:
    """Keep only well-formed `{query: {id: count >= 0}}` entries."""
    counters: UsageCounters = {}
    if not isinstance(raw, Mapping):
        return counters

    for query, bucket in raw.items():
        if not isinstance(query, str) or not isinstance(bucket, Mapping):
            continue
        clean = {
            candidate_id: count
            for candidate_id, count in bucket.items()
            if isinstance(candidate_id, str)
            and isinstance(count, int)
            and not isinstance(count, bool)
            and count >= 0
        }
        if clean:
            key = normalize_query(query)
            merged = counters.setdefault(key, {})
            for candidate_id, count in clean.items():
                merged[candidate_id] = merged.get(candidate_id, 0) + count
    return counters


class UsageLedger:
    """
    Read/write contract for selection counts.

    Counts only grow, except through reset(). Every change is handed to
    the persistence collaborator; the ledger never touches storage itself.
    """

    def __init__(self, persistence: Optional[UsagePersistence] = None):
        self._persistence = persistence
        self._counters: UsageCounters = self._load()
        self._global: Dict[str, int] = self._aggregate(self._counters)

    def _load(self) -> UsageCounters:
        if self._persistence is None:
            return {}
        try:
            raw = self._persistence.load()
        except Exception as e:
            logger.warning(f"Could not load usage counters, starting empty: {e}")
            return {}

        counters = sanitize_counters(raw)
        logger.debug(f"Loaded usage counters for {len(counters)} queries")
        return counters

    @staticmethod
    def _aggregate(counters: UsageCounters) -> Dict[str, int]:
        totals: Dict[str, int] = {}
        for bucket in counters.values():
            for candidate_id, count in bucket.items():
                totals[candidate_id] = totals.get(candidate_id, 0) + count
        return totals

    def count(self, query: str, candidate_id: str) -> int:
        return self._counters.get(normalize_query(query), {}).get(candidate_id, 0)

    def global_count(self, candidate_id: str) -> int:
        return self._global.get(candidate_id, 0)

    def bucket(self, query: str) -> Dict[str, int]:
        return dict(self._counters.get(normalize_query(query), {}))

    def snapshot(self) -> UsageCounters:
        """Deep copy of all counters, safe to hold for a whole turn."""
        return {query: dict(bucket) for query, bucket in self._counters.items()}

    def global_snapshot(self) -> Dict[str, int]:
        """Counts summed over every query bucket."""
        return dict(self._global)

    def increment(self, query: str, candidate_id: str) -> int:
        """Add one selection and return the new count."""
        key = normalize_query(query)
        bucket = self._counters.setdefault(key, {})
        bucket[candidate_id] = bucket.get(candidate_id, 0) + 1
        self._global[candidate_id] = self._global.get(candidate_id, 0) + 1

        self._persist()
        return bucket[candidate_id]

    def reset(self) -> None:
        self._counters = {}
        self._global = {}
        self._persist()
        logger.info("Usage counters reset")

    def _persist(self) -> None:
        if self._persistence is None:
            return
        try:
            self._persistence.on_changed(self.snapshot())
        except Exception as e:
            logger.error(f"Failed to persist usage counters: {e}")
