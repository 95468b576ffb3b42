"""Ranking policy: manual source priority or learned usage frequency."""

from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from loguru import logger

from .models import Candidate
from .usage import UsageLedger, normalize_query


class SourceOrderPersistence(Protocol):
    """Storage collaborator for the source priority order."""

    def load(self) -> Sequence[str]:
        ...

    def on_changed(self, order: Sequence[str]) -> None:
        ...


class Direction(Enum):
    UP = "up"
    DOWN = "down"


def normalize_order(order: Sequence[str], registered: Sequence[str]) -> Tuple[str, ...]:
    """
    Turn any stored order into a permutation of the registered ids.

    Unknown ids and duplicates are dropped; registered ids missing from
    `order` are appended in registration order.
    """
    known = set(registered)
    result: List[str] = []
    for source_id in order:
        if source_id in known and source_id not in result:
            result.append(source_id)
    for source_id in registered:
        if source_id not in result:
            result.append(source_id)
    return tuple(result)


class RankingPolicy:
    """
    Merges per-source candidate groups into one ordered list.

    Manual mode concatenates groups in source order. Frequency mode sorts by
    (frequency rank, source rank, -rank score) where the frequency rank is
    the bucket's max count minus the candidate's count.
    """

    def __init__(
        self,
        registered_ids: Sequence[str],
        ledger: UsageLedger,
        persistence: Optional[SourceOrderPersistence] = None,
    ):
        self.registered_ids = tuple(registered_ids)
        self.ledger = ledger
        self._persistence = persistence
        self._order = normalize_order(self._load_order(), self.registered_ids)

    def _load_order(self) -> Sequence[str]:
        if self._persistence is None:
            return self.registered_ids
        try:
            stored = self._persistence.load()
        except Exception as e:
            logger.warning(f"Could not load source order, using defaults: {e}")
            return self.registered_ids
        if not isinstance(stored, (list, tuple)) or not all(isinstance(s, str) for s in stored):
            logger.warning("Stored source order is malformed, using defaults")
            return self.registered_ids
        return stored

    @property
    def source_order(self) -> Tuple[str, ...]:
        return self._order

    def set_source_order(self, order: Sequence[str]) -> None:
        self._order = normalize_order(order, self.registered_ids)
        self._persist()

    def source_rank(self, source_id: str, source_order: Optional[Sequence[str]] = None) -> int:
        order = self._order if source_order is None else source_order
        try:
            return list(order).index(source_id)
        except ValueError:
            return len(order)

    @staticmethod
    def frequency_rank(
        candidate_id: str,
        normalized_query: str,
        usage: Mapping[str, Mapping[str, int]],
    ) -> int:
        """Inverted count: the most used candidate in the bucket gets 0."""
        bucket = usage.get(normalize_query(normalized_query), {})
        max_count = max(bucket.values(), default=0)
        return max_count - bucket.get(candidate_id, 0)

    def order(
        self,
        grouped: Mapping[str, Sequence[Candidate]],
        source_order: Sequence[str],
        usage: Mapping[str, Mapping[str, int]],
        use_frequency_ranking: bool,
        normalized_query: str,
    ) -> List[Candidate]:
        """
        Produce the final candidate sequence for one turn.

        The result depends only on the candidate groups, the source order
        and the usage snapshot, never on which source finished first.

        Args:
            grouped: Source id -> candidates in the source's own order
            source_order: Source priority snapshot for this turn
            usage: Usage counters snapshot for this turn
            use_frequency_ranking: Frequency mode when True, manual otherwise
            normalized_query: Query text used to pick the usage bucket

        Returns:
            Flat ordered list of candidates
        """
        ranks: Dict[str, int] = {source_id: i for i, source_id in enumerate(source_order)}
        group_ids = sorted(grouped, key=lambda s: ranks.get(s, len(ranks)))
        # sorted() is stable, so unknown sources keep their group order

        flat: List[Candidate] = []
        for source_id in group_ids:
            flat.extend(grouped[source_id])

        if not use_frequency_ranking:
            return flat

        bucket = usage.get(normalize_query(normalized_query), {})
        max_count = max(bucket.values(), default=0)

        def sort_key(candidate: Candidate) -> Tuple[int, int, int]:
            if candidate.flags.exclude_from_usage_learning:
                frequency = max_count
            else:
                frequency = max_count - bucket.get(candidate.id, 0)
            source_rank = ranks.get(candidate.source_id, len(ranks))
            return frequency, source_rank, -(candidate.rank_score or 0)

        return sorted(flat, key=sort_key)

    def reorder_sources(
        self,
        source_id: str,
        direction: Direction,
        is_enabled: Callable[[str], bool],
    ) -> bool:
        """
        Move a source one step, skipping disabled neighbours.

        Returns True when the order changed.
        """
        order = list(self._order)
        if source_id not in order:
            return False

        index = order.index(source_id)
        if direction is Direction.UP:
            neighbours = range(index - 1, -1, -1)
        else:
            neighbours = range(index + 1, len(order))

        target = next((i for i in neighbours if is_enabled(order[i])), None)
        if target is None:
            return False

        order[index], order[target] = order[target], order[index]
        self._order = tuple(order)
        self._persist()
        logger.info(f"Moved source {source_id} {direction.value}: {', '.join(self._order)}")
        return True

    def record_selection(
        self,
        candidate_id: str,
        normalized_query: str,
        exclude_from_usage_learning: bool = False,
    ) -> Optional[int]:
        """Count a selection. Returns the new count, or None when excluded."""
        if exclude_from_usage_learning:
            return None
        return self.ledger.increment(normalized_query, candidate_id)

    def _persist(self) -> None:
        if self._persistence is None:
            return
        try:
            self._persistence.on_changed(list(self._order))
        except Exception as e:
            logger.error(f"Failed to persist source order: {e}")
