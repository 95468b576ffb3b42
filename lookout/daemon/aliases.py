"""Alias (shortcut) index with first-match prefix resolution."""

from dataclasses import replace
from enum import Enum
from typing import List, Optional, Protocol, Sequence, Tuple

from loguru import logger

from .models import AliasEntry, AliasMatch, AliasTarget


ALIAS_SEPARATOR = ":"


class AliasPersistence(Protocol):
    """Storage collaborator for alias entries."""

    def load_all(self) -> Sequence[AliasEntry]:
        ...

    def on_changed(self, entries: Sequence[AliasEntry]) -> None:
        ...


class InsertResult(Enum):
    """Outcome of an alias insertion."""
    SUCCESS = "success"
    DUPLICATE = "duplicate"
    INVALID_KEY = "invalid_key"


def normalize_key(alias_key: str) -> str:
    return alias_key.strip().lower()


def lower_with_offsets(text: str) -> Tuple[str, List[int]]:
    """
    Lowercase `text` and map each lowered index back to its source index.

    str.lower() expands a few code points ("İ" becomes two characters), so
    positions in the lowered string cannot be used on the original directly.
    The returned list has one extra slot holding len(text).
    """
    parts: List[str] = []
    offsets: List[int] = []
    for index, char in enumerate(text):
        lowered = char.lower()
        parts.append(lowered)
        offsets.extend([index] * len(lowered))
    offsets.append(len(text))
    return "".join(parts), offsets


class AliasIndex:
    """
    Ordered list of user-defined shortcuts.

    Lookup walks entries in insertion order and returns the first key that
    matches with a valid boundary, not the longest one.
    """

    def __init__(self, persistence: Optional[AliasPersistence] = None):
        self._persistence = persistence
        self._entries: List[AliasEntry] = self._load()

    def _load(self) -> List[AliasEntry]:
        if self._persistence is None:
            return []

        try:
            loaded = list(self._persistence.load_all())
        except Exception as e:
            logger.warning(f"Could not load aliases, starting empty: {e}")
            return []

        entries: List[AliasEntry] = []
        seen = set()
        for entry in loaded:
            if not isinstance(entry, AliasEntry):
                logger.warning(f"Skipping malformed alias entry: {entry!r}")
                continue
            key = normalize_key(entry.alias_key)
            if not key or key in seen:
                logger.warning(f"Skipping invalid or duplicate alias: {entry.alias_key!r}")
                continue
            seen.add(key)
            if key != entry.alias_key:
                entry = replace(entry, alias_key=key)
            entries.append(entry)

        logger.debug(f"Loaded {len(entries)} aliases")
        return entries

    @property
    def entries(self) -> List[AliasEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, alias_key: str) -> Optional[AliasEntry]:
        key = normalize_key(alias_key)
        for entry in self._entries:
            if entry.alias_key == key:
                return entry
        return None

    def for_target(self, target: AliasTarget) -> List[AliasEntry]:
        """Aliases already bound to `target`."""
        return [entry for entry in self._entries if entry.target == target]

    def resolve(self, query: str) -> Optional[AliasMatch]:
        """
        Resolve raw query text to an alias hit.

        A key matches when the lowercased text equals it, or starts with it
        and the next character is whitespace or ':'. The residual drops the
        key and one separator character, then leading whitespace; its case
        is preserved.

        Args:
            query: Raw text from the search field

        Returns:
            AliasMatch for the first matching entry, or None
        """
        text = query.lstrip()
        if not text:
            return None
        text_lower, offsets = lower_with_offsets(text)

        for entry in self._entries:
            key = entry.alias_key
            if not text_lower.startswith(key):
                continue

            # key must end on a whole source character
            end = offsets[len(key)]
            if len(key) < len(text_lower) and end == offsets[len(key) - 1]:
                continue

            if end == len(text):
                return AliasMatch(entry=entry, residual="")

            boundary = text[end]
            if not boundary.isspace() and boundary != ALIAS_SEPARATOR:
                continue

            return AliasMatch(entry=entry, residual=text[end + 1:].lstrip())

        return None

    def insert(self, alias_key: str, target: AliasTarget) -> InsertResult:
        """Add a new alias. Existing keys are never overwritten."""
        key = normalize_key(alias_key)
        if not key:
            return InsertResult.INVALID_KEY
        if any(entry.alias_key == key for entry in self._entries):
            logger.debug(f"Alias already exists: {key}")
            return InsertResult.DUPLICATE

        self._entries.append(AliasEntry(alias_key=key, target=target))
        self._persist()
        logger.info(f"Added alias '{key}' -> {target.summary}")
        return InsertResult.SUCCESS

    def remove(self, alias_key: str) -> None:
        key = normalize_key(alias_key)
        remaining = [entry for entry in self._entries if entry.alias_key != key]
        if len(remaining) == len(self._entries):
            return

        self._entries = remaining
        self._persist()
        logger.info(f"Removed alias '{key}'")

    def suggest_key(self, label: str) -> str:
        """
        Suggest a free alias key for a label.

        Uses the first word of the label, lowercased, and appends a number
        when that key is taken.
        """
        words = label.strip().lower().split()
        base = words[0] if words else "alias"
        base = base.rstrip(ALIAS_SEPARATOR) or "alias"

        candidate = base
        suffix = 2
        while self.get(candidate) is not None:
            candidate = f"{base}{suffix}"
            suffix += 1
        return candidate

    def _persist(self) -> None:
        if self._persistence is None:
            return
        try:
            self._persistence.on_changed(list(self._entries))
        except Exception as e:
            logger.error(f"Failed to persist aliases: {e}")
