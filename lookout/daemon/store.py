"""JSON file persistence for aliases, usage counters and source order."""

import asyncio
import json
import os
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, List, Mapping, Sequence

from loguru import logger

from .models import AliasEntry
from .usage import UsageCounters, sanitize_counters


# One thread, so writes land on disk in the order they were requested
_writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="lookout-store")


async def flush_writes() -> None:
    """Wait until every write requested so far is on disk."""
    await asyncio.get_running_loop().run_in_executor(_writer, lambda: None)


def _log_write_failure(future: Future) -> None:
    error = future.exception()
    if error is not None:
        logger.error(f"Background store write failed: {error}")


class JsonFileStore:
    """
    One JSON document on disk.

    Writes go to a temp file that is fsynced and renamed over the target,
    so a crash leaves either the old or the new document. Reads never
    raise: a missing, unreadable or malformed file yields `default`.
    """

    def __init__(self, path: Path, default: Any = None):
        self.path = Path(path)
        self.default = default

    def read(self) -> Any:
        if not self.path.exists():
            return self.default
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable {self.path.name}: {e}")
            return self.default

    def write(self, data: Any) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = self.path.with_suffix(self.path.suffix + ".tmp")

        with open(temp_file, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=False)
            f.flush()
            os.fsync(f.fileno())

        temp_file.replace(self.path)
        logger.debug(f"Wrote {self.path}")

    def save(self, data: Any) -> None:
        """
        Write `data` without blocking the event loop.

        Inside a running loop the write is handed to the store thread and
        `flush_writes()` waits for it; outside one it happens inline.
        `data` must not be mutated after the call.
        """
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            self.write(data)
            return
        _writer.submit(self.write, data).add_done_callback(_log_write_failure)


class AliasFileStore:
    """aliases.json: a list of serialized alias entries."""

    filename = "aliases.json"

    def __init__(self, data_dir: Path):
        self._file = JsonFileStore(Path(data_dir) / self.filename, default=[])

    @property
    def path(self) -> Path:
        return self._file.path

    def load_all(self) -> List[AliasEntry]:
        raw = self._file.read()
        if not isinstance(raw, list):
            logger.warning(f"{self.filename} is not a list, ignoring it")
            return []

        entries = []
        for item in raw:
            entry = AliasEntry.from_dict(item)
            if entry is None:
                logger.warning(f"Skipping malformed alias record: {item!r}")
                continue
            entries.append(entry)
        return entries

    def on_changed(self, entries: Sequence[AliasEntry]) -> None:
        self._file.save([entry.to_dict() for entry in entries])


class UsageFileStore:
    """usage.json: `{query: {candidate_id: count}}`."""

    filename = "usage.json"

    def __init__(self, data_dir: Path):
        self._file = JsonFileStore(Path(data_dir) / self.filename, default={})

    @property
    def path(self) -> Path:
        return self._file.path

    def load(self) -> UsageCounters:
        raw = self._file.read()
        if not isinstance(raw, dict):
            logger.warning(f"{self.filename} is not an object, ignoring it")
            return {}
        return sanitize_counters(raw)

    def on_changed(self, counters: Mapping[str, Mapping[str, int]]) -> None:
        self._file.save({query: dict(bucket) for query, bucket in counters.items()})


class SourceOrderFileStore:
    """source_order.json: a list of source ids, highest priority first."""

    filename = "source_order.json"

    def __init__(self, data_dir: Path):
        self._file = JsonFileStore(Path(data_dir) / self.filename, default=[])

    @property
    def path(self) -> Path:
        return self._file.path

    def load(self) -> List[str]:
        raw = self._file.read()
        if not isinstance(raw, list) or not all(isinstance(s, str) for s in raw):
            logger.warning(f"{self.filename} is malformed, ignoring it")
            return []
        return raw

    def on_changed(self, order: Sequence[str]) -> None:
        self._file.save(list(order))
