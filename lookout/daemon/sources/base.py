"""Capability contract every result source implements."""

import asyncio
from abc import ABC, abstractmethod
from typing import List, Optional

from loguru import logger

from ..error_handling import ErrorTracker, FailureKind, get_error_tracker
from ..models import Candidate, Query


class CancelToken:
    """
    Turn-scoped cancellation signal.

    Sources check `cancelled` at their I/O boundaries and return whatever
    they have (or nothing) once it is set.
    """

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class Source(ABC):
    """
    Base class for result sources.

    Subclasses set `id` and `display_name` and implement `accepts()` and
    `search()`. Callers use `resolve()`, which never raises: any error
    inside `search()` becomes an empty result for that source only.
    """

    id: str = ""
    display_name: str = ""

    def __init__(self, enabled: bool = True, error_tracker: Optional[ErrorTracker] = None):
        self.enabled = enabled
        self.error_tracker = error_tracker or get_error_tracker()

    async def initialize(self) -> None:
        """Optional hook for heavy setup, called once by the daemon."""

    async def close(self) -> None:
        """Optional cleanup hook."""

    @abstractmethod
    def accepts(self, query: Query) -> bool:
        """Cheap, side-effect-free check run on every keystroke. No I/O."""

    @abstractmethod
    async def search(self, query: Query, token: CancelToken) -> List[Candidate]:
        """Produce candidates for the query. May perform I/O."""

    async def resolve(self, query: Query, token: CancelToken) -> List[Candidate]:
        if token.cancelled:
            return []
        try:
            candidates = list(await self.search(query, token))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Source {self.id} failed for {query.normalized_text!r}: {e}")
            self.error_tracker.record_failure(self.id, FailureKind.ERROR, e)
            return []

        self.error_tracker.record_success(self.id)
        return candidates

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id!r} enabled={self.enabled}>"
