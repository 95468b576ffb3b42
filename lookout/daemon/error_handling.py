"""Source failure tracking.

Failures never escalate to the caller: a source that raises or runs past
its budget simply contributes no candidates for that turn. This module
keeps the record of those failures so the daemon can report per-source
health:
- Failure classification (error vs. timeout)
- Bounded failure history per source
- Health state derived from consecutive failures
"""

import traceback
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

from loguru import logger


class FailureKind(Enum):
    """How a source failed for a turn."""
    ERROR = "error"
    TIMEOUT = "timeout"


class SourceState(Enum):
    """Source health states."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    FAILING = "failing"


@dataclass
class SourceFailure:
    """Represents one failed resolve call."""
    timestamp: datetime
    source_id: str
    kind: FailureKind
    message: str
    error_type: Optional[str] = None
    traceback: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp.isoformat(),
            'source': self.source_id,
            'kind': self.kind.value,
            'error_type': self.error_type,
            'message': self.message,
        }


@dataclass
class SourceHealth:
    """Tracks health of a single source."""
    source_id: str
    success_count: int = 0
    failure_count: int = 0
    timeout_count: int = 0
    consecutive_failures: int = 0
    last_failure: Optional[SourceFailure] = None
    last_success: Optional[datetime] = None

    degraded_after: int = 1
    failing_after: int = 5

    @property
    def state(self) -> SourceState:
        if self.consecutive_failures >= self.failing_after:
            return SourceState.FAILING
        if self.consecutive_failures >= self.degraded_after:
            return SourceState.DEGRADED
        return SourceState.HEALTHY

    @property
    def error_rate(self) -> float:
        total = self.success_count + self.failure_count
        if total == 0:
            return 0.0
        return self.failure_count / total

    def to_dict(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'successes': self.success_count,
            'failures': self.failure_count,
            'timeouts': self.timeout_count,
            'consecutive_failures': self.consecutive_failures,
            'error_rate': round(self.error_rate, 3),
            'last_failure': self.last_failure.to_dict() if self.last_failure else None,
        }


class ErrorTracker:
    """Collects source failures and successes for health reporting."""

    def __init__(self, history_size: int = 50, failing_after: int = 5):
        """
        Initialize error tracker.

        Args:
            history_size: Failures kept per source
            failing_after: Consecutive failures before a source reports FAILING
        """
        self.history_size = history_size
        self.failing_after = failing_after
        self._health: Dict[str, SourceHealth] = {}
        self._history: Dict[str, Deque[SourceFailure]] = defaultdict(
            lambda: deque(maxlen=self.history_size)
        )

    def health(self, source_id: str) -> SourceHealth:
        if source_id not in self._health:
            self._health[source_id] = SourceHealth(
                source_id=source_id, failing_after=self.failing_after
            )
        return self._health[source_id]

    def record_success(self, source_id: str) -> None:
        health = self.health(source_id)
        if health.state is not SourceState.HEALTHY:
            logger.info(f"Source {source_id} recovered after {health.consecutive_failures} failures")
        health.success_count += 1
        health.consecutive_failures = 0
        health.last_success = datetime.now()

    def record_failure(
        self,
        source_id: str,
        kind: FailureKind,
        error: Optional[BaseException] = None,
    ) -> SourceFailure:
        health = self.health(source_id)
        failure = SourceFailure(
            timestamp=datetime.now(),
            source_id=source_id,
            kind=kind,
            message=str(error) if error else kind.value,
            error_type=type(error).__name__ if error else None,
            traceback=(
                "".join(traceback.format_exception(type(error), error, error.__traceback__))
                if error else None
            ),
        )

        health.failure_count += 1
        health.consecutive_failures += 1
        if kind is FailureKind.TIMEOUT:
            health.timeout_count += 1
        health.last_failure = failure
        self._history[source_id].append(failure)

        if health.consecutive_failures == health.failing_after:
            logger.warning(
                f"Source {source_id} failed {health.consecutive_failures} turns in a row"
            )
        return failure

    def recent_failures(self, source_id: str) -> List[SourceFailure]:
        return list(self._history.get(source_id, ()))

    def report(self) -> Dict[str, Dict[str, Any]]:
        return {source_id: health.to_dict() for source_id, health in sorted(self._health.items())}

    def reset(self) -> None:
        self._health.clear()
        self._history.clear()


# Global error tracker instance
_error_tracker: Optional[ErrorTracker] = None


def get_error_tracker() -> ErrorTracker:
    """Get the global error tracker instance."""
    global _error_tracker
    if _error_tracker is None:
        _error_tracker = ErrorTracker()
    return _error_tracker
