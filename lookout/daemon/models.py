"""Data models for the lookout query engine."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Union


class QueryOrigin(Enum):
    """Where a query came from."""
    USER_INPUT = "user_input"
    SHORTCUT = "shortcut"
    PROGRAMMATIC = "programmatic"


@dataclass(frozen=True)
class Query:
    """One submitted query. Blank text is a valid query ("show defaults")."""
    raw_text: str
    origin: QueryOrigin = QueryOrigin.USER_INPUT

    @property
    def normalized_text(self) -> str:
        return self.raw_text.strip()

    @property
    def is_blank(self) -> bool:
        return not self.normalized_text


@dataclass(frozen=True)
class MatchResult:
    """Fuzzy match score plus the matched character positions in the target."""
    score: int
    matched_positions: Tuple[int, ...] = ()


# Alias targets. Serialized with the same field names the launcher has
# always written to disk.

@dataclass(frozen=True)
class WebSearchTarget:
    site_id: str
    display_name: str

    type_tag = "web-search"

    @property
    def summary(self) -> str:
        return self.display_name

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type_tag, "siteId": self.site_id, "displayName": self.display_name}


@dataclass(frozen=True)
class AppLaunchTarget:
    app_id: str
    label: str

    type_tag = "app-launch"

    @property
    def summary(self) -> str:
        return self.label

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type_tag, "packageName": self.app_id, "label": self.label}


@dataclass(frozen=True)
class QuicklinkTarget:
    link_id: str
    title: str

    type_tag = "quicklink"

    @property
    def summary(self) -> str:
        return self.title

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type_tag, "quicklinkId": self.link_id, "title": self.title}


AliasTarget = Union[WebSearchTarget, AppLaunchTarget, QuicklinkTarget]


def _non_blank(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if isinstance(value, str) and value.strip():
        return value
    return None


def alias_target_from_dict(data: Any) -> Optional[AliasTarget]:
    """Parse a serialized alias target. Returns None for anything malformed."""
    if not isinstance(data, dict):
        return None

    kind = data.get("type")
    if kind == WebSearchTarget.type_tag:
        site_id, name = _non_blank(data, "siteId"), _non_blank(data, "displayName")
        return WebSearchTarget(site_id, name) if site_id and name else None
    if kind == AppLaunchTarget.type_tag:
        app_id, label = _non_blank(data, "packageName"), _non_blank(data, "label")
        return AppLaunchTarget(app_id, label) if app_id and label else None
    if kind == QuicklinkTarget.type_tag:
        link_id, title = _non_blank(data, "quicklinkId"), _non_blank(data, "title")
        return QuicklinkTarget(link_id, title) if link_id and title else None
    return None


@dataclass(frozen=True)
class AliasEntry:
    """A user-defined shortcut. `alias_key` is stored lowercase and trimmed."""
    alias_key: str
    target: AliasTarget
    created_at: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alias": self.alias_key,
            "target": self.target.to_dict(),
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Optional["AliasEntry"]:
        if not isinstance(data, dict):
            return None
        key = _non_blank(data, "alias")
        target = alias_target_from_dict(data.get("target"))
        if key is None or target is None:
            return None
        created_at = data.get("createdAt")
        if not isinstance(created_at, int) or isinstance(created_at, bool):
            created_at = int(time.time() * 1000)
        return cls(alias_key=key.strip().lower(), target=target, created_at=created_at)


@dataclass(frozen=True)
class AliasMatch:
    """An alias hit plus whatever the user typed after the key."""
    entry: AliasEntry
    residual: str


@dataclass(frozen=True)
class CandidateFlags:
    keep_results_visible_after_action: bool = False
    exclude_from_usage_learning: bool = False


@dataclass
class Candidate:
    """One orderable result produced by a source for a single turn."""
    id: str
    title: str
    source_id: str
    subtitle: Optional[str] = None
    rank_score: Optional[int] = None  # None until scored
    title_match_positions: Tuple[int, ...] = ()
    subtitle_match_positions: Tuple[int, ...] = ()
    flags: CandidateFlags = field(default_factory=CandidateFlags)
    action: Optional[Callable[[], Any]] = None
    alias_target: Optional[AliasTarget] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "subtitle": self.subtitle,
            "source": self.source_id,
            "score": self.rank_score,
            "title_matches": list(self.title_match_positions),
            "subtitle_matches": list(self.subtitle_match_positions),
            "keep_visible": self.flags.keep_results_visible_after_action,
            "exclude_from_usage": self.flags.exclude_from_usage_learning,
            "alias_target": self.alias_target.to_dict() if self.alias_target else None,
        }
