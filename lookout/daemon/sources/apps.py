"""Application catalog source backed by freedesktop .desktop entries."""

import asyncio
import configparser
import re
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence

from loguru import logger

from .. import fuzzy
from ..config import AppSearchSettings
from ..models import AppLaunchTarget, Candidate, CandidateFlags, Query
from .base import CancelToken, Source


FIELD_CODE_RE = re.compile(r"%[fFuUdDnNickvm]")


@dataclass(frozen=True)
class AppEntry:
    """A launchable application."""
    app_id: str
    label: str
    command: Optional[str] = None


def parse_desktop_file(path: Path) -> Optional[AppEntry]:
    """Read one .desktop file. Hidden, NoDisplay and non-Application entries are skipped."""
    parser = configparser.ConfigParser(interpolation=None, strict=False)
    parser.optionxform = str
    try:
        parser.read(path, encoding="utf-8")
    except (configparser.Error, OSError, UnicodeDecodeError) as e:
        logger.debug(f"Skipping unreadable desktop file {path}: {e}")
        return None

    if not parser.has_section("Desktop Entry"):
        return None
    section = parser["Desktop Entry"]

    if section.get("Type", "Application") != "Application":
        return None
    if section.get("NoDisplay", "false").lower() == "true" or section.get("Hidden", "false").lower() == "true":
        return None

    label = section.get("Name", "").strip()
    if not label:
        return None
    return AppEntry(app_id=path.stem, label=label, command=section.get("Exec"))


def load_desktop_entries(directories: Iterable[Path]) -> List[AppEntry]:
    entries = {}
    for directory in directories:
        directory = Path(directory).expanduser()
        if not directory.is_dir():
            continue
        for path in sorted(directory.glob("*.desktop")):
            entry = parse_desktop_file(path)
            # later directories (user overrides) replace earlier ones
            if entry is not None:
                entries[entry.app_id] = entry
    return list(entries.values())


def launch_command(entry: AppEntry) -> None:
    """Spawn an app's Exec line, dropping desktop-entry field codes."""
    if not entry.command:
        logger.warning(f"No command for app {entry.app_id}")
        return
    argv = shlex.split(FIELD_CODE_RE.sub("", entry.command))
    if not argv:
        return
    logger.info(f"Launching {entry.label}: {argv[0]}")
    subprocess.Popen(argv, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, start_new_session=True)


@dataclass
class _ScoredApp:
    app: AppEntry
    score: int
    matched: tuple


class AppCatalogSource(Source):
    """
    Fuzzy search over installed applications.

    A blank query lists the catalog alphabetically. Otherwise each app is
    matched on its label and, when enabled, its app id; id matches do not
    highlight the title.
    """

    id = "app-list"
    display_name = "Applications"

    def __init__(
        self,
        settings: Optional[AppSearchSettings] = None,
        catalog: Optional[Sequence[AppEntry]] = None,
        launcher: Callable[[AppEntry], None] = launch_command,
    ):
        settings = settings or AppSearchSettings()
        super().__init__(enabled=settings.enabled)
        self.settings = settings
        self._launcher = launcher
        self._apps: List[AppEntry] = self._sorted(catalog) if catalog is not None else []
        self._static_catalog = catalog is not None

    @staticmethod
    def _sorted(apps: Iterable[AppEntry]) -> List[AppEntry]:
        unique = {app.app_id: app for app in apps}
        return sorted(unique.values(), key=lambda a: a.label.lower())

    @property
    def apps(self) -> List[AppEntry]:
        return list(self._apps)

    async def initialize(self) -> None:
        if self._static_catalog:
            return
        loaded = await asyncio.to_thread(load_desktop_entries, self.settings.desktop_dirs)
        extra = [AppEntry(a.app_id, a.label, a.command) for a in self.settings.extra_apps]
        self._apps = self._sorted(loaded + extra)
        logger.info(f"Application catalog loaded: {len(self._apps)} apps")

    def get(self, app_id: str) -> Optional[AppEntry]:
        for app in self._apps:
            if app.app_id == app_id:
                return app
        return None

    def launch(self, app_id: str) -> bool:
        app = self.get(app_id)
        if app is None:
            logger.warning(f"App {app_id} is not in the catalog")
            return False
        self._launcher(app)
        return True

    def accepts(self, query: Query) -> bool:
        return True

    async def search(self, query: Query, token: CancelToken) -> List[Candidate]:
        text = query.normalized_text

        if not text:
            scored = [_ScoredApp(app, 0, ()) for app in self._apps]
        else:
            scored = []
            for app in self._apps:
                label_match = fuzzy.match(text, app.label)
                id_match = fuzzy.match(text, app.app_id) if self.settings.include_package_name else None

                if label_match is None and id_match is None:
                    continue
                if label_match is not None and (id_match is None or label_match.score >= id_match.score):
                    scored.append(_ScoredApp(app, label_match.score, label_match.matched_positions))
                else:
                    scored.append(_ScoredApp(app, id_match.score, ()))
            scored.sort(key=lambda s: s.score, reverse=True)

        return [self._to_candidate(s) for s in scored[:self.settings.max_results]]

    def _to_candidate(self, scored: _ScoredApp) -> Candidate:
        app = scored.app
        return Candidate(
            id=f"{self.id}:{app.app_id}",
            title=app.label,
            subtitle=app.app_id,
            source_id=self.id,
            rank_score=scored.score,
            title_match_positions=scored.matched,
            flags=CandidateFlags(keep_results_visible_after_action=True),
            action=lambda: self._launcher(app),
            alias_target=AppLaunchTarget(app_id=app.app_id, label=app.label),
        )
