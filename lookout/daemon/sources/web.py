"""Web search source: quicklinks plus search-engine fallbacks."""

import hashlib
import re
import webbrowser
from dataclasses import dataclass
from typing import Callable, List, Optional

from .. import fuzzy
from ..config import Quicklink, WebSearchSettings, WebSearchSite
from ..models import Candidate, CandidateFlags, Query, QuicklinkTarget, WebSearchTarget
from .base import CancelToken, Source


DOMAIN_MATCH_PENALTY = 10
URL_RE = re.compile(
    r"^(?:[a-z][a-z0-9+.-]*://)?"
    r"(?:localhost|(?:[a-z0-9](?:[a-z0-9-]*[a-z0-9])?\.)+[a-z]{2,}|\d{1,3}(?:\.\d{1,3}){3})"
    r"(?::\d+)?(?:[/?#]\S*)?$",
    re.IGNORECASE,
)


def looks_like_url(text: str) -> bool:
    return " " not in text and URL_RE.match(text) is not None


def stable_digest(text: str) -> str:
    """Short digest that is identical across processes (unlike hash())."""
    return hashlib.sha1(text.encode("utf-8")).hexdigest()[:12]


def split_trigger(text: str) -> str:
    """Leading token up to the first whitespace or ':'."""
    match = re.match(r"[^\s:]*", text.lstrip())
    return match.group(0) if match else ""


def drop_trigger(text: str, trigger: str) -> str:
    stripped = text.lstrip()
    if not trigger or not stripped.lower().startswith(trigger.lower()):
        return stripped
    if len(stripped) > len(trigger) and not stripped[len(trigger)].isspace():
        return stripped
    return stripped[len(trigger):].lstrip()


@dataclass
class _ScoredQuicklink:
    quicklink: Quicklink
    score: int
    title_positions: tuple
    subtitle_positions: tuple


class WebSearchSource(Source):
    """
    Quicklinks first, then search sites.

    A leading trigger token that fuzzy-matches a site name (for example
    "yt cats" for YouTube) lists that site, searching the rest of the text,
    ahead of the default site, which always searches the full text. Site
    results are never promoted by usage learning.
    """

    id = "web-search"
    display_name = "Web Search"

    def __init__(
        self,
        settings: Optional[WebSearchSettings] = None,
        opener: Callable[[str], object] = webbrowser.open,
    ):
        settings = settings or WebSearchSettings()
        super().__init__(enabled=settings.enabled)
        self.settings = settings
        self._open = opener

    def accepts(self, query: Query) -> bool:
        text = query.normalized_text
        return bool(text) and not looks_like_url(text)

    async def search(self, query: Query, token: CancelToken) -> List[Candidate]:
        text = query.normalized_text
        if not text:
            return []
        return self._match_quicklinks(text) + self._match_sites(text)

    def _match_quicklinks(self, text: str) -> List[Candidate]:
        scored: List[_ScoredQuicklink] = []
        for link in self.settings.quicklinks:
            title_match = fuzzy.match(text, link.title)
            domain_match = fuzzy.match(text, link.domain())
            domain_score = domain_match.score - DOMAIN_MATCH_PENALTY if domain_match else None

            if title_match is not None and (domain_score is None or title_match.score >= domain_score):
                scored.append(_ScoredQuicklink(
                    link, title_match.score, title_match.matched_positions, (),
                ))
            elif domain_match is not None:
                scored.append(_ScoredQuicklink(link, domain_score, (), ()))

        scored.sort(key=lambda s: s.score, reverse=True)
        return [
            Candidate(
                id=f"{self.id}:quicklink:{s.quicklink.id}",
                title=s.quicklink.title,
                subtitle=s.quicklink.display_url(),
                source_id=self.id,
                rank_score=s.score,
                title_match_positions=s.title_positions,
                subtitle_match_positions=s.subtitle_positions,
                flags=CandidateFlags(keep_results_visible_after_action=True),
                action=self._opener_for(s.quicklink.url),
                alias_target=QuicklinkTarget(link_id=s.quicklink.id, title=s.quicklink.title),
            )
            for s in scored
        ]

    def _match_sites(self, text: str) -> List[Candidate]:
        sites = self.settings.sites
        if not sites:
            return []
        default = self.settings.site_for_id(self.settings.default_site_id) or sites[0]

        trigger = split_trigger(text)
        triggered: List[WebSearchSite] = []
        if trigger:
            matches = []
            for site in sites:
                if site.id == default.id:
                    continue
                result = fuzzy.match(trigger, site.display_name)
                if result is not None:
                    matches.append((result.score, site))
            # sort() is stable, equal scores keep configuration order
            matches.sort(key=lambda m: m[0], reverse=True)
            triggered = [site for _, site in matches]

        terms = drop_trigger(text, trigger).strip() or text
        candidates = []
        for site in triggered + [default]:
            site_query = text if site.id == default.id else terms
            subtitle = f"{site.display_name} (default)" if site.id == default.id else site.display_name
            candidates.append(Candidate(
                id=f"{self.id}:{site.id}:{stable_digest(site_query)}",
                title=f'Search "{site_query}"',
                subtitle=subtitle,
                source_id=self.id,
                rank_score=0,
                flags=CandidateFlags(
                    keep_results_visible_after_action=True,
                    exclude_from_usage_learning=True,
                ),
                action=self._opener_for(site.build_url(site_query)),
                alias_target=WebSearchTarget(site_id=site.id, display_name=site.display_name),
            ))
        return candidates

    def search_url(self, site_id: str, terms: str) -> Optional[str]:
        """URL for searching `terms` on a site, falling back to the default site."""
        site = self.settings.site_for_id(site_id) or self.settings.site_for_id(self.settings.default_site_id)
        return site.build_url(terms) if site else None

    def quicklink_url(self, link_id: str) -> Optional[str]:
        for link in self.settings.quicklinks:
            if link.id == link_id:
                return link.url
        return None

    def open_search(self, site_id: str, terms: str) -> Optional[str]:
        url = self.search_url(site_id, terms)
        if url is not None:
            self._open(url)
        return url

    def open_quicklink(self, link_id: str) -> Optional[str]:
        url = self.quicklink_url(link_id)
        if url is not None:
            self._open(url)
        return url

    def _opener_for(self, url: str) -> Callable[[], object]:
        return lambda: self._open(url)
