"""Carries out alias targets handed over by the engine."""

from typing import Optional

from loguru import logger

from .models import AliasTarget, AppLaunchTarget, QuicklinkTarget, WebSearchTarget
from .sources.apps import AppCatalogSource
from .sources.web import WebSearchSource


class TargetLauncher:
    """
    Alias handler backed by the reference sources.

    Web search targets search the alias residual on the bound site,
    app targets launch the app, quicklink targets open the link.
    """

    def __init__(
        self,
        web: Optional[WebSearchSource] = None,
        apps: Optional[AppCatalogSource] = None,
    ):
        self.web = web
        self.apps = apps

    def __call__(self, target: AliasTarget, residual: str) -> bool:
        if isinstance(target, WebSearchTarget):
            if self.web is None:
                return self._unavailable(target)
            url = self.web.open_search(target.site_id, residual)
            logger.info(f"Alias search on {target.display_name}: {url}")
            return url is not None

        if isinstance(target, QuicklinkTarget):
            if self.web is None:
                return self._unavailable(target)
            url = self.web.open_quicklink(target.link_id)
            if url is None:
                logger.warning(f"Quicklink {target.link_id} no longer exists")
            return url is not None

        if isinstance(target, AppLaunchTarget):
            if self.apps is None:
                return self._unavailable(target)
            return self.apps.launch(target.app_id)

        logger.warning(f"Unsupported alias target: {target!r}")
        return False

    @staticmethod
    def _unavailable(target: AliasTarget) -> bool:
        logger.warning(f"No source available for alias target {target.summary}")
        return False
