"""Main daemon process for lookout."""

import asyncio
import signal
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence

import click
import psutil
from aiohttp import web
from loguru import logger

from .aliases import AliasIndex
from .api import create_api_app
from .bus import EventBus, get_event_bus
from .config import Config
from .engine import SearchEngine
from .launcher import TargetLauncher
from .ranking import RankingPolicy
from .sources import AppCatalogSource, CalculatorSource, Source, WebSearchSource
from .store import AliasFileStore, SourceOrderFileStore, UsageFileStore, flush_writes
from .usage import UsageLedger


VERSION = "0.1.0"

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def setup_logging(level: str = "INFO", log_dir: Optional[Path] = None) -> None:
    """Send logs to stderr and to a daily-rotated file."""
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level=level)

    if log_dir is None:
        log_dir = Path.home() / ".local" / "share" / "lookout" / "logs"
    log_dir = Path(log_dir).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)
    logger.add(
        log_dir / "daemon.log",
        rotation="1 day",
        retention="7 days",
        level="DEBUG"
    )


def build_sources(config: Config) -> List[Source]:
    """Reference sources in their default priority order."""
    return [
        AppCatalogSource(config.sources.apps),
        CalculatorSource(config.sources.calculator),
        WebSearchSource(config.sources.web),
    ]


class LookoutDaemon:
    """Main daemon coordinating the engine, its stores and the HTTP API."""

    def __init__(
        self,
        config: Config,
        sources: Optional[Sequence[Source]] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.config = config
        self.start_time = datetime.now(timezone.utc)
        self.event_bus = event_bus or get_event_bus()

        sources = list(sources) if sources is not None else build_sources(config)
        data_dir = config.data_dir
        web_source = next((s for s in sources if isinstance(s, WebSearchSource)), None)
        app_source = next((s for s in sources if isinstance(s, AppCatalogSource)), None)

        self.engine = SearchEngine(
            sources,
            aliases=AliasIndex(AliasFileStore(data_dir)),
            ledger=UsageLedger(UsageFileStore(data_dir)),
            source_order_persistence=SourceOrderFileStore(data_dir),
            config=config.engine,
            alias_handler=TargetLauncher(web=web_source, apps=app_source),
            event_bus=self.event_bus,
        )

        self.stats = {
            "search_count": 0,
            "selection_count": 0,
        }

        self._shutdown = asyncio.Event()
        self.api_app = None
        self.api_runner = None
        self.api_site = None

    @property
    def ranking(self) -> RankingPolicy:
        return self.engine.ranking

    async def start(self, serve_api: bool = True) -> None:
        """Start all daemon services."""
        logger.info("Starting lookout daemon...")

        await self.event_bus.start()
        self.event_bus.subscribe("turn.completed", self._on_turn)
        self.event_bus.subscribe("selection.recorded", self._on_selection)

        await self.engine.start()

        if serve_api:
            await self._start_api()

        logger.info("lookout daemon started successfully")

    async def stop(self) -> None:
        """Stop all daemon services."""
        logger.info("Stopping lookout daemon...")

        if self.api_site:
            await self.api_site.stop()
            self.api_site = None
        if self.api_runner:
            await self.api_runner.cleanup()
            self.api_runner = None

        await self.engine.stop()
        await flush_writes()
        self.event_bus.unsubscribe("turn.completed", self._on_turn)
        self.event_bus.unsubscribe("selection.recorded", self._on_selection)
        await self.event_bus.stop()

        logger.info("lookout daemon stopped")

    def request_shutdown(self) -> None:
        self._shutdown.set()

    async def wait_closed(self) -> None:
        await self._shutdown.wait()

    async def _start_api(self) -> None:
        """Start the HTTP API server."""
        host, port = self.config.api.host, self.config.api.port
        self.api_app = create_api_app(self)
        self.api_runner = web.AppRunner(self.api_app)
        await self.api_runner.setup()

        self.api_site = web.TCPSite(self.api_runner, host, port)
        await self.api_site.start()

        logger.info(f"API server started on http://{host}:{port}")

    async def _on_turn(self, event) -> None:
        self.stats["search_count"] += 1

    async def _on_selection(self, event) -> None:
        self.stats["selection_count"] += 1

    def get_status(self) -> dict:
        """Get daemon status and statistics."""
        process = psutil.Process()
        uptime = (datetime.now(timezone.utc) - self.start_time).total_seconds()

        return {
            "status": "running",
            "version": VERSION,
            "uptime": f"{uptime:.0f}s",
            "stats": {
                **self.stats,
                "memory_mb": round(process.memory_info().rss / 1024 / 1024, 1),
                "cpu_percent": process.cpu_percent(),
            },
            "engine": self.engine.stats(),
            "config": {
                "data_dir": str(self.config.data_dir),
                "source_timeout_ms": self.config.engine.source_timeout_ms,
                "use_frequency_ranking": self.config.engine.use_frequency_ranking,
                "query_based_ranking": self.config.engine.query_based_ranking,
            },
        }


async def main(config_path: Optional[str] = None) -> None:
    """Main entry point for the daemon."""
    config = Config.load(Path(config_path) if config_path else None)
    setup_logging(config.logging.level, config.logging.log_dir)

    daemon = LookoutDaemon(config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, daemon.request_shutdown)

    try:
        await daemon.start()
        await daemon.wait_closed()
    except Exception as e:
        logger.exception(f"Daemon error: {e}")
    finally:
        await daemon.stop()


@click.command()
@click.option('--config', 'config_path', type=click.Path(), default=None, help='Path to config.yaml')
def run(config_path: Optional[str]) -> None:
    """Run the lookout daemon in the foreground."""
    asyncio.run(main(config_path))


if __name__ == "__main__":
    run()
