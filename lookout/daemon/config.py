"""Configuration management for lookout."""

from pathlib import Path
from typing import List, Optional
from urllib.parse import quote

import yaml
from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator


QUERY_PLACEHOLDER = "{query}"


class EngineConfig(BaseModel):
    source_timeout_ms: int = 250
    use_frequency_ranking: bool = True
    query_based_ranking: bool = True
    max_results: int = 50

    @field_validator('source_timeout_ms', 'max_results')
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be positive")
        return v


class ApiConfig(BaseModel):
    host: str = "localhost"
    port: int = 8765


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: Optional[Path] = None


class AppEntryConfig(BaseModel):
    app_id: str
    label: str
    command: Optional[str] = None


class AppSearchSettings(BaseModel):
    enabled: bool = True
    include_package_name: bool = False
    max_results: int = 40
    desktop_dirs: List[Path] = Field(default_factory=lambda: [
        Path("/usr/share/applications"),
        Path("~/.local/share/applications"),
    ])
    extra_apps: List[AppEntryConfig] = Field(default_factory=list)


class CalculatorSettings(BaseModel):
    enabled: bool = True


class WebSearchSite(BaseModel):
    id: str
    display_name: str
    url_template: str

    def build_url(self, query: str) -> str:
        template = self.url_template
        if QUERY_PLACEHOLDER not in template:
            separator = "&" if "?" in template else "?"
            template = f"{template}{separator}q={QUERY_PLACEHOLDER}"
        return template.replace(QUERY_PLACEHOLDER, quote(query, safe=""))


class Quicklink(BaseModel):
    id: str
    title: str
    url: str

    def display_url(self) -> str:
        return self.url.removeprefix("https://").removeprefix("http://").removesuffix("/")

    def domain(self) -> str:
        rest = self.url.removeprefix("https://").removeprefix("http://")
        return rest.split("/", 1)[0].split("?", 1)[0]


DEFAULT_SITES = [
    WebSearchSite(id="bing", display_name="Bing",
                  url_template="https://www.bing.com/search?q={query}&form=QBLH"),
    WebSearchSite(id="duckduckgo", display_name="DuckDuckGo",
                  url_template="https://duckduckgo.com/?q={query}"),
    WebSearchSite(id="google", display_name="Google",
                  url_template="https://www.google.com/search?q={query}"),
    WebSearchSite(id="youtube", display_name="YouTube",
                  url_template="https://www.youtube.com/results?search_query={query}"),
    WebSearchSite(id="github", display_name="GitHub",
                  url_template="https://github.com/search?q={query}"),
]


class WebSearchSettings(BaseModel):
    enabled: bool = True
    default_site_id: str = "bing"
    sites: List[WebSearchSite] = Field(default_factory=lambda: list(DEFAULT_SITES))
    quicklinks: List[Quicklink] = Field(default_factory=list)

    @model_validator(mode='after')
    def validate_default_site(self) -> "WebSearchSettings":
        if self.sites and self.site_for_id(self.default_site_id) is None:
            logger.warning(f"Unknown default site {self.default_site_id!r}, using {self.sites[0].id}")
            self.default_site_id = self.sites[0].id
        return self

    def site_for_id(self, site_id: str) -> Optional[WebSearchSite]:
        for site in self.sites:
            if site.id == site_id:
                return site
        return None


class SourcesConfig(BaseModel):
    apps: AppSearchSettings = Field(default_factory=AppSearchSettings)
    calculator: CalculatorSettings = Field(default_factory=CalculatorSettings)
    web: WebSearchSettings = Field(default_factory=WebSearchSettings)


class Config(BaseModel):
    """Main configuration for the lookout daemon."""

    data_dir: Path = Field(default_factory=lambda: Path("~/.local/share/lookout").expanduser())
    engine: EngineConfig = Field(default_factory=EngineConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    sources: SourcesConfig = Field(default_factory=SourcesConfig)

    @field_validator('data_dir')
    @classmethod
    def validate_data_dir(cls, v: Path) -> Path:
        return Path(v).expanduser()

    @staticmethod
    def default_locations() -> List[Path]:
        return [
            Path("lookout.yaml"),
            Path.home() / ".config" / "lookout" / "config.yaml",
        ]

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """
        Load configuration from YAML.

        A missing file gives the defaults. Unreadable YAML or values that
        fail validation are logged and also give the defaults; a broken
        config never stops the daemon from serving queries.
        """
        if config_path is None:
            for candidate in cls.default_locations():
                if candidate.exists():
                    config_path = candidate
                    break
            else:
                logger.info("No config file found, using defaults")
                return cls()

        config_path = Path(config_path)
        if not config_path.exists():
            logger.warning(f"Config file not found: {config_path}, using defaults")
            return cls()

        logger.info(f"Loading config from: {config_path}")
        try:
            with open(config_path, 'r') as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ValueError("top level must be a mapping")
            return cls(**data)
        except (OSError, yaml.YAMLError, ValidationError, ValueError, TypeError) as e:
            logger.warning(f"Invalid config in {config_path}, using defaults: {e}")
            return cls()

    def save(self, config_path: Path) -> None:
        """Save configuration to YAML file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, 'w') as f:
            yaml.safe_dump(self.model_dump(mode='json'), f, default_flow_style=False)
