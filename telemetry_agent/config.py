import socket
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from .errors import ConfigurationError
from .integrations.common import AutoscrapeGlobals, Globals, parse_duration


class Settings(BaseSettings):
    app_name: str = "Telemetry Agent"
    http_listen_address: str = Field("127.0.0.1", description="Address the HTTP server binds to.")
    http_listen_port: int = Field(12345, description="Port the HTTP server binds to.")
    log_level: str = Field("INFO", description="Root log level.")
    config_file: Optional[Path] = Field(
        None, description="YAML file holding the integrations section."
    )
    agent_identifier: Optional[str] = Field(
        None, description="Agent-wide stable key; defaults to hostname:port."
    )
    autoscrape_enable: bool = Field(True, description="Autoscrape integrations by default.")
    autoscrape_metrics_instance: str = Field(
        "default", description="Metrics instance receiving autoscraped samples."
    )
    autoscrape_scrape_interval: timedelta = Field(timedelta(minutes=1))
    autoscrape_scrape_timeout: timedelta = Field(timedelta(seconds=10))

    @field_validator("autoscrape_scrape_interval", "autoscrape_scrape_timeout", mode="before")
    def parse_autoscrape_duration(cls, value: Any) -> timedelta:
        return parse_duration(value)

    @field_validator("log_level")
    def normalize_log_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unsupported log level {value!r}")
        return value

    class Config:
        env_prefix = "AGENT_"

    def build_globals(self) -> Globals:
        identifier = self.agent_identifier or f"{socket.gethostname()}:{self.http_listen_port}"
        return Globals(
            agent_identifier=identifier,
            autoscrape=AutoscrapeGlobals(
                enable=self.autoscrape_enable,
                metrics_instance=self.autoscrape_metrics_instance,
                scrape_interval=self.autoscrape_scrape_interval,
                scrape_timeout=self.autoscrape_scrape_timeout,
            ),
        )

    def read_integrations_section(self) -> Dict[str, Any]:
        """Return the ``integrations`` mapping of the config file, or an empty one."""
        if self.config_file is None:
            return {}
        try:
            document = yaml.safe_load(self.config_file.read_text()) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"reading {self.config_file}: {exc}") from exc
        if not isinstance(document, dict):
            raise ConfigurationError(f"{self.config_file}: top level must be a mapping")
        return document.get("integrations") or {}


settings = Settings()
