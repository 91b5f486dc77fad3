from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, MutableMapping, Optional

from pydantic import BaseModel, ConfigDict

from ..context import RunContext

ASGIApp = Callable[[MutableMapping[str, Any], Callable, Callable], Awaitable[None]]


@dataclass(frozen=True)
class LegacyScrapeConfig:
    """Job name and relative metrics path reported by a wrapped exporter."""

    job_name: str
    metrics_path: str = "/metrics"


class LegacyIntegration(ABC):
    """Abstract base class for a running exporter.

    Exporters were written to be wired to ``/metrics`` somewhere and know nothing
    about instance keys or autoscrape settings.
    """

    @abstractmethod
    def metrics_handler(self) -> Optional[ASGIApp]:
        """Return the ASGI app serving metrics, or None if there is nothing to serve."""

    @abstractmethod
    def scrape_configs(self) -> List[LegacyScrapeConfig]:
        """Return the static set of scrape configs for this exporter."""

    @abstractmethod
    async def run(self, ctx: RunContext) -> None:
        """Run until ``ctx`` is done."""


class LegacyConfig(BaseModel, ABC):
    """Declarative configuration of one exporter kind."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    @abstractmethod
    def name(self) -> str:
        """Return the exporter kind name."""

    @abstractmethod
    def instance_key(self, agent_key: str) -> str:
        """Return the identifier of this instance given the agent-wide key."""

    @abstractmethod
    def new_integration(self, logger: logging.Logger) -> LegacyIntegration:
        """Construct the running exporter."""
