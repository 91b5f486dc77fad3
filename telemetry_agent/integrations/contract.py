from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Mapping

from ..context import RunContext
from .base import ASGIApp
from .common import CommonSettings, Globals

JOB_LABEL = "job"


@dataclass(frozen=True)
class ScrapeTarget:
    """A relative metrics path and the labels attached to samples scraped from it."""

    metrics_path: str
    labels: Mapping[str, str] = field(default_factory=dict)


class Integration(ABC):
    """A running integration the supervisor can query and stop."""

    @abstractmethod
    def handlers(self) -> Dict[str, ASGIApp]:
        """Return HTTP handlers keyed by path relative to the integration prefix."""

    @abstractmethod
    def scrape_configs(self) -> List[ScrapeTarget]:
        """Return where this integration's metrics can be scraped."""

    @abstractmethod
    async def run(self, ctx: RunContext) -> None:
        """Run until ``ctx`` is done. Raises on failure."""


class Config(ABC):
    """Configuration and constructor for one integration instance."""

    @abstractmethod
    def name(self) -> str:
        """Return the integration kind name."""

    @property
    @abstractmethod
    def common(self) -> CommonSettings:
        """Return the settings shared by all integrations."""

    @abstractmethod
    def identifier(self, globals: Globals) -> str:
        """Return the instance identifier, unique per kind within one agent."""

    @abstractmethod
    def apply_defaults(self, globals: Globals) -> None:
        """Fill unset common settings from ``globals``."""

    @abstractmethod
    def new_integration(self, logger: logging.Logger, globals: Globals) -> Integration:
        """Build the running integration."""
