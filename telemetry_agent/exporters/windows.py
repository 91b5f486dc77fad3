from __future__ import annotations

import logging
import sys
from typing import Callable, Dict, Iterator, List, Optional

import psutil
from prometheus_client import CollectorRegistry, make_asgi_app
from prometheus_client.core import GaugeMetricFamily, Metric

from ..context import RunContext
from ..integrations.base import ASGIApp, LegacyConfig, LegacyIntegration, LegacyScrapeConfig


class WindowsExporterConfig(LegacyConfig):
    enabled_collectors: str = "cpu,cs,logical_disk,net,os,service,system"

    def name(self) -> str:
        return "windows_exporter"

    def instance_key(self, agent_key: str) -> str:
        return agent_key

    def new_integration(self, logger: logging.Logger) -> LegacyIntegration:
        if sys.platform != "win32":
            logger.warning(
                "the windows_exporter only works on Windows; enabling it otherwise will do nothing"
            )
            return NoopWindowsIntegration()
        return WindowsIntegration(self, logger)


DEFAULT_CONFIG = WindowsExporterConfig()


class NoopWindowsIntegration(LegacyIntegration):
    """Stand-in used on platforms other than Windows."""

    def metrics_handler(self) -> Optional[ASGIApp]:
        return None

    def scrape_configs(self) -> List[LegacyScrapeConfig]:
        return []

    async def run(self, ctx: RunContext) -> None:
        await ctx.done()
        # Echoes the context error on shutdown like older exporters did.
        raise ctx.err()


def collect_cs() -> Iterator[Metric]:
    yield GaugeMetricFamily(
        "windows_cs_logical_processors", "Logical processors.", value=psutil.cpu_count() or 0
    )
    yield GaugeMetricFamily(
        "windows_cs_physical_memory_bytes", "Physical memory.", value=psutil.virtual_memory().total
    )


def collect_os() -> Iterator[Metric]:
    yield GaugeMetricFamily(
        "windows_os_physical_memory_free_bytes",
        "Free physical memory.",
        value=psutil.virtual_memory().available,
    )


def collect_system() -> Iterator[Metric]:
    yield GaugeMetricFamily(
        "windows_system_processes", "Running processes.", value=len(psutil.pids())
    )


# Collectors named in enabled_collectors without an entry here are skipped.
COLLECTORS: Dict[str, Callable[[], Iterator[Metric]]] = {
    "cs": collect_cs,
    "os": collect_os,
    "system": collect_system,
}


class _SystemCollector:
    def __init__(self, names: List[str]) -> None:
        self.names = names

    def collect(self) -> Iterator[Metric]:
        for name in self.names:
            yield from COLLECTORS[name]()


class WindowsIntegration(LegacyIntegration):
    def __init__(self, config: WindowsExporterConfig, logger: logging.Logger) -> None:
        requested = [name.strip() for name in config.enabled_collectors.split(",") if name.strip()]
        self.collectors = [name for name in requested if name in COLLECTORS]
        skipped = [name for name in requested if name not in COLLECTORS]
        if skipped:
            logger.info("windows_exporter collectors not available: %s", ", ".join(skipped))
        self.registry = CollectorRegistry(auto_describe=False)
        self.registry.register(_SystemCollector(self.collectors))

    def metrics_handler(self) -> Optional[ASGIApp]:
        return make_asgi_app(self.registry)

    def scrape_configs(self) -> List[LegacyScrapeConfig]:
        return [LegacyScrapeConfig(job_name="windows_exporter", metrics_path="/metrics")]

    async def run(self, ctx: RunContext) -> None:
        await ctx.done()
