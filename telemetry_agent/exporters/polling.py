from __future__ import annotations

import asyncio
import logging
from abc import abstractmethod
from typing import Any, Dict, Iterator, List, Optional, Tuple, Type

from prometheus_client import CollectorRegistry, make_asgi_app
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric

from ..context import RunContext
from ..integrations.base import ASGIApp, LegacyIntegration, LegacyScrapeConfig

# stat name -> (metric name, type, help)
StatTable = Dict[str, Tuple[str, str, str]]


def host_port(address: str) -> Tuple[str, int]:
    """Split ``host:port``; raises ValueError if either part is missing."""
    host, sep, port = (address or "").rpartition(":")
    host = host.strip("[]")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"address {address!r} is not in host:port form")
    return host, int(port)


def families_from_stats(
    prefix: str, stats: Dict[str, Any], table: StatTable
) -> Iterator[Metric]:
    for stat, (name, kind, documentation) in table.items():
        raw = stats.get(stat)
        if raw is None:
            continue
        try:
            value = float(raw)
        except (TypeError, ValueError):
            continue
        family_type = CounterMetricFamily if kind == "counter" else GaugeMetricFamily
        yield family_type(f"{prefix}_{name}", documentation, value=value)


class _SnapshotCollector:
    def __init__(self, integration: PollingIntegration) -> None:
        self._integration = integration

    def collect(self) -> Iterator[Metric]:
        integration = self._integration
        yield GaugeMetricFamily(
            f"{integration.prefix}_up",
            f"Whether the last {integration.prefix} poll succeeded.",
            value=1.0 if integration.last_stats is not None else 0.0,
        )
        if integration.last_stats is not None:
            yield from integration.describe(integration.last_stats)


class PollingIntegration(LegacyIntegration):
    """Exporter that polls a remote service and serves the latest snapshot."""

    prefix: str = ""
    poll_errors: Tuple[Type[Exception], ...] = (
        OSError,
        asyncio.TimeoutError,
        asyncio.IncompleteReadError,
        ValueError,
    )

    def __init__(self, logger: logging.Logger, job_name: str, interval_seconds: float) -> None:
        self.logger = logger
        self.job_name = job_name
        self.interval_seconds = max(interval_seconds, 1)
        self.last_stats: Optional[Dict[str, Any]] = None
        self.registry = CollectorRegistry(auto_describe=False)
        self.registry.register(_SnapshotCollector(self))

    def metrics_handler(self) -> Optional[ASGIApp]:
        return make_asgi_app(self.registry)

    def scrape_configs(self) -> List[LegacyScrapeConfig]:
        return [LegacyScrapeConfig(job_name=self.job_name, metrics_path="/metrics")]

    async def run(self, ctx: RunContext) -> None:
        while not ctx.is_done():
            await self.collect_once()
            if await ctx.wait(self.interval_seconds):
                break

    async def collect_once(self) -> None:
        try:
            self.last_stats = await self.poll()
        except self.poll_errors as exc:
            self.logger.warning("polling failed: %s", exc)
            self.last_stats = None

    @abstractmethod
    async def poll(self) -> Dict[str, Any]:
        """Fetch a fresh snapshot of stats from the remote service."""

    @abstractmethod
    def describe(self, stats: Dict[str, Any]) -> Iterator[Metric]:
        """Turn a snapshot into metric families."""
