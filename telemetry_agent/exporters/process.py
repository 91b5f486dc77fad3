from __future__ import annotations

import logging
import re
from typing import Dict, Iterator, List, Optional, Pattern

import psutil
from prometheus_client import CollectorRegistry, make_asgi_app
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric
from pydantic import BaseModel, ConfigDict, field_validator

from ..context import RunContext
from ..integrations.base import ASGIApp, LegacyConfig, LegacyIntegration, LegacyScrapeConfig


class ProcessMatcher(BaseModel):
    """Groups processes whose name matches any of ``name_patterns``."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str
    name_patterns: List[str]

    @field_validator("name_patterns")
    @classmethod
    def _compile(cls, value: List[str]) -> List[str]:
        for pattern in value:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"invalid pattern {pattern!r}: {exc}") from exc
        return value


class ProcessExporterConfig(LegacyConfig):
    process_names: List[ProcessMatcher] = []
    procfs_path: str = "/proc"

    def name(self) -> str:
        return "process_exporter"

    def instance_key(self, agent_key: str) -> str:
        return agent_key

    def new_integration(self, logger: logging.Logger) -> LegacyIntegration:
        return ProcessIntegration(self, logger)


DEFAULT_CONFIG = ProcessExporterConfig()


class _GroupCollector:
    def __init__(self, matchers: Dict[str, List[Pattern[str]]]) -> None:
        self.matchers = matchers

    def group_of(self, process_name: str) -> Optional[str]:
        for group, patterns in self.matchers.items():
            if any(pattern.search(process_name) for pattern in patterns):
                return group
        return None

    def collect(self) -> Iterator[Metric]:
        counts = {group: 0 for group in self.matchers}
        cpu = {group: 0.0 for group in self.matchers}
        rss = {group: 0.0 for group in self.matchers}
        for proc in psutil.process_iter(["name", "cpu_times", "memory_info"]):
            info = proc.info
            group = self.group_of(info.get("name") or "")
            if group is None:
                continue
            counts[group] += 1
            if info.get("cpu_times") is not None:
                cpu[group] += info["cpu_times"].user + info["cpu_times"].system
            if info.get("memory_info") is not None:
                rss[group] += info["memory_info"].rss

        procs = GaugeMetricFamily("namedprocess_namegroup_num_procs", "Processes in group.", labels=["groupname"])
        seconds = CounterMetricFamily("namedprocess_namegroup_cpu_seconds", "CPU seconds used by group.", labels=["groupname"])
        memory = GaugeMetricFamily("namedprocess_namegroup_memory_bytes", "Resident memory of group.", labels=["groupname"])
        for group in self.matchers:
            procs.add_metric([group], counts[group])
            seconds.add_metric([group], cpu[group])
            memory.add_metric([group], rss[group])
        yield procs
        yield seconds
        yield memory


class ProcessIntegration(LegacyIntegration):
    def __init__(self, config: ProcessExporterConfig, logger: logging.Logger) -> None:
        if config.procfs_path != "/proc":
            psutil.PROCFS_PATH = config.procfs_path
        matchers = {
            matcher.name: [re.compile(pattern) for pattern in matcher.name_patterns]
            for matcher in config.process_names
        }
        if not matchers:
            logger.warning("no process_names configured; process_exporter will report nothing")
        self.registry = CollectorRegistry(auto_describe=False)
        self.registry.register(_GroupCollector(matchers))

    def metrics_handler(self) -> Optional[ASGIApp]:
        return make_asgi_app(self.registry)

    def scrape_configs(self) -> List[LegacyScrapeConfig]:
        return [LegacyScrapeConfig(job_name="process_exporter", metrics_path="/metrics")]

    async def run(self, ctx: RunContext) -> None:
        await ctx.done()
