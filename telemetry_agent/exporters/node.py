from __future__ import annotations

import logging
from typing import Callable, Dict, Iterator, List, Optional

import psutil
from prometheus_client import CollectorRegistry, make_asgi_app
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric

from ..context import RunContext
from ..integrations.base import ASGIApp, LegacyConfig, LegacyIntegration, LegacyScrapeConfig


def collect_cpu() -> Iterator[Metric]:
    seconds = CounterMetricFamily(
        "node_cpu_seconds", "Seconds the CPUs spent in each mode.", labels=["cpu", "mode"]
    )
    for index, times in enumerate(psutil.cpu_times(percpu=True)):
        for mode, value in times._asdict().items():
            seconds.add_metric([str(index), mode], value)
    yield seconds
    if hasattr(psutil, "getloadavg"):
        for minutes, value in zip((1, 5, 15), psutil.getloadavg()):
            yield GaugeMetricFamily(f"node_load{minutes}", f"{minutes}m load average.", value=value)


def collect_memory() -> Iterator[Metric]:
    virt = psutil.virtual_memory()
    swap = psutil.swap_memory()
    for field in ("total", "available", "used", "free"):
        yield GaugeMetricFamily(
            f"node_memory_{field}_bytes", f"Virtual memory {field}.", value=getattr(virt, field)
        )
    yield GaugeMetricFamily("node_memory_swap_total_bytes", "Swap total.", value=swap.total)
    yield GaugeMetricFamily("node_memory_swap_free_bytes", "Swap free.", value=swap.free)


def collect_filesystem() -> Iterator[Metric]:
    labels = ["device", "mountpoint", "fstype"]
    size = GaugeMetricFamily("node_filesystem_size_bytes", "Filesystem size.", labels=labels)
    free = GaugeMetricFamily("node_filesystem_free_bytes", "Filesystem free space.", labels=labels)
    for partition in psutil.disk_partitions():
        try:
            usage = psutil.disk_usage(partition.mountpoint)
        except PermissionError:
            continue
        values = [partition.device, partition.mountpoint, partition.fstype]
        size.add_metric(values, usage.total)
        free.add_metric(values, usage.free)
    yield size
    yield free


def collect_diskstats() -> Iterator[Metric]:
    counters = psutil.disk_io_counters(perdisk=True) or {}
    read = CounterMetricFamily("node_disk_read_bytes", "Bytes read.", labels=["device"])
    written = CounterMetricFamily("node_disk_written_bytes", "Bytes written.", labels=["device"])
    for device, stats in counters.items():
        read.add_metric([device], stats.read_bytes)
        written.add_metric([device], stats.write_bytes)
    yield read
    yield written


def collect_network() -> Iterator[Metric]:
    families = {
        field: CounterMetricFamily(
            f"node_network_{field}", f"Network device statistic {field}.", labels=["device"]
        )
        for field in ("bytes_sent", "bytes_recv", "packets_sent", "packets_recv", "errin", "errout")
    }
    for name, stats in psutil.net_io_counters(pernic=True).items():
        for field, family in families.items():
            family.add_metric([name], getattr(stats, field))
    yield from families.values()


def collect_hwmon() -> Iterator[Metric]:
    try:
        readings = psutil.sensors_temperatures()
    except (AttributeError, NotImplementedError):
        readings = {}
    family = GaugeMetricFamily(
        "node_hwmon_temp_celsius", "Hardware monitor temperature.", labels=["chip", "sensor"]
    )
    for chip, entries in readings.items():
        for index, entry in enumerate(entries):
            if entry.current is None:
                continue
            family.add_metric([chip, entry.label or f"temp{index}"], entry.current)
    yield family


COLLECTORS: Dict[str, Callable[[], Iterator[Metric]]] = {
    "cpu": collect_cpu,
    "meminfo": collect_memory,
    "filesystem": collect_filesystem,
    "diskstats": collect_diskstats,
    "netdev": collect_network,
    "hwmon": collect_hwmon,
}


class NodeExporterConfig(LegacyConfig):
    enable_collectors: List[str] = []
    disable_collectors: List[str] = []
    set_collectors: List[str] = list(COLLECTORS)

    def name(self) -> str:
        return "node_exporter"

    def instance_key(self, agent_key: str) -> str:
        return agent_key

    def new_integration(self, logger: logging.Logger) -> LegacyIntegration:
        return NodeIntegration(self, logger)

    def collectors(self) -> List[str]:
        """Resolve the enabled collector names in a stable order."""
        enabled = list(dict.fromkeys(self.set_collectors + self.enable_collectors))
        unknown = [name for name in enabled + self.disable_collectors if name not in COLLECTORS]
        if unknown:
            raise ValueError(f"unknown collectors: {', '.join(sorted(set(unknown)))}")
        return [name for name in enabled if name not in self.disable_collectors]


DEFAULT_CONFIG = NodeExporterConfig()


class _NodeCollector:
    def __init__(self, names: List[str], logger: logging.Logger) -> None:
        self.names = names
        self.logger = logger

    def collect(self) -> Iterator[Metric]:
        for name in self.names:
            try:
                yield from COLLECTORS[name]()
            except (OSError, psutil.Error) as exc:
                self.logger.warning("collector %s failed: %s", name, exc)


class NodeIntegration(LegacyIntegration):
    def __init__(self, config: NodeExporterConfig, logger: logging.Logger) -> None:
        self.names = config.collectors()
        self.registry = CollectorRegistry(auto_describe=False)
        self.registry.register(_NodeCollector(self.names, logger))
        logger.info("enabled node_exporter collectors: %s", ", ".join(self.names))

    def metrics_handler(self) -> Optional[ASGIApp]:
        return make_asgi_app(self.registry)

    def scrape_configs(self) -> List[LegacyScrapeConfig]:
        return [LegacyScrapeConfig(job_name="node_exporter", metrics_path="/metrics")]

    async def run(self, ctx: RunContext) -> None:
        await ctx.done()
