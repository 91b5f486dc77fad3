from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterator

from prometheus_client.core import Metric

from ..integrations.base import LegacyConfig, LegacyIntegration
from .polling import PollingIntegration, StatTable, families_from_stats, host_port

MEMCACHED_STATS: StatTable = {
    "uptime": ("uptime_seconds", "gauge", "Seconds the server has been running."),
    "curr_connections": ("current_connections", "gauge", "Open client connections."),
    "total_connections": ("connections", "counter", "Connections opened since start."),
    "curr_items": ("current_items", "gauge", "Items currently stored."),
    "bytes": ("current_bytes", "gauge", "Bytes used to store items."),
    "limit_maxbytes": ("limit_bytes", "gauge", "Bytes this server may use for storage."),
    "get_hits": ("get_hits", "counter", "Keys requested and found."),
    "get_misses": ("get_misses", "counter", "Keys requested and not found."),
    "evictions": ("items_evicted", "counter", "Items evicted to free memory."),
    "cmd_get": ("commands_get", "counter", "Get commands received."),
    "cmd_set": ("commands_set", "counter", "Set commands received."),
}


def parse_stats(payload: bytes) -> Dict[str, str]:
    stats: Dict[str, str] = {}
    for line in payload.decode("utf-8", "replace").splitlines():
        parts = line.split()
        if len(parts) == 3 and parts[0] == "STAT":
            stats[parts[1]] = parts[2]
    return stats


class MemcachedConfig(LegacyConfig):
    memcached_address: str = "localhost:11211"
    timeout: float = 1.0
    poll_interval: float = 15.0

    def name(self) -> str:
        return "memcached_exporter"

    def instance_key(self, agent_key: str) -> str:
        host, port = host_port(self.memcached_address)
        return f"{host}:{port}"

    def new_integration(self, logger: logging.Logger) -> LegacyIntegration:
        return MemcachedIntegration(self, logger)


DEFAULT_CONFIG = MemcachedConfig()


class MemcachedIntegration(PollingIntegration):
    prefix = "memcached"

    def __init__(self, config: MemcachedConfig, logger: logging.Logger) -> None:
        self.host, self.port = host_port(config.memcached_address)
        self.timeout = config.timeout
        super().__init__(logger, config.name(), config.poll_interval)

    async def poll(self) -> Dict[str, Any]:
        return await asyncio.wait_for(self._stats(), timeout=self.timeout)

    async def _stats(self) -> Dict[str, Any]:
        reader, writer = await asyncio.open_connection(self.host, self.port)
        try:
            writer.write(b"stats\r\n")
            await writer.drain()
            payload = await reader.readuntil(b"END\r\n")
        finally:
            writer.close()
            await writer.wait_closed()
        return parse_stats(payload)

    def describe(self, stats: Dict[str, Any]) -> Iterator[Metric]:
        return families_from_stats(self.prefix, stats, MEMCACHED_STATS)
