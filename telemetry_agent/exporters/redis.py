from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, Optional

from prometheus_client.core import GaugeMetricFamily, Metric
from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..integrations.base import LegacyConfig, LegacyIntegration
from .polling import PollingIntegration, StatTable, families_from_stats, host_port

REDIS_STATS: StatTable = {
    "uptime_in_seconds": ("uptime_in_seconds", "gauge", "Seconds the server has been running."),
    "connected_clients": ("connected_clients", "gauge", "Connected clients."),
    "blocked_clients": ("blocked_clients", "gauge", "Clients blocked on a call."),
    "used_memory": ("memory_used_bytes", "gauge", "Bytes allocated by redis."),
    "total_connections_received": ("connections_received", "counter", "Connections accepted."),
    "total_commands_processed": ("commands_processed", "counter", "Commands processed."),
    "keyspace_hits": ("keyspace_hits", "counter", "Successful key lookups."),
    "keyspace_misses": ("keyspace_misses", "counter", "Failed key lookups."),
    "expired_keys": ("expired_keys", "counter", "Keys removed by expiry."),
    "evicted_keys": ("evicted_keys", "counter", "Keys evicted by maxmemory."),
}


def keyspace_counts(info: Dict[str, Any]) -> Dict[str, float]:
    """Key counts per database from the ``dbN`` entries of an INFO reply."""
    counts: Dict[str, float] = {}
    for key, value in info.items():
        if not key.startswith("db") or not key[2:].isdigit():
            continue
        if isinstance(value, dict) and "keys" in value:
            counts[key] = float(value["keys"])
    return counts


class RedisConfig(LegacyConfig):
    redis_addr: str = "localhost:6379"
    redis_password: Optional[str] = None
    timeout: float = 1.0
    poll_interval: float = 15.0

    def name(self) -> str:
        return "redis_exporter"

    def instance_key(self, agent_key: str) -> str:
        host, port = host_port(self.redis_addr)
        return f"{host}:{port}"

    def new_integration(self, logger: logging.Logger) -> LegacyIntegration:
        return RedisIntegration(self, logger)


DEFAULT_CONFIG = RedisConfig()


class RedisIntegration(PollingIntegration):
    prefix = "redis"
    poll_errors = PollingIntegration.poll_errors + (RedisError,)

    def __init__(self, config: RedisConfig, logger: logging.Logger) -> None:
        self.host, self.port = host_port(config.redis_addr)
        self.password = config.redis_password
        self.timeout = config.timeout
        super().__init__(logger, config.name(), config.poll_interval)

    async def poll(self) -> Dict[str, Any]:
        async with Redis(
            host=self.host,
            port=self.port,
            password=self.password,
            socket_timeout=self.timeout,
            socket_connect_timeout=self.timeout,
        ) as client:
            return await client.info()

    def describe(self, stats: Dict[str, Any]) -> Iterator[Metric]:
        yield from families_from_stats(self.prefix, stats, REDIS_STATS)
        counts = keyspace_counts(stats)
        if counts:
            family = GaugeMetricFamily(
                "redis_db_keys", "Keys per database.", labels=["db"]
            )
            for db, value in sorted(counts.items()):
                family.add_metric([db], value)
            yield family
