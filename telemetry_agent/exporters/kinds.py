from ..integrations.registry import IntegrationKind, KindTable
from . import agent, memcached, node, process, redis, windows

DEFAULT_KINDS = KindTable(
    [
        IntegrationKind("agent", agent.AgentConfig, agent.DEFAULT_CONFIG),
        IntegrationKind(
            "memcached_exporter", memcached.MemcachedConfig, memcached.DEFAULT_CONFIG, repeated=True
        ),
        IntegrationKind("node_exporter", node.NodeExporterConfig, node.DEFAULT_CONFIG),
        IntegrationKind("process_exporter", process.ProcessExporterConfig, process.DEFAULT_CONFIG),
        IntegrationKind("redis_exporter", redis.RedisConfig, redis.DEFAULT_CONFIG, repeated=True),
        IntegrationKind("windows_exporter", windows.WindowsExporterConfig, windows.DEFAULT_CONFIG),
    ]
)
