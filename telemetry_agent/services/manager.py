from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from prometheus_client import Counter, Gauge

from ..context import RunContext
from ..errors import DuplicateIntegrationError, IdentityResolutionError, IntegrationError
from ..integrations.base import ASGIApp
from ..integrations.common import Globals
from ..integrations.contract import JOB_LABEL, Config, Integration

logger = logging.getLogger(__name__)

ACTIVE_INTEGRATIONS = Gauge(
    "agent_integrations_active", "Number of integrations currently running."
)
INTEGRATION_FAILURES = Counter(
    "agent_integration_failures",
    "Integrations that failed to start or exited with an error.",
    ["integration"],
)


@dataclass(frozen=True)
class FailedIntegration:
    name: str
    instance: Optional[str]
    error: BaseException


@dataclass
class RunningIntegration:
    """An integration owned by the manager, plus its task and context."""

    name: str
    instance: str
    config: Config
    integration: Integration
    ctx: RunContext
    task: Optional["asyncio.Task[None]"] = None
    error: Optional[BaseException] = field(default=None, repr=False)

    @property
    def prefix(self) -> str:
        return f"/integrations/{self.name}/{self.instance}"


class IntegrationManager:
    """Starts every active config and keeps its integration running until stopped."""

    def __init__(
        self,
        configs: Sequence[Config],
        globals: Globals,
        parent_logger: Optional[logging.Logger] = None,
    ) -> None:
        self.configs = list(configs)
        self.globals = globals
        self.parent_logger = parent_logger or logging.getLogger("telemetry_agent.integrations")
        self.failed: List[FailedIntegration] = []
        self._running: Dict[Tuple[str, str], RunningIntegration] = {}
        self._ctx: Optional[RunContext] = None

    def _fail(self, name: str, instance: Optional[str], exc: BaseException) -> None:
        logger.error("failed to create integration %s/%s: %s", name, instance or "?", exc)
        INTEGRATION_FAILURES.labels(name).inc()
        self.failed.append(FailedIntegration(name, instance, exc))

    def resolve(self) -> List[Tuple[str, str, Config]]:
        """Apply defaults and check that every (name, identifier) pair is unique.

        Configs whose identity cannot be resolved are recorded as failed and
        skipped; a duplicate pair aborts the whole set.
        """
        resolved: List[Tuple[str, str, Config]] = []
        seen = set()
        for config in self.configs:
            try:
                config.apply_defaults(self.globals)
                key = (config.name(), config.identifier(self.globals))
            except IdentityResolutionError as exc:
                self._fail(config.name(), None, exc)
                continue
            if key in seen:
                raise DuplicateIntegrationError(
                    f"multiple instances of {key[0]} share the identifier {key[1]!r}"
                )
            seen.add(key)
            resolved.append((key[0], key[1], config))
        return resolved

    def start(self) -> None:
        if self._ctx is not None:
            return
        resolved = self.resolve()
        self._ctx = RunContext()
        for name, instance, config in resolved:
            integration_logger = self.parent_logger.getChild(name)
            try:
                integration = config.new_integration(integration_logger, self.globals)
            except IntegrationError as exc:
                self._fail(name, instance, exc)
                continue
            running = RunningIntegration(
                name=name,
                instance=instance,
                config=config,
                integration=integration,
                ctx=self._ctx.child(),
            )
            running.task = asyncio.create_task(
                self._run(running), name=f"integration-{name}-{instance}"
            )
            self._running[(name, instance)] = running
        logger.info(
            "started %d integrations (%d failed)", len(self._running), len(self.failed)
        )

    async def stop(self) -> None:
        if self._ctx is None:
            return
        self._ctx.cancel()
        tasks = [running.task for running in self._running.values() if running.task is not None]
        try:
            await asyncio.gather(*tasks)
        finally:
            self._ctx = None

    async def _run(self, running: RunningIntegration) -> None:
        ACTIVE_INTEGRATIONS.inc()
        try:
            await running.integration.run(running.ctx)
        except Exception as exc:
            running.error = exc
            INTEGRATION_FAILURES.labels(running.name).inc()
            logger.error(
                "integration %s/%s exited with error: %s", running.name, running.instance, exc
            )
        else:
            logger.debug("integration %s/%s stopped", running.name, running.instance)
        finally:
            ACTIVE_INTEGRATIONS.dec()

    def integrations(self) -> List[RunningIntegration]:
        return list(self._running.values())

    def get(self, name: str, instance: str) -> RunningIntegration:
        key = (name, instance)
        if key not in self._running:
            raise KeyError(f"Integration '{name}/{instance}' is not running.")
        return self._running[key]

    def handlers(self) -> Dict[str, ASGIApp]:
        """Return every integration handler keyed by its absolute path."""
        handlers: Dict[str, ASGIApp] = {}
        for running in self._running.values():
            for path, handler in running.integration.handlers().items():
                handlers[running.prefix + path] = handler
        return handlers

    def sd_targets(self, address: str) -> List[Dict[str, Any]]:
        """Return Prometheus HTTP service discovery groups for autoscraped integrations."""
        groups: List[Dict[str, Any]] = []
        for running in self._running.values():
            autoscrape = running.config.common.autoscrape
            if not autoscrape.enable:
                continue
            for target in running.integration.scrape_configs():
                labels = {
                    "__metrics_path__": running.prefix + target.metrics_path,
                    "instance": running.instance,
                    "agent_hostname": self.globals.agent_identifier,
                    "__meta_agent_integration_name": running.name,
                    "__meta_agent_integration_instance": running.instance,
                    "__meta_agent_integration_autoscrape": "1",
                }
                if autoscrape.scrape_interval is not None:
                    labels["__scrape_interval__"] = _format_seconds(autoscrape.scrape_interval)
                if autoscrape.scrape_timeout is not None:
                    labels["__scrape_timeout__"] = _format_seconds(autoscrape.scrape_timeout)
                labels.update(target.labels)
                labels.setdefault(JOB_LABEL, f"integrations/{running.name}")
                groups.append({"targets": [address], "labels": labels})
        return groups


def _format_seconds(value) -> str:
    seconds = value.total_seconds()
    if seconds.is_integer():
        return f"{int(seconds)}s"
    return f"{int(seconds * 1000)}ms"
