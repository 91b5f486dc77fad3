from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, List, Optional, Set

from starlette.responses import PlainTextResponse

from ..context import Canceled, RunContext
from ..errors import (
    ConstructionError,
    HandlerGenerationError,
    IdentityResolutionError,
)
from .base import ASGIApp, LegacyConfig, LegacyIntegration
from .common import CommonSettings, Globals
from .contract import JOB_LABEL, Config, Integration, ScrapeTarget

# Job names were historically prefixed at the subsystem level.
JOB_PREFIX = "integrations/"

IdentifierFunc = Callable[[str], str]
ConstructorFunc = Callable[[logging.Logger], LegacyIntegration]
RunFunc = Callable[[RunContext], Awaitable[None]]


async def not_found_handler(scope, receive, send) -> None:
    response = PlainTextResponse("404 page not found\n", status_code=404)
    await response(scope, receive, send)


def mask_legacy_cancellation(
    error: Optional[BaseException], ctx: RunContext
) -> Optional[BaseException]:
    """Decide whether a legacy run outcome is a failure.

    Older exporters raised the context's cancellation error on shutdown instead
    of returning. That outcome is success once ``ctx`` has ended; while ``ctx``
    is still active it is a real failure. Errors raised ``from`` the
    cancellation error count as that error.
    """
    if error is None:
        return None
    if ctx.err() is not None and _caused_by_cancellation(error):
        return None
    return error


def _caused_by_cancellation(error: BaseException) -> bool:
    seen: Set[int] = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        if isinstance(current, Canceled):
            return True
        seen.add(id(current))
        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None
    return False


def wrap_legacy_run(run: RunFunc) -> RunFunc:
    async def run_masked(ctx: RunContext) -> None:
        try:
            await run(ctx)
        except Exception as exc:
            if mask_legacy_cancellation(exc, ctx) is not None:
                raise

    return run_masked


class MetricsHandlerIntegration(Integration):
    """Integration that serves a single metrics handler at ``/metrics``."""

    def __init__(
        self,
        name: str,
        instance_id: str,
        common: CommonSettings,
        globals: Globals,
        handler: ASGIApp,
        targets: List[ScrapeTarget],
        run_func: RunFunc,
    ) -> None:
        self.name = name
        self.instance_id = instance_id
        self.common = common
        self.globals = globals
        self._handler = handler
        self._targets = targets
        self._run_func = run_func

    def handlers(self) -> Dict[str, ASGIApp]:
        return {"/metrics": self._handler}

    def scrape_configs(self) -> List[ScrapeTarget]:
        return list(self._targets)

    async def run(self, ctx: RunContext) -> None:
        await self._run_func(ctx)


class ConfigWrapper(Config):
    """Adapts one exporter config plus common settings to the uniform contract.

    The per-kind behaviour is carried as data: ``identifier_func`` derives the
    instance key from the agent-wide key and ``constructor`` builds the running
    exporter from a logger.
    """

    def __init__(
        self,
        cfg: LegacyConfig,
        common: CommonSettings,
        identifier_func: Optional[IdentifierFunc] = None,
        constructor: Optional[ConstructorFunc] = None,
    ) -> None:
        self.cfg = cfg
        self._common = common
        self._identifier_func = identifier_func or cfg.instance_key
        self._constructor = constructor or cfg.new_integration

    def __repr__(self) -> str:
        return f"ConfigWrapper(name={self.name()!r}, instance={self._common.instance!r})"

    def name(self) -> str:
        return self.cfg.name()

    @property
    def common(self) -> CommonSettings:
        return self._common

    def apply_defaults(self, globals: Globals) -> None:
        instance = self.identifier(globals)
        self._common = self._common.with_defaults(globals).with_instance(instance)

    def identifier(self, globals: Globals) -> str:
        if self._common.instance is not None:
            if not self._common.instance:
                raise IdentityResolutionError(f"{self.name()}: instance key is empty")
            return self._common.instance
        try:
            identifier = self._identifier_func(globals.agent_identifier)
        except IdentityResolutionError:
            raise
        except Exception as exc:
            raise IdentityResolutionError(
                f"{self.name()}: cannot determine instance key: {exc}"
            ) from exc
        if not identifier:
            raise IdentityResolutionError(f"{self.name()}: instance key resolved to an empty string")
        return identifier

    def new_integration(self, logger: logging.Logger, globals: Globals) -> Integration:
        try:
            legacy = self._constructor(logger)
        except Exception as exc:
            raise ConstructionError(f"{self.name()}: creating integration: {exc}") from exc

        instance_id = self.identifier(globals)

        # Exporters assumed they would be wired to /metrics somewhere.
        try:
            handler = legacy.metrics_handler()
        except Exception as exc:
            raise HandlerGenerationError(f"{self.name()}: generating http handler: {exc}") from exc
        if handler is None:
            handler = not_found_handler

        targets = [
            ScrapeTarget(
                metrics_path=sc.metrics_path,
                labels={JOB_LABEL: JOB_PREFIX + sc.job_name},
            )
            for sc in legacy.scrape_configs() or []
        ]

        return MetricsHandlerIntegration(
            name=self.name(),
            instance_id=instance_id,
            common=self._common,
            globals=globals,
            handler=handler,
            targets=targets,
            run_func=wrap_legacy_run(legacy.run),
        )
