from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse, RedirectResponse

from .config import Settings, settings
from .integrations.base import ASGIApp
from .integrations.registry import Integrations, KindTable, load_integrations
from .services.manager import IntegrationManager, RunningIntegration

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class HandlerEndpoint:
    """Serves an integration handler at an exact path, for any method."""

    def __init__(self, handler: ASGIApp) -> None:
        self.handler = handler

    async def __call__(self, scope, receive, send) -> None:
        await self.handler(scope, receive, send)


def _describe(running: RunningIntegration) -> Dict[str, Any]:
    return {
        "name": running.name,
        "instance": running.instance,
        "handlers": sorted(running.prefix + path for path in running.integration.handlers()),
        "targets": [
            {"metrics_path": target.metrics_path, "labels": dict(target.labels)}
            for target in running.integration.scrape_configs()
        ],
        "autoscrape": running.config.common.autoscrape.model_dump(mode="json"),
        "error": str(running.error) if running.error is not None else None,
    }


def create_app(
    app_settings: Settings,
    integrations: Optional[Integrations] = None,
    kinds: Optional[KindTable] = None,
) -> FastAPI:
    if integrations is None:
        integrations = load_integrations(app_settings.read_integrations_section(), kinds)
    manager = IntegrationManager(integrations.active_configs(), app_settings.build_globals())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(level=app_settings.log_level, format=LOG_FORMAT)
        manager.start()
        handlers = manager.handlers()
        for path, handler in handlers.items():
            app.add_route(path, HandlerEndpoint(handler), include_in_schema=False)
        logger.info("serving %d integration handlers", len(handlers))
        try:
            yield
        finally:
            await manager.stop()

    app = FastAPI(title=app_settings.app_name, lifespan=lifespan)
    app.state.manager = manager

    def get_manager(request: Request) -> IntegrationManager:
        return request.app.state.manager

    @app.get("/", include_in_schema=False)
    async def root_redirect() -> RedirectResponse:
        return RedirectResponse("/api/integrations")

    @app.get("/-/ready", response_class=PlainTextResponse)
    async def ready() -> str:
        return "Agent is Ready.\n"

    @app.get("/api/integrations")
    async def list_integrations(manager: IntegrationManager = Depends(get_manager)):
        return {
            "running": [_describe(running) for running in manager.integrations()],
            "failed": [
                {"name": failed.name, "instance": failed.instance, "error": str(failed.error)}
                for failed in manager.failed
            ],
        }

    @app.get("/api/integrations/{name}/{instance}")
    async def read_integration(
        name: str, instance: str, manager: IntegrationManager = Depends(get_manager)
    ):
        try:
            running = manager.get(name, instance)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return _describe(running)

    @app.get("/api/v1/metrics/integrations/sd")
    async def service_discovery(
        manager: IntegrationManager = Depends(get_manager),
    ) -> List[Dict[str, Any]]:
        address = f"{app_settings.http_listen_address}:{app_settings.http_listen_port}"
        return manager.sd_targets(address)

    return app


app = create_app(settings)
