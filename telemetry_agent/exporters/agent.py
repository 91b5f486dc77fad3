from __future__ import annotations

import logging
from typing import List, Optional

from prometheus_client import REGISTRY, make_asgi_app

from ..context import RunContext
from ..integrations.base import ASGIApp, LegacyConfig, LegacyIntegration, LegacyScrapeConfig


class AgentConfig(LegacyConfig):
    """Scrapes the agent's own metrics."""

    def name(self) -> str:
        return "agent"

    def instance_key(self, agent_key: str) -> str:
        return agent_key

    def new_integration(self, logger: logging.Logger) -> LegacyIntegration:
        return AgentIntegration()


DEFAULT_CONFIG = AgentConfig()


class AgentIntegration(LegacyIntegration):
    def metrics_handler(self) -> Optional[ASGIApp]:
        return make_asgi_app(REGISTRY)

    def scrape_configs(self) -> List[LegacyScrapeConfig]:
        return [LegacyScrapeConfig(job_name="agent", metrics_path="/metrics")]

    async def run(self, ctx: RunContext) -> None:
        await ctx.done()
