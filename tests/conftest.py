from __future__ import annotations

import logging
from typing import List, Optional

import pytest

from telemetry_agent.context import RunContext
from telemetry_agent.integrations.base import LegacyConfig, LegacyIntegration, LegacyScrapeConfig
from telemetry_agent.integrations.common import Globals


class FakeIntegration(LegacyIntegration):
    def __init__(
        self,
        handler=None,
        scrape_configs: Optional[List[LegacyScrapeConfig]] = None,
        handler_error: Optional[Exception] = None,
        run_error: Optional[Exception] = None,
        echo_cancel: bool = False,
    ) -> None:
        self.handler = handler
        self._scrape_configs = scrape_configs
        self.handler_error = handler_error
        self.run_error = run_error
        self.echo_cancel = echo_cancel
        self.runs = 0

    def metrics_handler(self):
        if self.handler_error is not None:
            raise self.handler_error
        return self.handler

    def scrape_configs(self):
        return self._scrape_configs

    async def run(self, ctx: RunContext) -> None:
        self.runs += 1
        if self.run_error is not None:
            raise self.run_error
        await ctx.done()
        if self.echo_cancel:
            raise ctx.err()


class FakeConfig(LegacyConfig):
    kind: str = "fake_exporter"
    key: str = "fake-host:9100"
    jobs: List[str] = ["fake_exporter"]
    fail_construct: bool = False

    def name(self) -> str:
        return self.kind

    def instance_key(self, agent_key: str) -> str:
        if not self.key:
            raise ValueError("cannot determine hostname")
        return self.key

    def new_integration(self, logger: logging.Logger) -> LegacyIntegration:
        if self.fail_construct:
            raise RuntimeError("connection refused")
        return FakeIntegration(
            scrape_configs=[LegacyScrapeConfig(job_name=job) for job in self.jobs]
        )


@pytest.fixture
def globals_() -> Globals:
    return Globals(agent_identifier="agent-host:12345")


@pytest.fixture
def test_logger() -> logging.Logger:
    return logging.getLogger("tests.integrations")
