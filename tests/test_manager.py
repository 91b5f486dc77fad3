import asyncio

import pytest

from conftest import FakeConfig, FakeIntegration
from telemetry_agent.errors import (
    ConstructionError,
    DuplicateIntegrationError,
    IdentityResolutionError,
)
from telemetry_agent.integrations.common import AutoscrapeSettings, CommonSettings
from telemetry_agent.integrations.wrapper import ConfigWrapper
from telemetry_agent.services.manager import IntegrationManager


def _wrapper(**kwargs):
    common = kwargs.pop("common", CommonSettings())
    return ConfigWrapper(FakeConfig(**kwargs), common)


@pytest.mark.asyncio
async def test_start_runs_each_integration_until_stopped(globals_):
    manager = IntegrationManager(
        [_wrapper(key="a:1"), _wrapper(key="b:1")], globals_
    )
    manager.start()
    await asyncio.sleep(0)

    running = manager.integrations()
    assert [(r.name, r.instance) for r in running] == [
        ("fake_exporter", "a:1"),
        ("fake_exporter", "b:1"),
    ]
    assert all(not r.task.done() for r in running)

    await manager.stop()

    assert all(r.task.done() for r in running)
    assert all(r.error is None for r in running)


@pytest.mark.asyncio
async def test_duplicate_identifiers_are_rejected(globals_):
    manager = IntegrationManager([_wrapper(key="same:1"), _wrapper(key="same:1")], globals_)

    with pytest.raises(DuplicateIntegrationError):
        manager.start()


@pytest.mark.asyncio
async def test_same_identifier_different_kinds_is_allowed(globals_):
    manager = IntegrationManager(
        [_wrapper(key="same:1"), _wrapper(kind="other_exporter", key="same:1")], globals_
    )
    manager.start()

    assert len(manager.integrations()) == 2
    await manager.stop()


@pytest.mark.asyncio
async def test_failures_do_not_affect_siblings(globals_):
    manager = IntegrationManager(
        [
            _wrapper(key="broken:1", fail_construct=True),
            _wrapper(key=""),
            _wrapper(key="healthy:1"),
        ],
        globals_,
    )
    manager.start()

    assert [r.instance for r in manager.integrations()] == ["healthy:1"]
    assert [type(f.error) for f in manager.failed] == [
        IdentityResolutionError,
        ConstructionError,
    ]
    await manager.stop()


@pytest.mark.asyncio
async def test_echoed_cancellation_is_not_a_failure(globals_):
    legacy = FakeIntegration(echo_cancel=True)
    config = ConfigWrapper(FakeConfig(), CommonSettings(), constructor=lambda logger: legacy)
    manager = IntegrationManager([config], globals_)
    manager.start()
    await manager.stop()

    (running,) = manager.integrations()
    assert running.error is None
    assert legacy.runs == 1


@pytest.mark.asyncio
async def test_run_errors_are_recorded_not_retried(globals_):
    legacy = FakeIntegration(run_error=RuntimeError("exporter crashed"))
    config = ConfigWrapper(FakeConfig(), CommonSettings(), constructor=lambda logger: legacy)
    manager = IntegrationManager([config], globals_)
    manager.start()
    await asyncio.sleep(0.01)

    (running,) = manager.integrations()
    assert str(running.error) == "exporter crashed"
    assert legacy.runs == 1
    await manager.stop()


@pytest.mark.asyncio
async def test_handlers_are_prefixed_by_name_and_instance(globals_):
    manager = IntegrationManager([_wrapper(key="a:1")], globals_)
    manager.start()

    assert list(manager.handlers()) == ["/integrations/fake_exporter/a:1/metrics"]
    await manager.stop()


@pytest.mark.asyncio
async def test_sd_targets_cover_autoscraped_integrations(globals_):
    manager = IntegrationManager(
        [
            _wrapper(key="a:1", jobs=["fake_exporter"]),
            _wrapper(
                key="b:1",
                common=CommonSettings(autoscrape=AutoscrapeSettings(enable=False)),
            ),
        ],
        globals_,
    )
    manager.start()

    groups = manager.sd_targets("127.0.0.1:12345")

    assert groups == [
        {
            "targets": ["127.0.0.1:12345"],
            "labels": {
                "__metrics_path__": "/integrations/fake_exporter/a:1/metrics",
                "instance": "a:1",
                "agent_hostname": "agent-host:12345",
                "__meta_agent_integration_name": "fake_exporter",
                "__meta_agent_integration_instance": "a:1",
                "__meta_agent_integration_autoscrape": "1",
                "__scrape_interval__": "60s",
                "__scrape_timeout__": "10s",
                "job": "integrations/fake_exporter",
            },
        }
    ]
    await manager.stop()
