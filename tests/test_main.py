import sys
from typing import Any

import pytest
from fastapi.testclient import TestClient
from pydantic import model_validator

from conftest import FakeConfig
from telemetry_agent.config import Settings
from telemetry_agent.errors import ConfigurationError, ConflictingUnmarshalerError
from telemetry_agent.integrations.registry import IntegrationKind, KindTable, load_integrations
from telemetry_agent.main import create_app

AGENT_ID = "agent-host:12345"


@pytest.fixture
def app_settings(tmp_path):
    config_file = tmp_path / "agent.yaml"
    config_file.write_text(
        "integrations:\n"
        "  node_exporter:\n"
        "    set_collectors: [meminfo]\n"
        "  windows_exporter: {}\n"
        "  memcached_exporter_configs:\n"
        "    - memcached_address: 127.0.0.1:1\n"
        "      autoscrape:\n"
        "        enable: false\n"
    )
    return Settings(config_file=config_file, agent_identifier=AGENT_ID)


def test_settings_read_integrations_section(app_settings):
    section = app_settings.read_integrations_section()

    assert sorted(section) == ["memcached_exporter_configs", "node_exporter", "windows_exporter"]
    assert app_settings.build_globals().agent_identifier == AGENT_ID


def test_default_agent_identifier_uses_port():
    globals_ = Settings(http_listen_port=9999).build_globals()

    assert globals_.agent_identifier.endswith(":9999")
    assert globals_.autoscrape.scrape_interval.total_seconds() == 60


def test_integrations_are_listed(app_settings):
    with TestClient(create_app(app_settings)) as client:
        payload = client.get("/api/integrations").json()

    assert [(i["name"], i["instance"]) for i in payload["running"]] == [
        ("memcached_exporter", "127.0.0.1:1"),
        ("node_exporter", AGENT_ID),
        ("windows_exporter", AGENT_ID),
    ]
    assert payload["failed"] == []


def test_node_exporter_metrics_are_served(app_settings):
    with TestClient(create_app(app_settings)) as client:
        response = client.get(f"/integrations/node_exporter/{AGENT_ID}/metrics")

    assert response.status_code == 200
    assert "node_memory_total_bytes" in response.text


@pytest.mark.skipif(sys.platform == "win32", reason="stand-in is only used off Windows")
def test_integration_without_handler_answers_404(app_settings):
    with TestClient(create_app(app_settings)) as client:
        response = client.get(f"/integrations/windows_exporter/{AGENT_ID}/metrics")

    assert response.status_code == 404


def test_unknown_integration_lookup_is_404(app_settings):
    with TestClient(create_app(app_settings)) as client:
        response = client.get("/api/integrations/node_exporter/elsewhere:1")
        found = client.get(f"/api/integrations/node_exporter/{AGENT_ID}")

    assert response.status_code == 404
    assert found.json()["targets"] == [
        {"metrics_path": "/metrics", "labels": {"job": "integrations/node_exporter"}}
    ]


def test_service_discovery_lists_autoscraped_targets(app_settings):
    with TestClient(create_app(app_settings)) as client:
        groups = client.get("/api/v1/metrics/integrations/sd").json()

    assert [g["labels"]["job"] for g in groups] == ["integrations/node_exporter"]
    assert groups[0]["targets"] == ["127.0.0.1:12345"]
    assert groups[0]["labels"]["__metrics_path__"] == f"/integrations/node_exporter/{AGENT_ID}/metrics"


def test_ready_endpoint(app_settings):
    with TestClient(create_app(app_settings, load_integrations({}))) as client:
        response = client.get("/-/ready")

    assert response.status_code == 200


class PreprocessedConfig(FakeConfig):
    @model_validator(mode="before")
    @classmethod
    def _lowercase_kind(cls, data: Any) -> Any:
        if isinstance(data, dict) and "kind" in data:
            data = {**data, "kind": str(data["kind"]).lower()}
        return data


def test_conflicting_unmarshaler_aborts_app_creation():
    kinds = KindTable(
        [
            IntegrationKind("fake_exporter", FakeConfig, FakeConfig()),
            IntegrationKind(
                "preprocessed", PreprocessedConfig, PreprocessedConfig(kind="preprocessed")
            ),
        ]
    )

    with pytest.raises(ConflictingUnmarshalerError, match="PreprocessedConfig"):
        create_app(Settings(agent_identifier=AGENT_ID), kinds=kinds)


def test_plain_kinds_pass_the_unmarshaler_check_at_app_creation(tmp_path):
    config_file = tmp_path / "agent.yaml"
    config_file.write_text("integrations:\n  fake_exporter:\n    instance: fake-1\n")
    kinds = KindTable([IntegrationKind("fake_exporter", FakeConfig, FakeConfig())])
    app = create_app(Settings(config_file=config_file, agent_identifier=AGENT_ID), kinds=kinds)

    with TestClient(app) as client:
        payload = client.get("/api/integrations").json()

    assert [(i["name"], i["instance"]) for i in payload["running"]] == [
        ("fake_exporter", "fake-1")
    ]


def test_non_mapping_integrations_section_aborts_app_creation(tmp_path):
    config_file = tmp_path / "agent.yaml"
    config_file.write_text("integrations:\n  - node_exporter\n")

    with pytest.raises(ConfigurationError, match="expected a mapping"):
        create_app(Settings(config_file=config_file, agent_identifier=AGENT_ID))
