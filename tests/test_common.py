from datetime import timedelta

import pytest

from telemetry_agent.integrations.common import (
    AutoscrapeGlobals,
    AutoscrapeSettings,
    CommonSettings,
    Globals,
    parse_duration,
)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("1m", timedelta(minutes=1)),
        ("10s", timedelta(seconds=10)),
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("250ms", timedelta(milliseconds=250)),
        (15, timedelta(seconds=15)),
        (None, None),
    ],
)
def test_parse_duration(value, expected):
    assert parse_duration(value) == expected


def test_parse_duration_rejects_garbage():
    with pytest.raises(ValueError):
        parse_duration("ten seconds")


def test_unset_autoscrape_fields_take_global_defaults():
    defaults = AutoscrapeGlobals(
        enable=False, metrics_instance="remote", scrape_interval=timedelta(seconds=30)
    )
    merged = AutoscrapeSettings().with_defaults(defaults)

    assert merged.enable is False
    assert merged.metrics_instance == "remote"
    assert merged.scrape_interval == timedelta(seconds=30)
    assert merged.scrape_timeout == timedelta(seconds=10)


def test_explicit_autoscrape_values_win_over_globals():
    settings = AutoscrapeSettings.model_validate(
        {"enable": False, "metrics_instance": "mine", "scrape_interval": "5s"}
    )
    merged = settings.with_defaults(AutoscrapeGlobals())

    assert merged.enable is False
    assert merged.metrics_instance == "mine"
    assert merged.scrape_interval == timedelta(seconds=5)


def test_with_defaults_is_pure():
    common = CommonSettings()
    merged = common.with_defaults(Globals(agent_identifier="a"))

    assert common.autoscrape.enable is None
    assert merged.autoscrape.enable is True


def test_instance_is_never_replaced_once_set():
    common = CommonSettings(instance="explicit")

    assert common.with_instance("resolved").instance == "explicit"
    assert CommonSettings().with_instance("resolved").instance == "resolved"


def test_common_settings_reject_unknown_fields():
    with pytest.raises(ValueError):
        CommonSettings.model_validate({"instanse": "typo"})
