from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, ClassVar, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h|d|w|y)")
_DURATION_UNITS = {
    "ms": 0.001,
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
    "w": 604800,
    "y": 31536000,
}


def parse_duration(value: Any) -> Optional[timedelta]:
    """Parse a Prometheus-style duration such as ``1m`` or ``1h30m``.

    Plain numbers are taken as seconds.
    """
    if value is None or isinstance(value, timedelta):
        return value
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    text = str(value).strip()
    if not text:
        return None
    position = 0
    seconds = 0.0
    for match in _DURATION_RE.finditer(text):
        if match.start() != position:
            break
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position != len(text):
        raise ValueError(f"not a valid duration string: {text!r}")
    return timedelta(seconds=seconds)


@dataclass(frozen=True)
class AutoscrapeGlobals:
    """Agent-wide autoscrape defaults."""

    enable: bool = True
    metrics_instance: str = "default"
    scrape_interval: timedelta = timedelta(minutes=1)
    scrape_timeout: timedelta = timedelta(seconds=10)


@dataclass(frozen=True)
class Globals:
    """Process-wide values used for defaulting and identity."""

    agent_identifier: str
    autoscrape: AutoscrapeGlobals = field(default_factory=AutoscrapeGlobals)


class AutoscrapeSettings(BaseModel):
    """Per-integration autoscrape overrides; ``None`` means not set."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    enable: Optional[bool] = None
    metrics_instance: Optional[str] = None
    scrape_interval: Optional[timedelta] = None
    scrape_timeout: Optional[timedelta] = None

    @field_validator("scrape_interval", "scrape_timeout", mode="before")
    @classmethod
    def _parse_duration(cls, value: Any) -> Optional[timedelta]:
        return parse_duration(value)

    def with_defaults(self, defaults: AutoscrapeGlobals) -> AutoscrapeSettings:
        return AutoscrapeSettings(
            enable=defaults.enable if self.enable is None else self.enable,
            metrics_instance=self.metrics_instance or defaults.metrics_instance,
            scrape_interval=self.scrape_interval or defaults.scrape_interval,
            scrape_timeout=self.scrape_timeout or defaults.scrape_timeout,
        )


class CommonSettings(BaseModel):
    """Settings shared by every wrapped exporter."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    autoscrape: AutoscrapeSettings = Field(default_factory=AutoscrapeSettings)
    instance: Optional[str] = Field(
        None,
        min_length=1,
        description="Explicit instance key; resolved automatically when unset.",
    )

    # Keys read out of each exporter's inline config block.
    FIELDS: ClassVar[Tuple[str, ...]] = ("autoscrape", "instance")

    def with_defaults(self, globals: Globals) -> CommonSettings:
        return CommonSettings(
            autoscrape=self.autoscrape.with_defaults(globals.autoscrape),
            instance=self.instance,
        )

    def with_instance(self, instance: str) -> CommonSettings:
        if self.instance is not None:
            return self
        return CommonSettings(autoscrape=self.autoscrape, instance=instance)
