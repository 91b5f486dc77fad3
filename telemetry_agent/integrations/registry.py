from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Type, Union

from pydantic import BaseModel, ValidationError

from ..errors import ConfigurationError, ConflictingUnmarshalerError
from .base import LegacyConfig
from .common import CommonSettings
from .contract import Config
from .wrapper import ConfigWrapper

logger = logging.getLogger(__name__)

Slot = Union[None, ConfigWrapper, List[ConfigWrapper]]


@dataclass(frozen=True)
class IntegrationKind:
    """One exporter kind: its config type, defaults and how it is declared."""

    name: str
    config_type: Type[LegacyConfig]
    default: LegacyConfig
    repeated: bool = False

    @property
    def key(self) -> str:
        """Key of this kind inside the ``integrations`` section."""
        return f"{self.name}_configs" if self.repeated else self.name

    def load(self, raw: Optional[Mapping[str, Any]]) -> ConfigWrapper:
        if raw is None:
            raw = {}
        if not isinstance(raw, Mapping):
            raise ConfigurationError(f"{self.key}: expected a mapping, got {type(raw).__name__}")
        values = dict(raw)
        common_values = {k: values.pop(k) for k in CommonSettings.FIELDS if k in values}
        try:
            common = CommonSettings.model_validate(common_values)
            cfg = self.config_type.model_validate({**self.default.model_dump(), **values})
        except ValidationError as exc:
            raise ConfigurationError(f"{self.key}: {exc}") from exc
        return ConfigWrapper(cfg, common)


def implements_custom_unmarshaler(config_type: Type[BaseModel]) -> bool:
    """Return True if ``config_type`` replaces pydantic's own deserialization.

    Such a rule would run before the per-kind defaults are layered in.
    """
    for decorator in config_type.__pydantic_decorators__.model_validators.values():
        if decorator.info.mode in ("before", "wrap"):
            return True
    if config_type.model_validate.__func__ is not BaseModel.model_validate.__func__:
        return True
    if (
        config_type.__get_pydantic_core_schema__.__func__
        is not BaseModel.__get_pydantic_core_schema__.__func__
    ):
        return True
    return False


def check_unmarshalers(kinds: Iterable[IntegrationKind]) -> None:
    for kind in kinds:
        if implements_custom_unmarshaler(kind.config_type):
            raise ConflictingUnmarshalerError(kind.config_type)


class KindTable:
    """Ordered table of exporter kinds; order is startup priority."""

    def __init__(self, kinds: Iterable[IntegrationKind] = ()) -> None:
        self._kinds: "OrderedDict[str, IntegrationKind]" = OrderedDict()
        for kind in kinds:
            self.register(kind)

    def register(self, kind: IntegrationKind) -> None:
        if kind.name in self._kinds:
            raise ValueError(f"Integration kind '{kind.name}' is already registered.")
        self._kinds[kind.name] = kind

    def all(self) -> List[IntegrationKind]:
        return list(self._kinds.values())

    def get(self, name: str) -> IntegrationKind:
        if name not in self._kinds:
            raise KeyError(f"Integration kind '{name}' is not registered.")
        return self._kinds[name]

    def names(self) -> List[str]:
        return list(self._kinds)


class Integrations:
    """Every declared exporter instance, one slot per kind."""

    def __init__(
        self,
        kinds: KindTable,
        slots: Optional[Dict[str, Slot]] = None,
        test_configs: Sequence[Config] = (),
    ) -> None:
        self.kinds = kinds
        self.slots: Dict[str, Slot] = dict(slots or {})
        self.test_configs = list(test_configs)

    def active_configs(self) -> List[Config]:
        active: List[Config] = []
        for kind in self.kinds.all():
            slot = self.slots.get(kind.name)
            if slot is None:
                continue
            if kind.repeated:
                active.extend(slot)
            else:
                active.append(slot)
        active.extend(self.test_configs)
        return active


def load_integrations(
    data: Optional[Mapping[str, Any]], kinds: Optional[KindTable] = None
) -> Integrations:
    """Build the composition from the parsed ``integrations`` section."""
    if kinds is None:
        from ..exporters.kinds import DEFAULT_KINDS

        kinds = DEFAULT_KINDS
    check_unmarshalers(kinds.all())

    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ConfigurationError(
            f"integrations: expected a mapping, got {type(data).__name__}"
        )
    data = dict(data)
    by_key = {kind.key: kind for kind in kinds.all()}
    unknown = sorted(set(data) - set(by_key))
    if unknown:
        raise ConfigurationError(f"unknown integrations: {', '.join(unknown)}")

    slots: Dict[str, Slot] = {}
    for key, raw in data.items():
        kind = by_key[key]
        if kind.repeated:
            if raw is None:
                continue
            if not isinstance(raw, list):
                raise ConfigurationError(f"{key}: expected a list, got {type(raw).__name__}")
            slots[kind.name] = [kind.load(entry) for entry in raw]
        elif raw is not None:
            slots[kind.name] = kind.load(raw)
    logger.debug("loaded integrations: %s", ", ".join(sorted(slots)) or "none")
    return Integrations(kinds, slots)
