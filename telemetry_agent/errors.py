class IntegrationError(Exception):
    """Base class for integration adapter failures."""


class ConfigurationError(IntegrationError):
    """The integrations section could not be loaded."""


class ConflictingUnmarshalerError(ConfigurationError):
    """A wrapped config type defines its own deserialization rule."""

    def __init__(self, config_type: type) -> None:
        self.config_type = config_type
        super().__init__(
            f"{config_type.__module__}.{config_type.__qualname__} cannot implement custom unmarshaler"
        )


class IdentityResolutionError(IntegrationError):
    """A stable instance identifier could not be derived."""


class ConstructionError(IntegrationError):
    """The wrapped exporter failed to initialize."""


class HandlerGenerationError(IntegrationError):
    """The wrapped exporter failed to build its metrics handler."""


class DuplicateIntegrationError(IntegrationError):
    """Two active configs resolved to the same (name, identifier) pair."""
