"""Configuration errors raised while deriving a healthchecks topology.

All of these are raised synchronously, before any unit is emitted.
PrincipalConflict is the exception: the generator never sees the host's
user database, so it is raised by the activation tool instead.
"""

from __future__ import annotations


class ConfigurationError(Exception):
    """Raised when a HealthchecksConfig cannot be turned into a topology."""


class MissingRequiredSetting(ConfigurationError):
    """A required setting (e.g. SECRET_KEY_FILE) is absent or empty."""

    def __init__(self, setting: str) -> None:
        self.setting = setting
        super().__init__(f"Required setting '{setting}' is not set.")


class InvalidEnumValue(ConfigurationError):
    """A setting holds a value outside its allowed set or range."""

    def __init__(self, setting: str, value: object, allowed: str) -> None:
        self.setting = setting
        self.value = value
        super().__init__(f"Invalid value {value!r} for '{setting}'. Expected {allowed}.")


class DependencyCycleError(ConfigurationError):
    """The unit graph contains an ordering cycle."""

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        super().__init__(f"Unit ordering cycle: {' -> '.join(cycle)}")


class PrincipalConflict(ConfigurationError):
    """A configured non-default user or group does not exist on the host."""

    def __init__(self, kind: str, name: str) -> None:
        self.kind = kind
        self.name = name
        super().__init__(
            f"{kind.capitalize()} '{name}' does not exist. Non-default principals "
            "are not created automatically; create it before activation."
        )
