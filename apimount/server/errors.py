"""Exceptions raised by the mount."""

from typing import Any


class MountError(Exception):
    """Base class for mount errors."""


class ConfigurationError(MountError, ValueError):
    """An exposure call cannot be bound as configured.  Nothing was bound."""


class RouteConflictError(ConfigurationError):
    """A derived path is already bound on the target server."""


class LaunchError(MountError):
    """The transport for a server name could not be created or started."""


class CallRejected(MountError):
    """Fail a call with a raw value instead of a structured error.

    The pipeline answers with ``value`` serialized as-is and status 500.
    """

    def __init__(self, value: Any) -> None:
        super().__init__(value)
        self.value = value
