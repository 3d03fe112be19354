"""Configuration record for one exposure call and its resolver.

Two :class:`MountConfig` values take part in every exposure: the *shared* one
given to the factory and the optional *call* one given to ``expose_api``.  The
effective configuration is a shallow merge where call fields win, unset call
fields fall back to shared ones and unset shared fields fall back to the
built-in defaults below.  ``None`` always means "unset".
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Any, Callable, Optional

DEFAULT_PORT = 3000
DEFAULT_HOST = "0.0.0.0"

# Prefix of synthesized server names, several servers on different ports get
# distinct names without explicit coordination.
DEFAULT_NAME_PREFIX = "default_"
DEFAULT_NAME = f"{DEFAULT_NAME_PREFIX}{DEFAULT_PORT}"

BeforeExecution = Callable[..., Any]
BeforeResponse = Callable[..., Any]
AfterResponse = Callable[..., Any]
BeforeListen = Callable[[Any], Any]


@dataclass(frozen=True)
class MountConfig:
    """Options recognised by the mount.

    Parameters
    ----------
    name:
        Server identity in the registry.  Exposures sharing a name share one
        transport.
    base_path:
        Prefix prepended to every derived method path.
    port, host:
        Listen address, only used when the named server is first created.
    before_execution:
        ``(method, handler, receiver, request, response) -> bool``.  Returning
        ``False`` stops the call before the handler runs.
    before_response:
        ``(result, error, method, request, response) -> bool``.  Returning
        ``False`` suppresses the default response write.
    after_response:
        ``(result, error, method)`` observer run after the response was sent.
    before_listen:
        ``(app)`` invoked once when the named server's app is created.
    """

    name: Optional[str] = None
    base_path: Optional[str] = None
    port: Optional[int] = None
    host: Optional[str] = None
    before_execution: Optional[BeforeExecution] = None
    before_response: Optional[BeforeResponse] = None
    after_response: Optional[AfterResponse] = None
    before_listen: Optional[BeforeListen] = None

    def merged(self, override: Optional["MountConfig"]) -> "MountConfig":
        """Return a copy with every field set on ``override`` taking precedence."""

        if override is None:
            return self
        changes = {
            f.name: getattr(override, f.name)
            for f in fields(override)
            if getattr(override, f.name) is not None
        }
        return replace(self, **changes)


def default_name(port: int) -> str:
    return f"{DEFAULT_NAME_PREFIX}{port}"


def resolve_config(shared: Optional[MountConfig], override: Optional[MountConfig] = None) -> MountConfig:
    """Return the effective configuration for one exposure call.

    Never mutates its inputs.  When neither layer names the server, the name is
    derived from the resolved port so that exposures on the same port meet on
    the same server.
    """

    merged = (shared or MountConfig()).merged(override)
    port = DEFAULT_PORT if merged.port is None else merged.port
    return replace(
        merged,
        port=port,
        host=merged.host or DEFAULT_HOST,
        base_path="" if merged.base_path is None else merged.base_path,
        name=merged.name or default_name(port),
    )
