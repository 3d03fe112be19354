"""Expose in-process APIs over HTTP.

:class:`ApiMount` is the entry point.  It holds the shared configuration and
turns every method of an API surface into ``POST {base_path}/{method-name}``
on a lazily launched server::

    mount = api_mount_factory(MountConfig(port=8080))
    mount.expose_api({"add": lambda a, b: a + b})
    mount.expose_class_based_api(InstanceSurface(Calculator()))

Servers are looked up by name in a :class:`MountRegistry`.  The module level
:data:`default_registry` is shared by every mount that does not get its own.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Mapping, Optional, Union

from mountlib.config.mount_config import DEFAULT_NAME, MountConfig, resolve_config
from mountlib.config.mount_loader import load_mount_config

from .binder import RouteBinder, RouteBinding
from .errors import CallRejected, ConfigurationError, LaunchError, MountError, RouteConflictError
from .hooks import HookOutcome
from .registry import Launcher, MountedServer, MountRegistry, build_app, default_launcher
from .surface import ApiSurface, InstanceSurface, MappingSurface, StaticSurface, as_surface

default_registry = MountRegistry()


@dataclass
class ApiMount:
    """Expose API surfaces using a shared configuration.

    Parameters
    ----------
    shared:
        Defaults for every exposure made through this mount.  When omitted,
        ``config_path`` is loaded if it exists.
    registry:
        Where servers and launchers live, :data:`default_registry` by default.
    """

    shared: Optional[MountConfig] = None
    config_path: str = "config/api_mount.yaml"
    registry: MountRegistry = field(default_factory=lambda: default_registry)

    def __post_init__(self) -> None:
        if self.shared is None and Path(self.config_path).exists():
            self.shared = load_mount_config(self.config_path)
        # Kept unresolved: a call-level port still picks the synthesized name.
        self.shared = self.shared or MountConfig()

    @property
    def binder(self) -> RouteBinder:
        return RouteBinder(self.registry)

    def resolve(self, config: Optional[MountConfig] = None) -> MountConfig:
        return resolve_config(self.shared, config)

    def expose_api(self, api: Union[ApiSurface, Mapping[str, Any]], config: Optional[MountConfig] = None) -> List[RouteBinding]:
        """Expose every method of ``api``; ``config`` overrides the shared one."""

        return self.binder.bind(as_surface(api), self.resolve(config))

    def expose_class_based_api(self, api: ApiSurface, config: Optional[MountConfig] = None) -> List[RouteBinding]:
        """Expose ``api`` under ``/{type-name}`` below the base path.

        Raises :class:`ConfigurationError` when the surface has no type name,
        for instance a plain mapping.
        """

        return self.binder.bind_class_based(as_surface(api), self.resolve(config))

    def server(self, config: Optional[MountConfig] = None) -> Optional[MountedServer]:
        return self.registry.get(self.resolve(config).name)


def api_mount_factory(shared_config: Optional[MountConfig] = None, registry: Optional[MountRegistry] = None) -> ApiMount:
    return ApiMount(shared=shared_config or MountConfig(), registry=registry or default_registry)


def inject_launch_code(launcher: Launcher, name: str = DEFAULT_NAME, registry: Optional[MountRegistry] = None) -> None:
    """Replace how the server called ``name`` is created and started.

    Only affects servers that have not been launched yet.
    """

    (registry or default_registry).register_launcher(name, launcher)


__all__ = [
    "ApiMount",
    "ApiSurface",
    "CallRejected",
    "ConfigurationError",
    "HookOutcome",
    "InstanceSurface",
    "LaunchError",
    "MappingSurface",
    "MountConfig",
    "MountError",
    "MountRegistry",
    "MountedServer",
    "RouteBinding",
    "RouteConflictError",
    "StaticSurface",
    "api_mount_factory",
    "build_app",
    "default_launcher",
    "default_registry",
    "inject_launch_code",
]
