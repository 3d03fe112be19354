"""Bind every method of an API surface to a POST route on a named server."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, List

from fastapi import Request

from mountlib.config.mount_config import MountConfig, resolve_config
from mountlib.telemetry.logger import get_logger
from mountlib.utils.helpers import join_path, param_case
from mountlib.utils.validation import ensure

from .dispatch import DispatchPipeline
from .errors import ConfigurationError, RouteConflictError
from .hooks import HookChain
from .registry import MountRegistry
from .surface import ApiSurface

logger = get_logger(__name__)


@dataclass(frozen=True)
class RouteBinding:
    server: str
    path: str
    method: str
    handler: Callable[..., Any]
    receiver: Any


def _endpoint(pipeline: DispatchPipeline) -> Callable:
    async def endpoint(request: Request):
        return await pipeline(request)

    endpoint.__name__ = f"call_{pipeline.method}"
    return endpoint


class RouteBinder:
    def __init__(self, registry: MountRegistry) -> None:
        self.registry = registry

    def plan(self, surface: ApiSurface, config: MountConfig) -> List[RouteBinding]:
        """Compute the bindings for ``surface`` without touching any server."""

        bindings: List[RouteBinding] = []
        seen = set()
        for method, handler in surface.entries():
            segment = param_case(method)
            ensure(bool(segment), f"Method name {method!r} does not yield a path segment", ConfigurationError)
            path = join_path(config.base_path, segment)
            if path in seen:
                raise RouteConflictError(f"POST {path} ({method}) is derived from more than one method")
            seen.add(path)
            bindings.append(
                RouteBinding(
                    server=config.name,
                    path=path,
                    method=method,
                    handler=handler,
                    receiver=surface.receiver,
                )
            )
        return bindings

    def bind(self, surface: ApiSurface, config: MountConfig) -> List[RouteBinding]:
        """Expose every entry of ``surface`` as ``POST {base_path}/{param-case name}``.

        ``config`` must already be resolved.  Paths clashing with each other
        or with routes already bound on the server raise
        :class:`RouteConflictError` and nothing is bound.
        """

        bindings = self.plan(surface, config)
        server = self.registry.ensure_launched(config)

        for binding in bindings:
            if server.has_route(binding.path):
                raise RouteConflictError(
                    f"POST {binding.path} ({binding.method}) is already bound on server {config.name!r}"
                )

        hooks = HookChain.from_config(config)
        for binding in bindings:
            pipeline = DispatchPipeline(binding.method, binding.handler, binding.receiver, hooks)
            server.add_route(binding.path, _endpoint(pipeline), name=binding.method)
            logger.debug("Bound POST %s -> %s on %s", binding.path, binding.method, config.name)
        return bindings

    def bind_class_based(self, surface: ApiSurface, config: MountConfig) -> List[RouteBinding]:
        """Like :meth:`bind`, under a namespace derived from the surface's type name."""

        ensure(
            bool(surface.type_name),
            "Could not expose an API which is not based on a class",
            ConfigurationError,
        )
        namespace = param_case(surface.type_name)
        ensure(bool(namespace), f"Type name {surface.type_name!r} does not yield a namespace", ConfigurationError)
        return self.bind(surface, resolve_config(config, MountConfig(base_path=join_path(config.base_path, namespace))))
