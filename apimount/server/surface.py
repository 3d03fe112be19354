"""API surfaces: named collections of callables that can be exposed.

A surface yields ``(name, handler)`` pairs and carries the receiver handlers
are dispatched against.  The caller picks the variant explicitly:

* :class:`MappingSurface` for a plain mapping of functions,
* :class:`InstanceSurface` for the public methods of an object,
* :class:`StaticSurface` for the static and class methods of a type.
"""

from __future__ import annotations

import inspect
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Tuple

from mountlib.utils.validation import ensure

Handler = Callable[..., Any]


def _is_public(name: str) -> bool:
    return bool(name) and not name.startswith("_")


class ApiSurface:
    """Ordered ``name -> handler`` entries plus the dispatch receiver."""

    receiver: Any = None
    type_name: Optional[str] = None

    def entries(self) -> Iterator[Tuple[str, Handler]]:
        raise NotImplementedError

    def __iter__(self) -> Iterator[Tuple[str, Handler]]:
        return self.entries()

    def names(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self.entries())


class MappingSurface(ApiSurface):
    """Surface built from a mapping of names to callables.

    Handlers are called as given; the mapping itself is the receiver handed to
    hooks.  ``type_name`` can be supplied to allow class-based namespacing.
    """

    def __init__(self, mapping: Mapping[str, Handler], type_name: Optional[str] = None) -> None:
        for name, handler in mapping.items():
            ensure(isinstance(name, str) and bool(name), f"Method names must be non-empty strings, got {name!r}", TypeError)
            ensure(callable(handler), f"Handler for {name!r} is not callable", TypeError)
        self.receiver = mapping
        self.type_name = type_name
        self._handlers: Dict[str, Handler] = dict(mapping)

    def entries(self) -> Iterator[Tuple[str, Handler]]:
        return iter(self._handlers.items())


def _class_members(cls: type) -> Dict[str, Any]:
    # Base classes first so that subclass definitions override them while the
    # original declaration order is kept.
    members: Dict[str, Any] = {}
    for klass in reversed(cls.__mro__):
        if klass is object:
            continue
        for name, value in vars(klass).items():
            if _is_public(name):
                members[name] = value
    return members


class InstanceSurface(ApiSurface):
    """Public methods of ``instance``'s class, bound to ``instance``."""

    def __init__(self, instance: Any) -> None:
        ensure(not isinstance(instance, type), "InstanceSurface expects an instance, use StaticSurface for types", TypeError)
        self.receiver = instance
        self.type_name = type(instance).__name__

    def entries(self) -> Iterator[Tuple[str, Handler]]:
        cls = type(self.receiver)
        for name, member in _class_members(cls).items():
            if inspect.isfunction(member) or isinstance(member, (staticmethod, classmethod)):
                yield name, member.__get__(self.receiver, cls)


class StaticSurface(ApiSurface):
    """Static and class methods of ``cls``; the type itself is the receiver."""

    def __init__(self, cls: type) -> None:
        ensure(isinstance(cls, type), f"StaticSurface expects a type, got {type(cls).__name__}", TypeError)
        self.receiver = cls
        self.type_name = cls.__name__

    def entries(self) -> Iterator[Tuple[str, Handler]]:
        for name, member in _class_members(self.receiver).items():
            if isinstance(member, (staticmethod, classmethod)):
                yield name, member.__get__(None, self.receiver)


def as_surface(api: Any) -> ApiSurface:
    if isinstance(api, ApiSurface):
        return api
    if isinstance(api, Mapping):
        return MappingSurface(api)
    raise TypeError(
        f"Cannot expose {type(api).__name__}: pass a mapping or wrap it in "
        "InstanceSurface / StaticSurface"
    )
