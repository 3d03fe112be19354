"""Launcher table and server registry.

Every exposure names a server.  The first exposure for a name creates the
server through the launcher registered for that name and every later exposure
reuses it, for the lifetime of the :class:`MountRegistry`.  Servers are FastAPI
apps; the built-in launcher serves them with uvicorn on a background thread.
"""

from __future__ import annotations

import socket
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set, Union

import uvicorn
from fastapi import FastAPI

from mountlib.config.mount_config import DEFAULT_NAME, MountConfig
from mountlib.telemetry.logger import get_logger

from .errors import LaunchError, RouteConflictError

logger = get_logger(__name__)


@dataclass
class MountedServer:
    """Transport handle owned by the registry.

    ``server`` and ``thread`` are only set when the app is actually being
    served; apps produced by :func:`build_app` alone are still routable (for
    instance through ``TestClient``).
    """

    name: str
    app: FastAPI
    server: Optional[uvicorn.Server] = None
    thread: Optional[threading.Thread] = None
    port: Optional[int] = None
    paths: Set[str] = field(default_factory=set)

    def has_route(self, path: str) -> bool:
        return path in self.paths

    def add_route(self, path: str, endpoint: Callable, name: Optional[str] = None) -> None:
        if path in self.paths:
            raise RouteConflictError(f"POST {path} is already bound on server {self.name!r}")
        self.app.add_api_route(path, endpoint, methods=["POST"], name=name, response_model=None)
        self.paths.add(path)

    @property
    def running(self) -> bool:
        return self.thread is not None and self.thread.is_alive()

    def wait_until_started(self, timeout: float = 5.0) -> bool:
        """Block until uvicorn accepts connections, ``False`` on timeout."""

        if self.server is None:
            return True
        deadline = time.monotonic() + timeout
        while not self.server.started:
            if not self.running or time.monotonic() > deadline:
                return False
            time.sleep(0.01)
        return True

    def shutdown(self, timeout: float = 5.0) -> None:
        if self.server is not None:
            self.server.should_exit = True
        if self.thread is not None:
            self.thread.join(timeout)


Launcher = Callable[[MountConfig], Union[MountedServer, FastAPI]]


def build_app(config: MountConfig) -> FastAPI:
    """Create the FastAPI app for ``config.name`` and run ``before_listen`` on it.

    Custom launchers should create their app here so the hook still fires
    exactly once, before the app serves anything.
    """

    app = FastAPI(title=f"api-mount {config.name}", openapi_url=None, docs_url=None, redoc_url=None)
    if config.before_listen is not None:
        config.before_listen(app)
    return app


def _bind_socket(host: str, port: int) -> socket.socket:
    try:
        family, type_, proto, _, address = socket.getaddrinfo(
            host, port, type=socket.SOCK_STREAM, flags=socket.AI_PASSIVE
        )[0]
        sock = socket.socket(family, type_, proto)
    except OSError as exc:
        raise LaunchError(f"Cannot resolve listen address {host}:{port}: {exc}") from exc
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(address)
    except OSError as exc:
        sock.close()
        raise LaunchError(f"Cannot listen on {host}:{port}: {exc}") from exc
    return sock


def default_launcher(config: MountConfig) -> MountedServer:
    """Serve a fresh app with uvicorn on ``config.host``:``config.port``.

    The socket is bound before returning so that listen failures reach the
    exposure call.  Port ``0`` picks a free port, see ``MountedServer.port``.
    """

    app = build_app(config)
    sock = _bind_socket(config.host, config.port)
    server = uvicorn.Server(uvicorn.Config(app, lifespan="off", log_config=None, log_level="warning"))
    thread = threading.Thread(
        target=server.run,
        kwargs={"sockets": [sock]},
        name=f"api-mount:{config.name}",
        daemon=True,
    )
    thread.start()
    port = sock.getsockname()[1]
    logger.info("Server %s listening on %s:%d", config.name, config.host, port)
    return MountedServer(name=config.name, app=app, server=server, thread=thread, port=port)


class MountRegistry:
    """Owns the launcher table and the servers created from it.

    ``ensure_launched`` is guarded by a lock: uvicorn serves on its own
    threads, so exposure calls may race.  The lock is reentrant so launchers
    and ``before_listen`` hooks may call back into the registry.
    """

    def __init__(self, default: Launcher = default_launcher) -> None:
        self._default = default
        self._launchers: Dict[str, Launcher] = {}
        self._servers: Dict[str, MountedServer] = {}
        self._lock = threading.RLock()

    def register_launcher(self, name: str, launcher: Launcher) -> None:
        """Bind ``launcher`` to ``name``; the last registration wins.

        A launcher registered under ``DEFAULT_NAME`` also serves every name
        without a launcher of its own.  Servers that already exist are kept.
        """

        with self._lock:
            if name in self._servers:
                logger.warning(
                    "Server %s is already launched, the new launcher is ignored until reset()", name
                )
            self._launchers[name] = launcher

    def launcher_for(self, name: str) -> Launcher:
        return self._launchers.get(name) or self._launchers.get(DEFAULT_NAME) or self._default

    def ensure_launched(self, config: MountConfig) -> MountedServer:
        """Return the server for ``config.name``, creating it on first use."""

        with self._lock:
            existing = self._servers.get(config.name)
            if existing is not None:
                return existing
            launched = self.launcher_for(config.name)(config)
            if isinstance(launched, FastAPI):
                launched = MountedServer(name=config.name, app=launched, port=config.port)
            elif not isinstance(launched, MountedServer):
                raise LaunchError(
                    f"Launcher for {config.name!r} returned {type(launched).__name__}, "
                    "expected a FastAPI app or MountedServer"
                )
            self._servers[config.name] = launched
            logger.info("Launched server %s", config.name)
            return launched

    def get(self, name: str) -> Optional[MountedServer]:
        return self._servers.get(name)

    def launched_names(self) -> List[str]:
        return list(self._servers)

    def reset(self) -> None:
        """Shut down every server and forget all launchers."""

        with self._lock:
            servers = list(self._servers.values())
            self._servers.clear()
            self._launchers.clear()
        for server in servers:
            server.shutdown()
