"""Process wrapper that runs the API and its store connection together.

``BlogServer.start`` opens the store first and binds the listener only once
the store answers, so a failed start never leaves a socket bound.
``stop`` drains uvicorn before the store is closed.
"""

from __future__ import annotations

import asyncio
import enum
import socket

import structlog
import uvicorn

from blog_posts_api.config import Settings
from blog_posts_api.errors import ServerStateError
from blog_posts_api.main import create_app
from blog_posts_api.post_store import PostStore, create_post_store
from blog_posts_api.telemetry import configure_stdlib_logging

log = structlog.get_logger()

_STARTUP_POLL_INTERVAL = 0.01  # seconds between readiness checks


class ServerState(enum.Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


def _bind_socket(host: str, port: int) -> socket.socket:
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError:
        sock.close()
        raise
    sock.set_inheritable(True)
    return sock


async def _serve_listener(server: uvicorn.Server, sock: socket.socket) -> None:
    # uvicorn calls sys.exit when startup fails; keep that inside the task.
    try:
        await server.serve(sockets=[sock])
    except SystemExit as exc:
        raise ServerStateError(f"server exited during startup (code {exc.code})") from exc


class BlogServer:
    """Starts and stops the HTTP listener and the document store as one unit."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or Settings()
        self._state = ServerState.STOPPED
        self._store: PostStore | None = None
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task[None] | None = None
        self._sock: socket.socket | None = None
        self._host = self._settings.host
        self._port: int | None = None

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def store(self) -> PostStore:
        if self._store is None:
            raise ServerStateError("server is not running")
        return self._store

    @property
    def port(self) -> int:
        if self._port is None:
            raise ServerStateError("server is not running")
        return self._port

    @property
    def url(self) -> str:
        host = "127.0.0.1" if self._host in ("0.0.0.0", "") else self._host
        return f"http://{host}:{self.port}"

    async def start(
        self,
        database_url: str | None = None,
        port: int | None = None,
        host: str | None = None,
    ) -> None:
        """Open the store, bind the listener, and return once requests are served."""
        if self._state is not ServerState.STOPPED:
            raise ServerStateError(f"cannot start while {self._state.value}")
        self._state = ServerState.STARTING

        url = database_url or self._settings.database_url
        self._host = host or self._settings.host
        bind_port = self._settings.port if port is None else port

        store: PostStore | None = None
        try:
            store = create_post_store(url, self._settings.redis_key)
            await store.ping()
            sock = _bind_socket(self._host, bind_port)
        except BaseException:
            if store is not None:
                await store.aclose()
            self._state = ServerState.STOPPED
            raise

        effective = self._settings.model_copy(
            update={"database_url": url, "host": self._host, "port": bind_port}
        )
        config = uvicorn.Config(
            create_app(store, effective),
            host=self._host,
            port=bind_port,
            log_level=self._settings.log_level,
            log_config=None,
            lifespan="on",
        )
        server = uvicorn.Server(config)
        task = asyncio.create_task(_serve_listener(server, sock))

        try:
            while not server.started:
                if task.done():
                    task.result()
                    raise ServerStateError("server exited during startup")
                await asyncio.sleep(_STARTUP_POLL_INTERVAL)
        except BaseException:
            if not task.done():
                task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            sock.close()
            await store.aclose()
            self._state = ServerState.STOPPED
            raise

        self._store = store
        self._server = server
        self._task = task
        self._sock = sock
        self._port = sock.getsockname()[1]
        self._state = ServerState.RUNNING
        await log.ainfo("server_started", url=self.url, store=type(store).__name__)

    async def wait(self) -> None:
        """Block until the listener exits (e.g. on SIGINT)."""
        if self._task is None:
            raise ServerStateError("server is not running")
        await asyncio.shield(self._task)

    async def stop(self) -> None:
        """Stop accepting requests, drain in-flight ones, then close the store."""
        if self._state is not ServerState.RUNNING:
            raise ServerStateError(f"cannot stop while {self._state.value}")
        if self._server is None or self._task is None or self._store is None:
            raise ServerStateError("server is not running")
        self._state = ServerState.STOPPING
        self._server.should_exit = True
        try:
            await self._task
        finally:
            if self._sock is not None:
                self._sock.close()
            await self._store.aclose()
            self._store = None
            self._server = None
            self._task = None
            self._sock = None
            self._port = None
            self._state = ServerState.STOPPED
            await log.ainfo("server_stopped")


async def _serve(settings: Settings) -> None:
    server = BlogServer(settings)
    await server.start()
    try:
        await server.wait()
    finally:
        await server.stop()


def run() -> None:
    """Console entry point: serve until interrupted."""
    settings = Settings()
    configure_stdlib_logging(settings.log_level)
    asyncio.run(_serve(settings))
