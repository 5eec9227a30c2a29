"""
ingestion_service/api/server.py
Startup sequencer and graceful shutdown for the HTTP server.

Responsibilities:
- Build the application and bind the listening socket
- Serve it with uvicorn; the lifespan starts storage while serving begins
- Hand back a ServiceHandle once the server is accepting connections
- Turn uvicorn's "stop accepting, drain, then return" into one awaitable close
"""

import asyncio
import socket
from typing import Optional

import structlog
import uvicorn
from fastapi import APIRouter

from ..core.config import ServiceConfig, resolve_config
from ..core.exceptions import StartupError
from ..core.faults import FaultPolicy, install_fault_reporter
from .lifespan import CacheWarmer, ServiceState, StorageConnection
from .lifespan.base import LifecycleComponent
from .main import create_app

logger = structlog.get_logger("ingestion.server")

STARTUP_POLL_SECONDS = 0.01


def bind_socket(host: str, port: int) -> socket.socket:
    """Bind and listen on ``host:port``. Raises OSError when the address is taken."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    return socket.create_server((host, port), family=family)


class ServiceHandle(LifecycleComponent):
    """
    The live listening socket.

    States move STARTING -> LISTENING -> CLOSING -> CLOSED (or straight to
    CLOSED when startup fails) and never go back. ``close()`` runs the
    shutdown once; every caller awaits that same outcome.
    """

    name = "Server"
    initial_state = ServiceState.STARTING
    transitions = {
        ServiceState.STARTING: {ServiceState.LISTENING, ServiceState.CLOSED},
        ServiceState.LISTENING: {ServiceState.CLOSING},
        ServiceState.CLOSING: {ServiceState.CLOSED},
    }

    def __init__(self, server: uvicorn.Server, sock: socket.socket):
        super().__init__()
        self.server = server
        self.socket = sock
        self.host, self.port = sock.getsockname()[:2]
        self.metadata.update({"host": self.host, "port": self.port})
        self._serve_task: Optional[asyncio.Task] = None
        self._closing: Optional[asyncio.Future] = None

    @property
    def app(self):
        return self.server.config.app

    async def _listen(self, timeout: float) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        self._serve_task = asyncio.create_task(
            self.server.serve(sockets=[self.socket]), name="server:serve"
        )

        while not self.server.started:
            if self._serve_task.done():
                error = self._serve_task.exception() if not self._serve_task.cancelled() else None
                self._abort_startup()
                raise StartupError("serve", str(error) if error else "server stopped before listening")
            if loop.time() >= deadline:
                self.server.should_exit = True
                await asyncio.wait({self._serve_task})
                self._abort_startup()
                raise StartupError("serve", f"not listening after {timeout}s")
            await asyncio.sleep(STARTUP_POLL_SECONDS)

        self._transition(ServiceState.LISTENING)
        self.safe_log("server_listening", host=self.host, port=self.port)

    def _abort_startup(self) -> None:
        self.socket.close()
        self._transition(ServiceState.CLOSED)

    async def close(self) -> None:
        """
        Stop accepting, wait for in-flight requests, then resolve.

        Calling it again (or concurrently) does not restart shutdown; the
        caller sees the result of the first call.
        """
        if self._closing is None:
            self._closing = asyncio.ensure_future(self._close())
        await asyncio.shield(self._closing)

    async def _close(self) -> None:
        self._transition(ServiceState.CLOSING)
        self.safe_log("server_closing")
        self.server.should_exit = True
        try:
            await self._serve_task
        finally:
            self.socket.close()
            self._transition(ServiceState.CLOSED)
            self.safe_log("server_closed")

    async def wait_closed(self) -> None:
        """Wait until serving stops (close() or a signal), then finish closing."""
        await asyncio.wait({self._serve_task})
        await self.close()


async def start(
    config: Optional[ServiceConfig] = None,
    routes: Optional[APIRouter] = None,
    *,
    storage: Optional[StorageConnection] = None,
    warmer: Optional[CacheWarmer] = None,
) -> ServiceHandle:
    """
    Bring the service up and return its handle once it is listening.

    Storage is connected concurrently by the app lifespan: a storage failure
    is logged but does not stop the server from listening. A bind failure
    raises StartupError and nothing else is started.
    """
    config = config or resolve_config()
    install_fault_reporter(asyncio.get_running_loop(), FaultPolicy(config.fault_policy))

    app = create_app(config, routes, storage=storage, warmer=warmer)

    try:
        sock = bind_socket(config.host, config.listen_port)
    except OSError as e:
        logger.error(
            "socket_bind_failed",
            host=config.host,
            port=config.listen_port,
            error=str(e),
        )
        raise StartupError("socket_bind", str(e)) from e

    app.state.warmer.use_port(sock.getsockname()[1])

    server = uvicorn.Server(
        uvicorn.Config(
            app,
            lifespan="on",
            log_config=None,
            access_log=False,
            server_header=False,
            proxy_headers=True,
            forwarded_allow_ips=config.forwarded_allow_ips,
        )
    )
    handle = ServiceHandle(server, sock)
    await handle._listen(config.startup_timeout_seconds)
    logger.info("listening", port=handle.port)
    return handle


__all__ = ["ServiceHandle", "bind_socket", "start"]
