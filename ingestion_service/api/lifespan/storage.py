"""
Persistent-storage connection.

The connection is opened in the background; its outcome never blocks the
socket bind. Request handlers reach the shared client through
``app.state.storage`` and deal with an unavailable database themselves.
"""
import inspect
from typing import Any, Awaitable, Callable, List, Optional, Union

from pymongo import AsyncMongoClient

from ..metrics.registry import mark_storage_open
from .base import LifecycleComponent, StorageState

OpenCallback = Callable[[], Union[None, Awaitable[None]]]


class StorageConnection(LifecycleComponent):
    """
    MongoDB link with states CONNECTING -> OPEN | FAILED.

    Callbacks registered with ``on_open`` run exactly once, right after
    the connection reaches OPEN.
    """

    name = "Storage"
    initial_state = StorageState.CONNECTING
    transitions = {
        StorageState.CONNECTING: {StorageState.OPEN, StorageState.FAILED},
    }

    def __init__(
        self,
        url: str,
        client_factory: Callable[..., Any] = AsyncMongoClient,
        timeout_ms: int = 30000,
    ):
        super().__init__()
        self.url = url
        self.timeout_ms = timeout_ms
        self.client: Optional[Any] = None
        self._client_factory = client_factory
        self._open_callbacks: List[OpenCallback] = []
        self._connect_started = False
        self.metadata["timeout_ms"] = timeout_ms

    @property
    def is_open(self) -> bool:
        return self.state == StorageState.OPEN

    @property
    def database(self):
        """Default database named in the connection string."""
        if self.client is None:
            return None
        return self.client.get_default_database()

    def on_open(self, callback: OpenCallback) -> None:
        self._open_callbacks.append(callback)

    async def connect(self) -> bool:
        """
        Open the connection. Failures are logged and recorded, never raised.

        Returns True when the connection reached OPEN.
        """
        if self._connect_started:
            self._logger.warning("storage_connect_already_started", state=self.state.value)
            return self.is_open
        self._connect_started = True

        self.safe_log("storage_connecting")
        try:
            self.client = self._client_factory(self.url, serverSelectionTimeoutMS=self.timeout_ms)
            await self.client.admin.command("ping")
        except Exception as e:
            self.error = str(e)
            self._transition(StorageState.FAILED)
            mark_storage_open(False)
            self.log_error("storage_connection_failed", e)
            return False

        self._transition(StorageState.OPEN)
        mark_storage_open(True)
        self.safe_log("storage_connected")
        await self._fire_open_callbacks()
        return True

    async def _fire_open_callbacks(self) -> None:
        callbacks, self._open_callbacks = self._open_callbacks, []
        for callback in callbacks:
            try:
                result = callback()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.log_error("storage_open_callback_failed", e)

    async def close(self) -> None:
        if self.client is None:
            return
        self.safe_log("storage_closing")
        try:
            result = self.client.close()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.log_error("storage_close_failed", e)
        finally:
            self.client = None
            mark_storage_open(False)
