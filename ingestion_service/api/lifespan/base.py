"""Base class and enums for lifecycle components."""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Set

import structlog

from ...core.exceptions import InvalidTransition

logger = structlog.get_logger(__name__)


class StorageState(Enum):
    """States of the persistent-storage link."""
    CONNECTING = "connecting"
    OPEN = "open"
    FAILED = "failed"


class ServiceState(Enum):
    """States of the listening socket."""
    STARTING = "starting"
    LISTENING = "listening"
    CLOSING = "closing"
    CLOSED = "closed"


class LifecycleComponent:
    """
    Base class for components with a one-way state machine.

    Subclasses declare ``initial_state`` and ``transitions`` (state -> set of
    states reachable from it). Any other move raises InvalidTransition, so
    no state is ever revisited.
    """

    name: str = "UnnamedComponent"
    initial_state: Enum
    transitions: Mapping[Enum, Set[Enum]] = {}

    def __init__(self):
        self.state = self.initial_state
        self.started_at: Optional[datetime] = datetime.now(timezone.utc)
        self.changed_at: Optional[datetime] = None
        self.error: Optional[str] = None
        self.metadata: Dict[str, Any] = {}
        self._logger = structlog.get_logger(f"component.{self.name}")

    def _transition(self, new_state: Enum) -> None:
        if new_state not in self.transitions.get(self.state, set()):
            raise InvalidTransition(self.name, self.state.value, new_state.value)
        previous = self.state
        self.state = new_state
        self.changed_at = datetime.now(timezone.utc)
        self._logger.debug(
            "state_changed",
            component=self.name,
            previous=previous.value,
            state=new_state.value,
        )

    def get_metrics(self) -> Dict[str, Any]:
        """Return a snapshot of the component state."""
        uptime = None
        if self.started_at:
            uptime = (datetime.now(timezone.utc) - self.started_at).total_seconds()

        return {
            "state": self.state.value,
            "uptime_seconds": uptime,
            "changed_at": self.changed_at.isoformat() if self.changed_at else None,
            "error": self.error,
            "metadata": self.metadata,
        }

    def safe_log(self, event: str, **kwargs):
        """Helper for structured logging."""
        self._logger.info(event, component=self.name, **kwargs)

    def log_error(self, event: str, error: BaseException, **kwargs):
        """Helper for error logging with full context."""
        self._logger.error(
            event,
            component=self.name,
            error=str(error),
            error_type=type(error).__name__,
            **kwargs,
            exc_info=error
        )
