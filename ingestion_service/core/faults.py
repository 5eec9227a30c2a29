"""
ingestion_service/core/faults.py
Process-wide reporter for uncaught asynchronous failures.

The default policy logs the fault and keeps the process alive with an
explicit warning. The "exit" policy logs and terminates with code 1.
"""

import asyncio
import logging
import os
import traceback
from enum import Enum
from typing import Any, Callable, Dict, Optional

import structlog

logger = structlog.get_logger("ingestion.faults")


class FaultPolicy(str, Enum):
    """What to do after an uncaught fault has been reported."""
    WARN = "warn"
    EXIT = "exit"


def _hard_exit(code: int) -> None:
    logging.shutdown()
    os._exit(code)


class FaultReporter:
    """
    Loop exception handler shared by every event loop in the process.

    Usage:
        reporter = install_fault_reporter(asyncio.get_running_loop())
    """

    def __init__(
        self,
        policy: FaultPolicy = FaultPolicy.WARN,
        exit_func: Callable[[int], Any] = _hard_exit,
    ):
        self.policy = FaultPolicy(policy)
        self.fault_count = 0
        self._exit = exit_func

    def attach(self, loop: asyncio.AbstractEventLoop) -> None:
        if loop.get_exception_handler() == self.handle:
            logger.debug("fault_reporter_already_attached")
            return
        loop.set_exception_handler(self.handle)
        logger.debug("fault_reporter_attached", policy=self.policy.value)

    def handle(self, loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
        self.fault_count += 1
        exc: Optional[BaseException] = context.get("exception")
        origin = context.get("message", "unknown")
        source = context.get("task") or context.get("future") or context.get("handle")
        if source is not None:
            origin = f"{origin} ({source!r})"

        if exc is not None:
            trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
            error = f"{type(exc).__name__}: {exc}"
        else:
            trace = None
            error = origin

        logger.error("uncaught_fault", origin=origin, error=error, trace=trace)
        logger.warning(
            "process_unstable",
            message="Server may be unstable after an uncaught exception. Please restart server",
            policy=self.policy.value,
        )

        if self.policy == FaultPolicy.EXIT:
            logger.critical("process_terminating", reason="fault_policy_exit", code=1)
            self._exit(1)


_reporter: Optional[FaultReporter] = None


def install_fault_reporter(
    loop: Optional[asyncio.AbstractEventLoop] = None,
    policy: FaultPolicy = FaultPolicy.WARN,
) -> FaultReporter:
    """
    Register the process-wide fault reporter on ``loop``.

    The first call fixes the policy; later calls reuse the same reporter.
    """
    global _reporter
    if _reporter is None:
        _reporter = FaultReporter(policy)
    elif _reporter.policy != FaultPolicy(policy):
        logger.warning(
            "fault_policy_ignored",
            active=_reporter.policy.value,
            requested=FaultPolicy(policy).value,
        )
    _reporter.attach(loop or asyncio.get_running_loop())
    return _reporter


def get_fault_reporter() -> Optional[FaultReporter]:
    return _reporter


def reset_fault_reporter() -> None:
    """Forget the installed reporter (testing only)."""
    global _reporter
    _reporter = None


__all__ = [
    "FaultPolicy",
    "FaultReporter",
    "install_fault_reporter",
    "get_fault_reporter",
    "reset_fault_reporter",
]
