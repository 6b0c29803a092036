"""Process-boundary classification of unhandled exceptions."""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any

import structlog

from ..errors import LocalCleanupError, ProcessFault, TeardownRaceError
from .lifecycle import LifecycleController

logger = structlog.get_logger(__name__)


class FaultCategory(str, Enum):
    SILENT = "silent"  # dropped without logging
    BENIGN = "benign"  # known teardown race, logged as a warning
    FATAL = "fatal"  # restart unless READY


SILENT_TYPES: tuple[type[BaseException], ...] = (FileNotFoundError, LocalCleanupError)
BENIGN_TYPES: tuple[type[BaseException], ...] = (TeardownRaceError,)


def classify_fault(exc: BaseException) -> FaultCategory:
    if isinstance(exc, SILENT_TYPES):
        return FaultCategory.SILENT
    if isinstance(exc, BENIGN_TYPES):
        return FaultCategory.BENIGN
    return FaultCategory.FATAL


def handle_fault(controller: LifecycleController, exc: BaseException) -> FaultCategory:
    """Classify exc and apply the matching policy."""
    category = classify_fault(exc)
    if category is FaultCategory.SILENT:
        return category
    if category is FaultCategory.BENIGN:
        logger.warning(
            "teardown_race_ignored",
            kind=getattr(getattr(exc, "kind", None), "value", None),
            error=str(exc),
        )
        return category

    fault = exc if isinstance(exc, ProcessFault) else ProcessFault(
        message=str(exc) or type(exc).__name__,
        details={"type": type(exc).__name__},
    )
    logger.error(
        "unhandled_process_fault",
        error=fault.message,
        error_type=type(exc).__name__,
        state=controller.state.value,
    )
    controller.handle_process_fault(fault)
    return category


def install_fault_guard(
    controller: LifecycleController,
    loop: asyncio.AbstractEventLoop | None = None,
):
    """Route the loop's unhandled exceptions through handle_fault."""
    loop = loop or asyncio.get_running_loop()

    def _exception_handler(_loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        exc = context.get("exception")
        if exc is None:
            logger.warning("event_loop_error", message=context.get("message"))
            return
        handle_fault(controller, exc)

    loop.set_exception_handler(_exception_handler)
    logger.info("fault_guard_installed")
    return _exception_handler
