"""Unit tests for process-boundary fault classification."""

import asyncio
from unittest.mock import MagicMock

import pytest

from chatkeeper.errors import (
    LocalCleanupError,
    ProcessFault,
    TeardownKind,
    TeardownRaceError,
)
from chatkeeper.runtime.events import LifecycleState
from chatkeeper.runtime.fault_guard import (
    FaultCategory,
    classify_fault,
    handle_fault,
    install_fault_guard,
)


@pytest.fixture
def controller():
    ctrl = MagicMock()
    ctrl.state = LifecycleState.AUTHENTICATING
    return ctrl


class TestClassifyFault:
    def test_missing_file_is_silent(self):
        assert classify_fault(FileNotFoundError("gone")) is FaultCategory.SILENT

    def test_local_cleanup_is_silent(self):
        assert classify_fault(LocalCleanupError(message="EPERM")) is FaultCategory.SILENT

    @pytest.mark.parametrize("kind", list(TeardownKind))
    def test_teardown_races_are_benign(self, kind):
        exc = TeardownRaceError(message="closed", kind=kind)
        assert classify_fault(exc) is FaultCategory.BENIGN

    def test_everything_else_is_fatal(self):
        assert classify_fault(RuntimeError("boom")) is FaultCategory.FATAL
        assert classify_fault(ValueError()) is FaultCategory.FATAL


class TestHandleFault:
    def test_silent_does_not_touch_controller(self, controller):
        handle_fault(controller, FileNotFoundError("x"))
        controller.handle_process_fault.assert_not_called()

    def test_benign_does_not_touch_controller(self, controller):
        handle_fault(controller, TeardownRaceError(message="Target closed"))
        controller.handle_process_fault.assert_not_called()

    def test_fatal_wrapped_and_forwarded(self, controller):
        category = handle_fault(controller, RuntimeError("boom"))

        assert category is FaultCategory.FATAL
        fault = controller.handle_process_fault.call_args.args[0]
        assert isinstance(fault, ProcessFault)
        assert fault.code == "fault"
        assert fault.message == "boom"
        assert fault.details == {"type": "RuntimeError"}


@pytest.mark.asyncio
async def test_installed_handler_routes_loop_exceptions(controller):
    loop = asyncio.get_running_loop()
    previous = loop.get_exception_handler()
    try:
        handler = install_fault_guard(controller, loop)
        assert loop.get_exception_handler() is handler

        loop.call_exception_handler({"message": "unhandled", "exception": KeyError("k")})
        loop.call_exception_handler({"message": "no exception attached"})

        controller.handle_process_fault.assert_called_once()
    finally:
        loop.set_exception_handler(previous)
