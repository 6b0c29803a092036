"""
Runtime module.

Supervises the browser-automation collaborator: startup, the session state
machine, watchdogs, supervised restarts and process-level fault handling.
"""

from .events import LifecycleState
from .fault_guard import FaultCategory, classify_fault, install_fault_guard
from .lifecycle import LifecycleController, RestartDelays
from .watchdog import Watchdog

__all__ = [
    "LifecycleState",
    "FaultCategory",
    "classify_fault",
    "install_fault_guard",
    "LifecycleController",
    "RestartDelays",
    "Watchdog",
]
