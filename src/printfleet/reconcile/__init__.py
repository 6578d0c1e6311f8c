"""Reconciliation engine - converge registered printers to a manifest.

Given the desired printers and a point-in-time view of the print store,
the engine picks one action per printer (install, reinstall, reconfigure,
uninstall or nothing), carries it out with continue-on-error, and reports
an outcome per printer.

Usage:
    from printfleet.reconcile import Reconciler

    reconciler = Reconciler(store, settings)
    report = await reconciler.run(manifest, dry_run=True)
"""

from .engine import Reconciler, managed_names, order_devices
from .schema import (
    Action,
    ErrorKind,
    MatchResult,
    PlannedAction,
    SettingResult,
    ActionOutcome,
    ReconciliationResult,
    ExecuteOptions,
    AppliedMarker,
    RunReport,
)
from .identity import driver_matches, normalize_address
from .prober import StateProber
from .diff import DiffEngine, decide, summarize_plan
from .executor import ActionExecutor
from .results import (
    ResultAggregator,
    exit_code_for,
    EXIT_OK,
    EXIT_FATAL,
    EXIT_DEVICE_FAILURE,
)

__all__ = [
    # Main engine
    "Reconciler",
    "order_devices",
    "managed_names",
    # Schema classes
    "Action",
    "ErrorKind",
    "MatchResult",
    "PlannedAction",
    "SettingResult",
    "ActionOutcome",
    "ReconciliationResult",
    "ExecuteOptions",
    "AppliedMarker",
    "RunReport",
    # Identity
    "driver_matches",
    "normalize_address",
    # Components (for advanced use)
    "StateProber",
    "DiffEngine",
    "decide",
    "summarize_plan",
    "ActionExecutor",
    "ResultAggregator",
    "exit_code_for",
    "EXIT_OK",
    "EXIT_FATAL",
    "EXIT_DEVICE_FAILURE",
]
