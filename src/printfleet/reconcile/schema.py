"""Schema definitions for the reconciliation engine.

Defines the actions, match results and outcome records passed between
the prober, diff engine, executor and aggregator.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from ..devices.base import DesiredDevice, ObservedDevice


class Action(str, Enum):
    """Action chosen for a single device."""
    INSTALL = "install"
    REINSTALL = "reinstall"       # Remove then install
    RECONFIGURE = "reconfigure"   # Apply feature defaults only
    UNINSTALL = "uninstall"
    NOOP = "noop"


class ErrorKind(str, Enum):
    """Kind of failure recorded on an outcome."""
    PROBE_FAILURE = "probe_failure"
    MUTATION_FAILURE = "mutation_failure"
    VERIFICATION_FAILURE = "verification_failure"
    PARTIAL_CONFIG_FAILURE = "partial_config_failure"


@dataclass(frozen=True)
class MatchResult:
    """What the store knows about a desired device, per lookup axis.

    The three lookups are independent and may disagree.
    """
    by_name: Optional[ObservedDevice] = None
    by_port: Optional[ObservedDevice] = None
    by_address: Optional[ObservedDevice] = None


@dataclass(frozen=True)
class PlannedAction:
    """Diff engine decision for one device."""
    device: DesiredDevice
    action: Action
    reason: str = ""
    target: Optional[ObservedDevice] = None


# --- Outcomes ---

@dataclass(frozen=True)
class SettingResult:
    """Result of applying one feature default or vendor module."""
    key: str
    value: Any
    applied: bool
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "value": self.value,
            "applied": self.applied,
            "error": self.error,
        }


@dataclass(frozen=True)
class ActionOutcome:
    """Immutable record of what happened to one device."""
    device_name: str
    action: Action
    success: bool
    error_kind: Optional[ErrorKind] = None
    error_detail: Optional[str] = None
    reason: str = ""
    dry_run: bool = False
    settings: tuple[SettingResult, ...] = ()
    steps: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "device_name": self.device_name,
            "action": self.action.value,
            "success": self.success,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error_detail": self.error_detail,
            "reason": self.reason,
            "dry_run": self.dry_run,
            "settings": [s.to_dict() for s in self.settings],
            "steps": list(self.steps),
        }


@dataclass(frozen=True)
class ReconciliationResult:
    """Ordered outcomes of one pass."""
    outcomes: tuple[ActionOutcome, ...] = ()

    @property
    def any_failure(self) -> bool:
        return any(not o.success for o in self.outcomes)

    @property
    def failed(self) -> list[ActionOutcome]:
        return [o for o in self.outcomes if not o.success]

    def to_dict(self) -> dict:
        return {
            "any_failure": self.any_failure,
            "summary": {
                "total_devices": len(self.outcomes),
                "succeeded": sum(1 for o in self.outcomes if o.success),
                "failed": len(self.failed),
            },
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


@dataclass
class ExecuteOptions:
    """Options for a reconciliation pass."""
    dry_run: bool = False
    only: Optional[set[str]] = None


@dataclass(frozen=True)
class AppliedMarker:
    """The "manifest applied" fact produced by a clean pass."""
    version: str
    checksum: str
    device_count: int
    applied_at: datetime


@dataclass(frozen=True)
class RunReport:
    """Terminal artifact of a top-level run.

    marker is set only when the pass was real and nothing failed; the
    caller decides whether to persist it.
    """
    manifest_version: str
    result: ReconciliationResult
    dry_run: bool = False
    marker: Optional[AppliedMarker] = None

    @property
    def any_failure(self) -> bool:
        return self.result.any_failure

    def to_dict(self) -> dict[str, Any]:
        data = {
            "manifest_version": self.manifest_version,
            "dry_run": self.dry_run,
            "marker_version": self.marker.version if self.marker else None,
        }
        data.update(self.result.to_dict())
        return data
