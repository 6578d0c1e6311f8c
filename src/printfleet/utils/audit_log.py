"""Audit trail of reconciliation outcomes.

Every outcome recorded during a pass is written as one JSON object per
line to a dedicated rotating log file, so a history of what was done to
each printer survives across runs.
"""
import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from ..reconcile.schema import ActionOutcome

# Dedicated audit logger
audit_logger = logging.getLogger("printfleet.audit")


def setup_audit_logging(log_file: Path) -> None:
    """Configure audit logging to a JSON-lines file."""
    log_file.parent.mkdir(parents=True, exist_ok=True)

    audit_logger.setLevel(logging.INFO)
    audit_logger.handlers.clear()

    handler = RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=10,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    audit_logger.addHandler(handler)

    # Keep JSON records out of the console
    audit_logger.propagate = False


@dataclass
class OutcomeRecord:
    """Audit record for one device outcome."""
    timestamp: str
    manifest_version: str
    device_name: str
    action: str
    success: bool
    dry_run: bool = False
    error_kind: Optional[str] = None
    error_detail: Optional[str] = None
    settings: list[dict[str, Any]] = field(default_factory=list)
    steps: list[str] = field(default_factory=list)

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(asdict(self), default=str)

    @classmethod
    def from_json(cls, json_str: str) -> "OutcomeRecord":
        """Parse from JSON string."""
        return cls(**json.loads(json_str))


class AuditTrail:
    """Outcome listener that writes audit records."""

    def __init__(self, manifest_version: str):
        self.manifest_version = manifest_version

    def __call__(self, outcome: ActionOutcome) -> None:
        data = outcome.to_dict()
        record = OutcomeRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            manifest_version=self.manifest_version,
            device_name=outcome.device_name,
            action=data["action"],
            success=outcome.success,
            dry_run=outcome.dry_run,
            error_kind=data["error_kind"],
            error_detail=outcome.error_detail,
            settings=data["settings"],
            steps=data["steps"],
        )
        audit_logger.info(record.to_json())


def get_recent_outcomes(
    log_file: Path,
    device_name: Optional[str] = None,
    limit: int = 50,
) -> list[OutcomeRecord]:
    """Read recent outcomes from the audit log.

    Args:
        log_file: Path to the audit log
        device_name: Only return records for this printer (case-insensitive)
        limit: Maximum number of records to return

    Returns:
        List of OutcomeRecords, most recent first
    """
    if not log_file.exists():
        return []

    records = []
    with open(log_file, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                record = OutcomeRecord.from_json(line)
            except (json.JSONDecodeError, TypeError):
                continue  # Skip malformed lines

            if device_name and record.device_name.lower() != device_name.lower():
                continue
            records.append(record)

    return list(reversed(records[-limit:])) if limit > 0 else []
