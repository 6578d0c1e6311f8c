"""Persistence of the "applied manifest version" marker.

The marker records the last manifest that converged without any device
failure. It is written only from an explicit RunReport.marker, never as a
side effect of reconciliation.

File layout:
    <state_dir>/
    └── state/
        └── applied_manifest.yaml
"""
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Optional

import yaml

from ..reconcile.schema import AppliedMarker

logger = logging.getLogger(__name__)


class MarkerStore:
    """Read and write the applied-manifest marker file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def read(self) -> Optional[AppliedMarker]:
        """
        Get the stored marker.

        Returns None if no marker exists or it cannot be parsed.
        """
        if not self.path.exists():
            return None

        try:
            data = yaml.safe_load(self.path.read_text(encoding="utf-8")) or {}
            applied_at = data.get("applied_at")
            if isinstance(applied_at, str):
                applied_at = datetime.fromisoformat(applied_at)
            return AppliedMarker(
                version=str(data["version"]),
                checksum=str(data.get("checksum", "")),
                device_count=int(data.get("device_count", 0)),
                applied_at=applied_at,
            )
        except (OSError, yaml.YAMLError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring unreadable marker {self.path}: {e}")
            return None

    def write(self, marker: AppliedMarker) -> None:
        """Persist a marker atomically."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        content = yaml.dump(
            {
                "version": marker.version,
                "checksum": marker.checksum,
                "device_count": marker.device_count,
                "applied_at": marker.applied_at.isoformat(),
            },
            default_flow_style=False,
            sort_keys=False,
        )

        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".marker-", suffix=".yaml")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_name, self.path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.info(f"Recorded applied manifest {marker.version}")

    def is_applied(self, version: str) -> bool:
        """Check whether this manifest version was already applied cleanly."""
        marker = self.read()
        return marker is not None and marker.version == version
