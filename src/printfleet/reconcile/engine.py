"""Main reconciler - orchestrates one pass over a manifest.

Provides a single entry point for:
1. Ordering the manifest (removals before installs)
2. Probing current state for each device
3. Choosing an action per device
4. Executing with continue-on-error
5. Aggregating outcomes into a RunReport
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from ..config.settings import ReconcileSettings
from ..devices.base import DesiredDevice, PrintStore
from ..errors import ProbeFailure
from ..manifest.loader import Manifest
from .diff import DiffEngine
from .executor import ActionExecutor
from .prober import StateProber
from .results import OutcomeListener, ResultAggregator
from .schema import (
    Action,
    ActionOutcome,
    AppliedMarker,
    ErrorKind,
    ExecuteOptions,
    PlannedAction,
    RunReport,
)

logger = logging.getLogger(__name__)


def order_devices(devices: tuple[DesiredDevice, ...]) -> list[DesiredDevice]:
    """Removals first, then installs, each in manifest order."""
    removals = [d for d in devices if d.is_removal]
    installs = [d for d in devices if not d.is_removal]
    return removals + installs


def managed_names(manifest: Manifest) -> frozenset[str]:
    """Lowercased names of every printer the manifest installs.

    Taken from the whole manifest so that an `only` selection does not change
    which printers a removal may touch.
    """
    return frozenset(d.name.lower() for d in manifest.devices if not d.is_removal)


class Reconciler:
    """
    Converge the registered printers towards a manifest.

    Usage:
        reconciler = Reconciler(store, settings)
        report = await reconciler.run(manifest)
    """

    def __init__(
        self,
        store: PrintStore,
        settings: Optional[ReconcileSettings] = None,
        listeners: Optional[list[OutcomeListener]] = None,
    ):
        """
        Initialize the reconciler.

        Args:
            store: Print registration store
            settings: Settle delays and policy switches
            listeners: Called with every recorded outcome (e.g. audit trail)
        """
        self.store = store
        self.settings = settings or ReconcileSettings()
        self.listeners = list(listeners or [])
        self.prober = StateProber(store)
        self.diff_engine = DiffEngine(self.prober)
        self.executor = ActionExecutor(store, self.settings, self.prober)

    async def run(
        self,
        manifest: Manifest,
        dry_run: bool = False,
        only: Optional[set[str]] = None,
    ) -> RunReport:
        """
        Run one reconciliation pass.

        Each device is probed fresh, after any earlier removals in the
        same pass. A failure on one device never stops the others.

        Args:
            manifest: Parsed and validated manifest
            dry_run: If True, decide actions without mutating anything
            only: Restrict the pass to these device names

        Returns:
            RunReport with per-device outcomes and, for a clean real
            pass, the marker to persist
        """
        options = ExecuteOptions(dry_run=dry_run, only=_lower(only))
        aggregator = ResultAggregator(self.listeners)
        devices = self._select(manifest, options)
        managed = managed_names(manifest)

        logger.info(
            f"{'DRY RUN: ' if dry_run else ''}Reconciling {len(devices)} printers "
            f"from manifest {manifest.version}"
        )

        for device in devices:
            aggregator.record(await self._process(device, options, managed))

        result = aggregator.result()
        marker = None
        if not dry_run and not result.any_failure and options.only is None:
            marker = AppliedMarker(
                version=manifest.version,
                checksum=manifest.checksum,
                device_count=len(manifest.devices),
                applied_at=datetime.now(timezone.utc),
            )

        failed = len(result.failed)
        logger.info(
            f"Pass complete: {len(result.outcomes) - failed} ok, {failed} failed"
        )
        return RunReport(
            manifest_version=manifest.version,
            result=result,
            dry_run=dry_run,
            marker=marker,
        )

    async def plan(
        self,
        manifest: Manifest,
        only: Optional[set[str]] = None,
    ) -> list[PlannedAction]:
        """Decide actions for every device without mutating anything.

        Raises:
            ProbeFailure: If the store cannot be read
        """
        options = ExecuteOptions(dry_run=True, only=_lower(only))
        managed = managed_names(manifest)
        return [
            await self.diff_engine.calculate(device, managed)
            for device in self._select(manifest, options)
        ]

    async def _process(
        self,
        device: DesiredDevice,
        options: ExecuteOptions,
        managed: frozenset[str],
    ) -> ActionOutcome:
        try:
            planned = await self.diff_engine.calculate(device, managed)
        except ProbeFailure as e:
            logger.error(f"{device.name}: cannot probe current state: {e}")
            return ActionOutcome(
                device_name=device.name,
                action=Action.NOOP,
                success=False,
                error_kind=ErrorKind.PROBE_FAILURE,
                error_detail=str(e),
                reason="probe failed",
                dry_run=options.dry_run,
            )

        logger.info(f"{device.name}: {planned.action.value} ({planned.reason})")

        if options.dry_run:
            return ActionOutcome(
                device_name=device.name,
                action=planned.action,
                success=True,
                reason=planned.reason,
                dry_run=True,
            )

        return await self.executor.execute(planned)

    def _select(self, manifest: Manifest, options: ExecuteOptions) -> list[DesiredDevice]:
        devices = order_devices(manifest.devices)
        if options.only is not None:
            devices = [d for d in devices if d.name.lower() in options.only]
        return devices


def _lower(names: Optional[set[str]]) -> Optional[set[str]]:
    return {n.lower() for n in names} if names else None
