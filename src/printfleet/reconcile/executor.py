"""Executor for carrying out planned actions against the print store.

Mutations are not atomic. A partially created printer is left in place
and repaired by the next pass through the diff rules.
"""
import asyncio
import logging
from typing import Any, Optional

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from ..config.settings import ReconcileSettings
from ..devices.base import DesiredDevice, ObservedDevice, PrintStore
from ..errors import MutationFailure, PartialConfigFailure, ProbeFailure, VerificationFailure
from ..utils.logging_config import timed_section
from .prober import StateProber
from .schema import Action, ActionOutcome, ErrorKind, PlannedAction, SettingResult

logger = logging.getLogger(__name__)

# One initial attempt plus the single retry after the recovery ladder
PORT_REMOVAL_ATTEMPTS = 2


class _DeviceRun:
    """Mutable scratchpad for one device, frozen into an ActionOutcome."""

    def __init__(self, planned: PlannedAction):
        self.planned = planned
        self.steps: list[str] = []
        self.settings: list[SettingResult] = []
        self.error_kind: Optional[ErrorKind] = None
        self.error_detail: Optional[str] = None

    def step(self, text: str) -> None:
        self.steps.append(text)

    def fail(self, kind: ErrorKind, detail: str) -> None:
        self.steps.append(f"FAILED: {detail}")
        if self.error_kind is None:
            self.error_kind = kind
            self.error_detail = detail

    def outcome(self) -> ActionOutcome:
        return ActionOutcome(
            device_name=self.planned.device.name,
            action=self.planned.action,
            success=self.error_kind is None,
            error_kind=self.error_kind,
            error_detail=self.error_detail,
            reason=self.planned.reason,
            settings=tuple(self.settings),
            steps=tuple(self.steps),
        )


class ActionExecutor:
    """Perform install, reinstall, reconfigure and uninstall actions."""

    def __init__(
        self,
        store: PrintStore,
        settings: ReconcileSettings,
        prober: Optional[StateProber] = None,
    ):
        """
        Initialize executor.

        Args:
            store: Print registration store to mutate
            settings: Settle delays and policy switches
            prober: Prober used for post-install verification
        """
        self.store = store
        self.settings = settings
        self.prober = prober or StateProber(store)

    async def execute(self, planned: PlannedAction) -> ActionOutcome:
        """
        Carry out one planned action.

        Never raises for store failures; they are recorded on the outcome.

        Returns:
            ActionOutcome for the device
        """
        run = _DeviceRun(planned)
        device = planned.device

        async with timed_section(planned.action.value, device_id=device.name):
            try:
                if planned.action == Action.INSTALL:
                    await self._install(run, device)
                elif planned.action == Action.REINSTALL:
                    await self._reinstall(run, device, planned.target)
                elif planned.action == Action.RECONFIGURE:
                    await self._configure(run, device)
                elif planned.action == Action.UNINSTALL:
                    await self._uninstall(run, planned.target)
                else:
                    run.step(planned.reason or "nothing to do")
            except MutationFailure as e:
                run.fail(ErrorKind.MUTATION_FAILURE, str(e))
            except VerificationFailure as e:
                run.fail(ErrorKind.VERIFICATION_FAILURE, str(e))
            except PartialConfigFailure as e:
                run.fail(ErrorKind.PARTIAL_CONFIG_FAILURE, str(e))
            except Exception as e:
                logger.exception(f"Unexpected error processing {device.name}: {e}")
                run.fail(ErrorKind.MUTATION_FAILURE, f"unexpected error: {e}")

        outcome = run.outcome()
        if outcome.success:
            logger.info(f"{device.name}: {planned.action.value} OK")
        else:
            logger.warning(
                f"{device.name}: {planned.action.value} FAILED "
                f"({outcome.error_kind.value}): {outcome.error_detail}"
            )
        return outcome

    # === Actions ===

    async def _install(self, run: _DeviceRun, device: DesiredDevice) -> None:
        port_name = self.settings.port_name_for(device.address)

        await self._mutate(
            run, "install_driver", self.store.install_driver(device.driver, device.driver_package)
        )
        await self._settle(self.settings.driver_settle)

        await self._mutate(run, "create_port", self.store.create_port(port_name, device.address))
        await self._settle(self.settings.port_settle)

        await self._mutate(
            run, "create_device", self.store.create_device(device.name, port_name, device.driver)
        )

        # Registrations show up asynchronously
        await self._settle(self.settings.verify_delay)
        try:
            observed = await self.prober.probe_by_name(device.name)
        except ProbeFailure as e:
            raise VerificationFailure(
                f"{device.name} could not be verified after install: {e}"
            ) from e
        if observed is None:
            raise VerificationFailure(f"{device.name} not visible after install")
        run.step(f"verified {observed.name} on {observed.port_name or '?'}")

        if self.settings.apply_config_after_install:
            await self._configure(run, device)

    async def _reinstall(
        self,
        run: _DeviceRun,
        device: DesiredDevice,
        existing: Optional[ObservedDevice],
    ) -> None:
        if existing is not None:
            await self._mutate(run, "remove_device", self.store.remove_device(existing.name))
            await self._settle(self.settings.port_settle)

            if existing.port_name:
                try:
                    await self.remove_port_with_recovery(run, existing.port_name)
                except MutationFailure as e:
                    run.fail(ErrorKind.MUTATION_FAILURE, str(e))
                    if not self.settings.continue_after_port_failure:
                        return
                    run.step("continuing with install despite port removal failure")

        await self._install(run, device)

    async def _uninstall(self, run: _DeviceRun, existing: Optional[ObservedDevice]) -> None:
        if existing is None:
            run.step("not installed, skipping")
            return

        await self._mutate(run, "remove_device", self.store.remove_device(existing.name))
        await self._settle(self.settings.port_settle)

        if existing.port_name:
            await self.remove_port_with_recovery(run, existing.port_name)

    async def _configure(self, run: _DeviceRun, device: DesiredDevice) -> None:
        """Apply every feature default and vendor module independently."""
        for key, value in device.features.items():
            await self._apply_setting(
                run, key, value, self.store.set_feature(device.name, key, value)
            )

        for module_type, module_settings in device.modules.items():
            await self._apply_setting(
                run,
                f"module:{module_type}",
                module_settings,
                self.store.configure_module(device.name, module_type, module_settings),
            )

        failed = [s for s in run.settings if not s.applied]
        if failed:
            raise PartialConfigFailure(
                [s.key for s in failed],
                attempted=len(run.settings),
                first_error=f"{failed[0].key}: {failed[0].error}",
            )

    async def _apply_setting(self, run: _DeviceRun, key: str, value: Any, call) -> None:
        try:
            success, output = await call
        except Exception as e:
            success, output = False, str(e)

        if success:
            run.settings.append(SettingResult(key=key, value=value, applied=True))
            run.step(f"set {key}")
        else:
            logger.warning(f"{run.planned.device.name}: setting {key} failed: {output}")
            run.settings.append(
                SettingResult(key=key, value=value, applied=False, error=output or "failed")
            )

    # === Port removal with recovery ===

    async def remove_port_with_recovery(self, run: _DeviceRun, port_name: str) -> None:
        """
        Remove a port, recovering once from a spooler-held handle.

        On failure: remove any printers still bound to the port, restart
        the spooler, then retry exactly once.

        Raises:
            MutationFailure: If the retry also fails
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(PORT_REMOVAL_ATTEMPTS),
            retry=retry_if_exception_type(MutationFailure),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    await self._recover_port(run, port_name)
                await self._mutate(run, "remove_port", self.store.remove_port(port_name))

    async def _recover_port(self, run: _DeviceRun, port_name: str) -> None:
        logger.warning(f"Port {port_name} is busy, running recovery")
        run.step(f"recovering port {port_name}")

        try:
            strays = await self.store.find_devices_on_port(port_name)
        except Exception as e:
            logger.warning(f"Cannot list printers on {port_name}: {e}")
            strays = []

        for stray in strays:
            success, output = await self.store.remove_device(stray.name)
            if success:
                run.step(f"removed stray printer {stray.name}")
            else:
                logger.warning(f"Failed to remove stray printer {stray.name}: {output}")

        success, output = await self.store.restart_spooler()
        if success:
            run.step("restarted spooler")
        else:
            logger.warning(f"Spooler restart failed: {output}")
        await self._settle(self.settings.spooler_settle)

    # === Helpers ===

    async def _mutate(self, run: _DeviceRun, operation: str, call) -> str:
        """Await a store mutation, raising MutationFailure on failure."""
        success, output = await call
        if not success:
            raise MutationFailure(operation, output)
        run.step(operation)
        return output

    async def _settle(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)
