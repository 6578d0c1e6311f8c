"""Tests for the ActionExecutor."""
import pytest

from printfleet.errors import MutationFailure
from printfleet.reconcile import Action, ActionExecutor, ErrorKind, PlannedAction
from printfleet.reconcile.executor import _DeviceRun

from conftest import make_device


def planned(device, action, target=None):
    return PlannedAction(device, action, "test", target=target)


class TestInstall:
    """Tests for the install sequence."""

    @pytest.mark.asyncio
    async def test_install_sequence(self, store, settings):
        """Driver, port and printer are created in order, then verified."""
        device = make_device(driver_package="drivers/x.inf")
        executor = ActionExecutor(store, settings)

        outcome = await executor.execute(planned(device, Action.INSTALL))

        assert outcome.success
        assert outcome.error_kind is None
        assert store.calls[:3] == [
            ("install_driver", "X", "drivers/x.inf"),
            ("create_port", "IP_10.0.0.5", "10.0.0.5"),
            ("create_device", "Sales-Printer", "IP_10.0.0.5", "X"),
        ]
        assert store.devices["sales-printer"].address == "10.0.0.5"

    @pytest.mark.asyncio
    async def test_install_uses_port_prefix(self, store, settings):
        settings.port_prefix = "PF_"
        executor = ActionExecutor(store, settings)

        await executor.execute(planned(make_device(), Action.INSTALL))

        assert ("create_port", "PF_10.0.0.5", "10.0.0.5") in store.calls

    @pytest.mark.asyncio
    async def test_install_applies_settings(self, store, settings):
        device = make_device(features={"color": False}, modules={"finisher": {"staple": "TopLeft"}})
        executor = ActionExecutor(store, settings)

        outcome = await executor.execute(planned(device, Action.INSTALL))

        assert outcome.success
        assert store.features[("Sales-Printer", "color")] is False
        assert store.modules[("Sales-Printer", "finisher")] == {"staple": "TopLeft"}
        assert [s.key for s in outcome.settings] == ["color", "module:finisher"]

    @pytest.mark.asyncio
    async def test_install_skips_settings_when_disabled(self, store, settings):
        settings.apply_config_after_install = False
        device = make_device(features={"color": False})
        executor = ActionExecutor(store, settings)

        outcome = await executor.execute(planned(device, Action.INSTALL))

        assert outcome.success
        assert "set_feature" not in store.mutations()

    @pytest.mark.asyncio
    async def test_verification_failure(self, store, settings):
        """Printer that never shows up after creation fails verification."""
        store.invisible.add("Sales-Printer")
        executor = ActionExecutor(store, settings)

        outcome = await executor.execute(planned(make_device(), Action.INSTALL))

        assert not outcome.success
        assert outcome.error_kind == ErrorKind.VERIFICATION_FAILURE
        assert "not visible" in outcome.error_detail

    @pytest.mark.asyncio
    async def test_unreadable_store_after_install_is_verification_failure(self, store, settings):
        """Losing the store while checking a fresh install fails verification."""
        create = store.create_device

        async def create_then_lose_store(name, port_name, driver):
            result = await create(name, port_name, driver)
            store.probe_error = "spooler stopped"
            return result

        store.create_device = create_then_lose_store
        executor = ActionExecutor(store, settings)

        outcome = await executor.execute(planned(make_device(), Action.INSTALL))

        assert not outcome.success
        assert outcome.error_kind == ErrorKind.VERIFICATION_FAILURE
        assert "could not be verified" in outcome.error_detail
        assert "spooler stopped" in outcome.error_detail

    @pytest.mark.asyncio
    async def test_mutation_failure_stops_sequence(self, store, settings):
        """A failed driver install does not go on to create the port."""
        store.failing_ops["install_driver"] = "driver package not found"
        executor = ActionExecutor(store, settings)

        outcome = await executor.execute(planned(make_device(), Action.INSTALL))

        assert not outcome.success
        assert outcome.error_kind == ErrorKind.MUTATION_FAILURE
        assert outcome.error_detail == "install_driver failed: driver package not found"
        assert store.mutations() == ["install_driver"]

    @pytest.mark.asyncio
    async def test_unexpected_exception_recorded(self, store, settings):
        async def boom(*args, **kwargs):
            raise RuntimeError("spooler vanished")

        store.create_port = boom
        executor = ActionExecutor(store, settings)

        outcome = await executor.execute(planned(make_device(), Action.INSTALL))

        assert not outcome.success
        assert outcome.error_kind == ErrorKind.MUTATION_FAILURE
        assert "spooler vanished" in outcome.error_detail


class TestReconfigure:
    """Tests for per-setting isolation."""

    @pytest.mark.asyncio
    async def test_all_settings_applied(self, store, settings):
        store.add_device("Sales-Printer", "10.0.0.5", "X")
        device = make_device(features={"color": True, "duplex": "TwoSidedLongEdge"})
        executor = ActionExecutor(store, settings)

        outcome = await executor.execute(planned(device, Action.RECONFIGURE))

        assert outcome.success
        assert all(s.applied for s in outcome.settings)
        assert "install_driver" not in store.mutations()
        assert "remove_device" not in store.mutations()

    @pytest.mark.asyncio
    async def test_partial_failure_isolated(self, store, settings):
        """Failing duplex does not stop color from being applied."""
        store.add_device("Sales-Printer", "10.0.0.5", "X")
        store.failing_features.add("duplex")
        device = make_device(features={"duplex": "TwoSidedLongEdge", "color": True})
        executor = ActionExecutor(store, settings)

        outcome = await executor.execute(planned(device, Action.RECONFIGURE))

        assert not outcome.success
        assert outcome.error_kind == ErrorKind.PARTIAL_CONFIG_FAILURE
        results = {s.key: s for s in outcome.settings}
        assert results["color"].applied
        assert not results["duplex"].applied
        assert results["duplex"].error == "duplex not supported"
        assert store.features[("Sales-Printer", "color")] is True
        assert "first: duplex" in outcome.error_detail

    @pytest.mark.asyncio
    async def test_module_failure_isolated(self, store, settings):
        store.add_device("Sales-Printer", "10.0.0.5", "X")
        store.failing_modules.add("finisher")
        device = make_device(
            features={"color": True},
            modules={"finisher": {"staple": "TopLeft"}, "tray": {"count": 3}},
        )
        executor = ActionExecutor(store, settings)

        outcome = await executor.execute(planned(device, Action.RECONFIGURE))

        assert outcome.error_kind == ErrorKind.PARTIAL_CONFIG_FAILURE
        assert "1 of 3 settings failed" in outcome.error_detail
        assert store.modules[("Sales-Printer", "tray")] == {"count": 3}

    @pytest.mark.asyncio
    async def test_setting_exception_is_isolated(self, store, settings):
        store.add_device("Sales-Printer", "10.0.0.5", "X")

        async def broken(device_name, key, value):
            raise OSError("pipe closed")

        store.set_feature = broken
        device = make_device(features={"color": True}, modules={"tray": {"count": 3}})
        executor = ActionExecutor(store, settings)

        outcome = await executor.execute(planned(device, Action.RECONFIGURE))

        assert outcome.error_kind == ErrorKind.PARTIAL_CONFIG_FAILURE
        assert store.modules[("Sales-Printer", "tray")] == {"count": 3}


class TestPortRecovery:
    """Tests for the port-removal recovery ladder."""

    @pytest.mark.asyncio
    async def test_clean_removal_needs_no_recovery(self, store, settings):
        current = store.add_device("Old-Printer", "10.0.0.9", "X")
        executor = ActionExecutor(store, settings)

        outcome = await executor.execute(
            planned(make_device("Old-Printer", remove=True), Action.UNINSTALL, current)
        )

        assert outcome.success
        assert store.mutations() == ["remove_device", "remove_port"]
        assert "IP_10.0.0.9" not in store.ports

    @pytest.mark.asyncio
    async def test_busy_port_recovered_once(self, store, settings):
        """One failure runs stray removal, spooler restart and a single retry."""
        current = store.add_device("Old-Printer", "10.0.0.9", "X")
        store.busy_ports["IP_10.0.0.9"] = 1
        executor = ActionExecutor(store, settings)

        outcome = await executor.execute(
            planned(make_device("Old-Printer", remove=True), Action.UNINSTALL, current)
        )

        assert outcome.success
        assert store.mutations() == ["remove_device", "remove_port", "restart_spooler", "remove_port"]
        assert "restarted spooler" in outcome.steps

    @pytest.mark.asyncio
    async def test_stray_printers_removed(self, store, settings):
        """Other printers still bound to the port are removed before the retry."""
        current = store.add_device("Old-Printer", "10.0.0.9", "X")
        store.add_device("Old-Printer (Copy 1)", "10.0.0.9", "X")
        executor = ActionExecutor(store, settings)

        outcome = await executor.execute(
            planned(make_device("Old-Printer", remove=True), Action.UNINSTALL, current)
        )

        assert outcome.success
        assert ("remove_device", "Old-Printer (Copy 1)") in store.calls
        assert store.devices == {}

    @pytest.mark.asyncio
    async def test_ladder_runs_exactly_once(self, store, settings):
        """A port that stays busy fails after one recovery, not a loop."""
        current = store.add_device("Old-Printer", "10.0.0.9", "X")
        store.busy_ports["IP_10.0.0.9"] = 100
        executor = ActionExecutor(store, settings)

        outcome = await executor.execute(
            planned(make_device("Old-Printer", remove=True), Action.UNINSTALL, current)
        )

        assert not outcome.success
        assert outcome.error_kind == ErrorKind.MUTATION_FAILURE
        assert store.mutations().count("remove_port") == 2
        assert store.restart_count == 1

    @pytest.mark.asyncio
    async def test_remove_port_with_recovery_raises(self, store, settings):
        store.busy_ports["IP_10.0.0.9"] = 5
        executor = ActionExecutor(store, settings)
        run = _DeviceRun(planned(make_device(), Action.UNINSTALL))

        with pytest.raises(MutationFailure) as exc_info:
            await executor.remove_port_with_recovery(run, "IP_10.0.0.9")

        assert exc_info.value.operation == "remove_port"


class TestReinstall:
    """Tests for remove-then-install."""

    @pytest.mark.asyncio
    async def test_reinstall_replaces_driver(self, store, settings):
        current = store.add_device("Sales-Printer", "10.0.0.5", "Y")
        executor = ActionExecutor(store, settings)

        outcome = await executor.execute(planned(make_device(), Action.REINSTALL, current))

        assert outcome.success
        assert store.mutations()[:5] == [
            "remove_device", "remove_port", "install_driver", "create_port", "create_device",
        ]
        assert store.devices["sales-printer"].driver == "X"

    @pytest.mark.asyncio
    async def test_port_failure_continues_with_install(self, store, settings):
        """Best-effort: install is still attempted but the outcome fails."""
        current = store.add_device("Sales-Printer", "10.0.0.5", "Y")
        store.busy_ports["IP_10.0.0.5"] = 100
        executor = ActionExecutor(store, settings)

        outcome = await executor.execute(planned(make_device(), Action.REINSTALL, current))

        assert not outcome.success
        assert outcome.error_kind == ErrorKind.MUTATION_FAILURE
        assert outcome.error_detail.startswith("remove_port failed")
        assert "create_device" in store.mutations()
        assert store.devices["sales-printer"].driver == "X"

    @pytest.mark.asyncio
    async def test_port_failure_aborts_when_configured(self, store, settings):
        settings.continue_after_port_failure = False
        current = store.add_device("Sales-Printer", "10.0.0.5", "Y")
        store.busy_ports["IP_10.0.0.5"] = 100
        executor = ActionExecutor(store, settings)

        outcome = await executor.execute(planned(make_device(), Action.REINSTALL, current))

        assert not outcome.success
        assert "install_driver" not in store.mutations()

    @pytest.mark.asyncio
    async def test_reinstall_without_target_installs(self, store, settings):
        executor = ActionExecutor(store, settings)

        outcome = await executor.execute(planned(make_device(), Action.REINSTALL))

        assert outcome.success
        assert store.mutations()[0] == "install_driver"


class TestUninstall:
    """Tests for removals."""

    @pytest.mark.asyncio
    async def test_no_target_is_skipped(self, store, settings):
        executor = ActionExecutor(store, settings)

        outcome = await executor.execute(
            planned(make_device("Old-Printer", remove=True), Action.UNINSTALL)
        )

        assert outcome.success
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_noop_issues_no_calls(self, store, settings):
        executor = ActionExecutor(store, settings)

        outcome = await executor.execute(
            planned(make_device("Old-Printer", remove=True), Action.NOOP)
        )

        assert outcome.success
        assert outcome.action == Action.NOOP
        assert store.calls == []
