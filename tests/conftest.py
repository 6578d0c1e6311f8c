"""Shared fixtures: an in-memory print store with failure injection."""
from typing import Any, Optional

import pytest

from printfleet.config.settings import ReconcileSettings
from printfleet.devices.base import DesiredDevice, Lifecycle, ObservedDevice, PrintStore
from printfleet.errors import ProbeFailure


class FakePrintStore(PrintStore):
    """Print store kept in dictionaries.

    Mutations are visible to the next probe immediately. Failures are
    injected through the public attributes below.
    """

    store_type = "fake"

    def __init__(self):
        self.devices: dict[str, ObservedDevice] = {}
        self.ports: dict[str, str] = {}
        self.drivers: set[str] = set()
        self.features: dict[tuple[str, str], Any] = {}
        self.modules: dict[tuple[str, str], dict] = {}
        self.calls: list[tuple] = []

        # Failure injection
        self.probe_error: Optional[str] = None
        self.busy_ports: dict[str, int] = {}
        self.failing_features: set[str] = set()
        self.failing_modules: set[str] = set()
        self.failing_ops: dict[str, str] = {}
        self.invisible: set[str] = set()
        self.restart_count = 0

    # === Helpers ===

    def add_device(
        self,
        name: str,
        address: str,
        driver: str,
        port_name: Optional[str] = None,
    ) -> ObservedDevice:
        """Register a device as if it had been installed earlier."""
        port_name = port_name or f"IP_{address}"
        self.ports[port_name] = address
        device = ObservedDevice(name=name, port_name=port_name, driver=driver, address=address)
        self.devices[name.lower()] = device
        return device

    def mutations(self) -> list[str]:
        return [c[0] for c in self.calls]

    def _check_probe(self) -> None:
        if self.probe_error:
            raise ProbeFailure(self.probe_error)

    def _forced(self, op: str) -> Optional[tuple[bool, str]]:
        if op in self.failing_ops:
            return False, self.failing_ops[op]
        return None

    # === Probes ===

    async def get_device(self, name: str) -> Optional[ObservedDevice]:
        self._check_probe()
        return self.devices.get(name.lower())

    async def find_device_by_port(self, fragment: str) -> Optional[ObservedDevice]:
        self._check_probe()
        for device in self.devices.values():
            if fragment and fragment in device.port_name:
                return device
        return None

    async def find_device_by_address(self, address: str) -> Optional[ObservedDevice]:
        self._check_probe()
        for device in self.devices.values():
            if device.address.lower() == address.lower():
                return device
        return None

    async def find_devices_on_port(self, port_name: str) -> list[ObservedDevice]:
        self._check_probe()
        return [d for d in self.devices.values() if d.port_name == port_name]

    # === Mutations ===

    async def install_driver(self, driver: str, package_path: str = "") -> tuple[bool, str]:
        self.calls.append(("install_driver", driver, package_path))
        forced = self._forced("install_driver")
        if forced:
            return forced
        self.drivers.add(driver)
        return True, ""

    async def create_port(self, port_name: str, address: str) -> tuple[bool, str]:
        self.calls.append(("create_port", port_name, address))
        forced = self._forced("create_port")
        if forced:
            return forced
        self.ports[port_name] = address
        return True, ""

    async def create_device(self, name: str, port_name: str, driver: str) -> tuple[bool, str]:
        self.calls.append(("create_device", name, port_name, driver))
        forced = self._forced("create_device")
        if forced:
            return forced
        if name in self.invisible:
            return True, ""
        self.devices[name.lower()] = ObservedDevice(
            name=name,
            port_name=port_name,
            driver=driver,
            address=self.ports.get(port_name, ""),
        )
        return True, ""

    async def remove_device(self, name: str) -> tuple[bool, str]:
        self.calls.append(("remove_device", name))
        forced = self._forced("remove_device")
        if forced:
            return forced
        if self.devices.pop(name.lower(), None) is None:
            return False, f"No printer named {name}"
        return True, ""

    async def remove_port(self, port_name: str) -> tuple[bool, str]:
        self.calls.append(("remove_port", port_name))
        remaining = self.busy_ports.get(port_name, 0)
        if remaining > 0:
            self.busy_ports[port_name] = remaining - 1
            return False, "The port is in use"
        if any(d.port_name == port_name for d in self.devices.values()):
            return False, "The port is in use"
        self.ports.pop(port_name, None)
        return True, ""

    async def restart_spooler(self) -> tuple[bool, str]:
        self.calls.append(("restart_spooler",))
        self.restart_count += 1
        return True, ""

    async def set_feature(self, device_name: str, key: str, value: Any) -> tuple[bool, str]:
        self.calls.append(("set_feature", device_name, key, value))
        if key in self.failing_features:
            return False, f"{key} not supported"
        self.features[(device_name, key)] = value
        return True, ""

    async def configure_module(
        self,
        device_name: str,
        module_type: str,
        settings: dict[str, Any],
    ) -> tuple[bool, str]:
        self.calls.append(("configure_module", device_name, module_type, settings))
        if module_type in self.failing_modules:
            return False, f"{module_type} not installed"
        self.modules[(device_name, module_type)] = dict(settings)
        return True, ""


def make_device(
    name: str = "Sales-Printer",
    address: str = "10.0.0.5",
    driver: str = "X",
    remove: bool = False,
    **kwargs,
) -> DesiredDevice:
    """Build a DesiredDevice with test defaults."""
    return DesiredDevice(
        name=name,
        address=address,
        driver=driver,
        lifecycle=Lifecycle.REMOVE if remove else Lifecycle.INSTALL,
        **kwargs,
    )


@pytest.fixture
def store():
    """Empty in-memory print store."""
    return FakePrintStore()


@pytest.fixture
def settings(tmp_path):
    """Settings with every settle delay disabled."""
    return ReconcileSettings(
        driver_settle=0,
        port_settle=0,
        verify_delay=0,
        spooler_settle=0,
        state_dir=tmp_path,
    )
