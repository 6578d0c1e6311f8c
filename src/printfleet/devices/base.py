"""Base print store abstraction and device value types."""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


class Lifecycle(str, Enum):
    """What the manifest wants for a device."""
    INSTALL = "install"
    REMOVE = "remove"


@dataclass(frozen=True)
class DesiredDevice:
    """A printer as declared by one manifest entry."""
    name: str
    address: str
    driver: str = ""
    driver_package: str = ""
    features: dict[str, Any] = field(default_factory=dict)
    modules: dict[str, dict[str, Any]] = field(default_factory=dict)
    lifecycle: Lifecycle = Lifecycle.INSTALL

    @property
    def is_removal(self) -> bool:
        return self.lifecycle == Lifecycle.REMOVE


@dataclass(frozen=True)
class ObservedDevice:
    """A printer as currently registered on the machine.

    Snapshot only; discarded after the device has been processed.
    """
    name: str
    port_name: str = ""
    driver: str = ""
    address: str = ""


class PrintStore(ABC):
    """Abstract interface to the OS print registration store.

    Probe methods return None (or an empty list) when nothing matches and
    raise ProbeFailure when the store cannot be read. Mutation methods
    return a (success, output) tuple.
    """

    store_type: str = "abstract"

    # Probes
    @abstractmethod
    async def get_device(self, name: str) -> Optional[ObservedDevice]:
        """Look up a printer by its exact name."""
        pass

    @abstractmethod
    async def find_device_by_port(self, fragment: str) -> Optional[ObservedDevice]:
        """Find a printer whose port name contains the fragment."""
        pass

    @abstractmethod
    async def find_device_by_address(self, address: str) -> Optional[ObservedDevice]:
        """Find a printer whose port points at the host address."""
        pass

    @abstractmethod
    async def find_devices_on_port(self, port_name: str) -> list[ObservedDevice]:
        """List every printer bound to the named port."""
        pass

    # Mutations
    @abstractmethod
    async def install_driver(self, driver: str, package_path: str = "") -> tuple[bool, str]:
        """Register a driver, staging the package first when one is given."""
        pass

    @abstractmethod
    async def create_port(self, port_name: str, address: str) -> tuple[bool, str]:
        """Create a TCP/IP port. An existing port of the same name is kept."""
        pass

    @abstractmethod
    async def create_device(self, name: str, port_name: str, driver: str) -> tuple[bool, str]:
        """Create the printer object."""
        pass

    @abstractmethod
    async def remove_device(self, name: str) -> tuple[bool, str]:
        """Delete a printer object."""
        pass

    @abstractmethod
    async def remove_port(self, port_name: str) -> tuple[bool, str]:
        """Delete a port."""
        pass

    @abstractmethod
    async def restart_spooler(self) -> tuple[bool, str]:
        """Restart the print spooling service."""
        pass

    @abstractmethod
    async def set_feature(self, device_name: str, key: str, value: Any) -> tuple[bool, str]:
        """Apply one feature default (color, duplex, staple, ...)."""
        pass

    @abstractmethod
    async def configure_module(
        self,
        device_name: str,
        module_type: str,
        settings: dict[str, Any],
    ) -> tuple[bool, str]:
        """Apply a vendor-specific module configuration."""
        pass
