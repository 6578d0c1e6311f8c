"""State prober: three independent lookups against the print store."""
import logging
from typing import Optional

from ..devices.base import DesiredDevice, ObservedDevice, PrintStore
from ..errors import ProbeFailure
from .identity import normalize_address
from .schema import MatchResult

logger = logging.getLogger(__name__)


class StateProber:
    """Read-only view of the registration store for one desired device."""

    def __init__(self, store: PrintStore):
        self.store = store

    async def probe_by_name(self, name: str) -> Optional[ObservedDevice]:
        return await self._lookup("name", self.store.get_device, name)

    async def probe_by_port(self, address_fragment: str) -> Optional[ObservedDevice]:
        return await self._lookup("port", self.store.find_device_by_port, address_fragment)

    async def probe_by_address(self, address: str) -> Optional[ObservedDevice]:
        return await self._lookup(
            "address", self.store.find_device_by_address, normalize_address(address)
        )

    async def probe(self, desired: DesiredDevice) -> MatchResult:
        """Run all three lookups for a desired device.

        Raises:
            ProbeFailure: If the store cannot be read
        """
        by_name = await self.probe_by_name(desired.name)
        by_port = await self.probe_by_port(desired.address) if desired.address else None
        by_address = await self.probe_by_address(desired.address) if desired.address else None

        logger.debug(
            f"Probe {desired.name}: name={_label(by_name)} "
            f"port={_label(by_port)} address={_label(by_address)}"
        )
        return MatchResult(by_name=by_name, by_port=by_port, by_address=by_address)

    async def _lookup(self, axis, func, key) -> Optional[ObservedDevice]:
        try:
            return await func(key)
        except ProbeFailure:
            raise
        except Exception as e:
            raise ProbeFailure(f"Lookup by {axis} '{key}' failed: {e}") from e


def _label(device: Optional[ObservedDevice]) -> str:
    return device.name if device else "-"
