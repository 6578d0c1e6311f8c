"""Print store backends."""
from ..config.settings import ReconcileSettings
from ..errors import StoreError
from .base import DesiredDevice, Lifecycle, ObservedDevice, PrintStore
from .powershell import PowerShellPrintStore

__all__ = [
    "DesiredDevice",
    "Lifecycle",
    "ObservedDevice",
    "PrintStore",
    "PowerShellPrintStore",
]

# Store type registry
STORE_TYPES = {
    "powershell": PowerShellPrintStore,
}


def create_store(settings: ReconcileSettings) -> PrintStore:
    """Factory function to create the configured print store."""
    store_type = settings.backend.lower()
    if store_type not in STORE_TYPES:
        raise StoreError(f"Unknown print store backend: {store_type}")

    return STORE_TYPES[store_type](settings)
