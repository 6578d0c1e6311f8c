"""Identity comparisons between desired and observed devices."""
from typing import Optional


def normalize_address(address: Optional[str]) -> str:
    """Trim and lowercase an address for exact comparison."""
    return (address or "").strip().lower()


def driver_matches(desired: str, observed: Optional[str]) -> bool:
    """Check whether the observed driver satisfies the desired one.

    Observed driver names may carry vendor suffixes, so the desired name
    only has to appear inside the observed name (case-insensitive).
    """
    wanted = (desired or "").strip().lower()
    if not wanted:
        return False
    return wanted in (observed or "").lower()

