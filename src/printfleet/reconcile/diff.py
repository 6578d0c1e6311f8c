"""Diff engine for choosing the action that converges one device.

The decision itself is a pure function over the desired device and the
three independent lookups, so it can be tested without any store.
"""
from ..devices.base import DesiredDevice
from .identity import driver_matches
from .prober import StateProber
from .schema import Action, MatchResult, PlannedAction


class DiffEngine:
    """Classify the action required for each desired device."""

    def __init__(self, prober: StateProber):
        self.prober = prober

    async def calculate(
        self,
        desired: DesiredDevice,
        managed: frozenset[str] = frozenset(),
    ) -> PlannedAction:
        """
        Probe current state and decide the action for a device.

        Args:
            desired: Desired device from the manifest
            managed: Lowercased names the manifest installs

        Returns:
            PlannedAction with the chosen action and reason

        Raises:
            ProbeFailure: If the store cannot be read
        """
        match = await self.prober.probe(desired)
        return decide(desired, match, managed)


def decide(
    desired: DesiredDevice,
    match: MatchResult,
    managed: frozenset[str] = frozenset(),
) -> PlannedAction:
    """Pick an action from the probe results. First matching rule wins.

    managed holds the lowercased names of printers the same manifest
    installs; a removal never falls back by address onto one of them.
    """
    if desired.is_removal:
        return _decide_removal(desired, match, managed)

    observed = match.by_name
    if observed is None:
        return PlannedAction(desired, Action.INSTALL, "not installed")

    if not driver_matches(desired.driver, observed.driver):
        return PlannedAction(
            desired,
            Action.REINSTALL,
            f"driver mismatch: have '{observed.driver}', want '{desired.driver}'",
            target=observed,
        )

    if match.by_port is None:
        return PlannedAction(
            desired,
            Action.REINSTALL,
            f"no port for {desired.address} (printer uses '{observed.port_name}')",
            target=observed,
        )

    if match.by_address is None:
        return PlannedAction(
            desired,
            Action.REINSTALL,
            f"no printer bound to address {desired.address}",
            target=observed,
        )

    return PlannedAction(desired, Action.RECONFIGURE, "installed and consistent", target=observed)


def _decide_removal(
    desired: DesiredDevice,
    match: MatchResult,
    managed: frozenset[str],
) -> PlannedAction:
    if match.by_name is not None:
        return PlannedAction(desired, Action.UNINSTALL, "found by name", target=match.by_name)
    if match.by_address is not None:
        if match.by_address.name.lower() in managed:
            return PlannedAction(
                desired,
                Action.NOOP,
                f"not installed, skipping (address now held by managed '{match.by_address.name}')",
            )
        return PlannedAction(
            desired,
            Action.UNINSTALL,
            f"found by address as '{match.by_address.name}'",
            target=match.by_address,
        )
    return PlannedAction(desired, Action.NOOP, "not installed, skipping")


def summarize_plan(plan: list[PlannedAction]) -> str:
    """
    Create a human-readable summary of a plan.

    Useful for dry-run output and logging.
    """
    if not plan:
        return "Manifest is empty - nothing to do"

    changes = [p for p in plan if p.action not in (Action.NOOP, Action.RECONFIGURE)]
    lines = [f"Planned actions ({len(plan)} devices, {len(changes)} changes):", ""]

    markers = {
        Action.INSTALL: "[+]",
        Action.REINSTALL: "[*]",
        Action.RECONFIGURE: "[~]",
        Action.UNINSTALL: "[-]",
        Action.NOOP: "[ ]",
    }

    for item in plan:
        device = item.device
        lines.append(f"  {markers[item.action]} {item.action.value:<11} {device.name}")
        if item.reason:
            lines.append(f"      {item.reason}")
        if item.action in (Action.INSTALL, Action.REINSTALL):
            lines.append(f"      Driver: {device.driver}")
            lines.append(f"      Address: {device.address}")
        if item.action != Action.UNINSTALL and item.action != Action.NOOP:
            for key, value in device.features.items():
                lines.append(f"      {key} = {value}")
            for module_type in device.modules:
                lines.append(f"      module {module_type}")

    return "\n".join(lines)
