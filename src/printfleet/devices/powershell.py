"""Windows print store driven through the PrintManagement cmdlets.

Every call spawns a fresh powershell.exe so that each probe observes the
spooler's current state. Probe output is requested as JSON.

This handler supports:
- Printer/port lookups via Get-Printer and Get-PrinterPort
- Driver staging with pnputil and Add-PrinterDriver
- TCP/IP port and printer creation/removal
- Print configuration and vendor printer properties
"""
import asyncio
import json
import logging
from typing import Any, Optional

from ..config.settings import ReconcileSettings
from ..errors import ProbeFailure
from ..utils.logging_config import timed
from .base import ObservedDevice, PrintStore

logger = logging.getLogger(__name__)

# Feature keys handled by Set-PrintConfiguration, mapped to its parameters
PRINT_CONFIGURATION_PARAMS = {
    "color": "Color",
    "duplex": "DuplexingMode",
    "paper_size": "PaperSize",
    "collate": "Collate",
}

# Output is UTF-8 regardless of the console code page
SCRIPT_PROLOGUE = (
    "[Console]::OutputEncoding = [System.Text.Encoding]::UTF8; "
    "$ErrorActionPreference = 'Stop'; "
)

LIST_DEVICES_SCRIPT = (
    "$ports = @{}; "
    "Get-PrinterPort | ForEach-Object { $ports[$_.Name] = $_.PrinterHostAddress }; "
    "$rows = @(Get-Printer | ForEach-Object { [pscustomobject]@{ "
    "Name = $_.Name; PortName = $_.PortName; DriverName = $_.DriverName; "
    "Address = $ports[$_.PortName] } }); "
    "ConvertTo-Json -Compress -Depth 3 -InputObject $rows"
)


def ps_quote(value: Any) -> str:
    """Render a value as a PowerShell literal."""
    if isinstance(value, bool):
        return "$true" if value else "$false"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("'", "''")
    return f"'{escaped}'"


def parse_devices(output: str) -> list[ObservedDevice]:
    """Parse the JSON emitted by LIST_DEVICES_SCRIPT."""
    text = output.strip()
    if not text:
        return []
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ProbeFailure(f"Unparsable printer listing: {e}") from e

    # A single object is emitted when only one printer exists on older hosts
    if isinstance(data, dict):
        data = [data]

    devices = []
    for row in data:
        devices.append(ObservedDevice(
            name=row.get("Name") or "",
            port_name=row.get("PortName") or "",
            driver=row.get("DriverName") or "",
            address=row.get("Address") or "",
        ))
    return devices


class PowerShellPrintStore(PrintStore):
    """Print store backed by local powershell.exe invocations."""

    store_type = "powershell"

    def __init__(self, settings: ReconcileSettings):
        self.settings = settings

    async def run(self, script: str) -> tuple[bool, str]:
        """Run a PowerShell script.

        Returns:
            Tuple of (success, output)
        """
        full_script = SCRIPT_PROLOGUE + script
        logger.debug(f"powershell: {script}")

        try:
            proc = await asyncio.create_subprocess_exec(
                self.settings.powershell_exe,
                "-NoProfile",
                "-NonInteractive",
                "-Command",
                full_script,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            return False, f"Cannot start {self.settings.powershell_exe}: {e}"

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self.settings.command_timeout
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return False, f"Timed out after {self.settings.command_timeout:.0f}s"

        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")

        if proc.returncode != 0:
            logger.debug(f"Script failed (exit {proc.returncode}): {err}")
            return False, f"{out}\n{err}".strip()
        return True, out.strip()

    # === Probes ===

    @timed("list_devices")
    async def list_devices(self) -> list[ObservedDevice]:
        """Snapshot every registered printer with its port address."""
        success, output = await self.run(LIST_DEVICES_SCRIPT)
        if not success:
            raise ProbeFailure(f"Cannot read printer registrations: {output}")
        return parse_devices(output)

    async def get_device(self, name: str) -> Optional[ObservedDevice]:
        for device in await self.list_devices():
            if device.name.lower() == name.lower():
                return device
        return None

    async def find_device_by_port(self, fragment: str) -> Optional[ObservedDevice]:
        for device in await self.list_devices():
            if fragment and fragment in device.port_name:
                return device
        return None

    async def find_device_by_address(self, address: str) -> Optional[ObservedDevice]:
        for device in await self.list_devices():
            if device.address.strip().lower() == address.strip().lower():
                return device
        return None

    async def find_devices_on_port(self, port_name: str) -> list[ObservedDevice]:
        return [d for d in await self.list_devices() if d.port_name == port_name]

    # === Mutations ===

    @timed("install_driver")
    async def install_driver(self, driver: str, package_path: str = "") -> tuple[bool, str]:
        script = ""
        if package_path:
            script += f"pnputil.exe /add-driver {ps_quote(package_path)} /install | Out-Null; "
        script += f"Add-PrinterDriver -Name {ps_quote(driver)}"
        return await self.run(script)

    @timed("create_port")
    async def create_port(self, port_name: str, address: str) -> tuple[bool, str]:
        name = ps_quote(port_name)
        return await self.run(
            f"if (-not (Get-PrinterPort -Name {name} -ErrorAction SilentlyContinue)) {{ "
            f"Add-PrinterPort -Name {name} -PrinterHostAddress {ps_quote(address)} }}"
        )

    @timed("create_device")
    async def create_device(self, name: str, port_name: str, driver: str) -> tuple[bool, str]:
        return await self.run(
            f"Add-Printer -Name {ps_quote(name)} -PortName {ps_quote(port_name)} "
            f"-DriverName {ps_quote(driver)}"
        )

    @timed("remove_device")
    async def remove_device(self, name: str) -> tuple[bool, str]:
        return await self.run(f"Remove-Printer -Name {ps_quote(name)}")

    @timed("remove_port")
    async def remove_port(self, port_name: str) -> tuple[bool, str]:
        return await self.run(f"Remove-PrinterPort -Name {ps_quote(port_name)}")

    @timed("restart_spooler")
    async def restart_spooler(self) -> tuple[bool, str]:
        return await self.run("Restart-Service -Name Spooler -Force")

    @timed("set_feature")
    async def set_feature(self, device_name: str, key: str, value: Any) -> tuple[bool, str]:
        printer = ps_quote(device_name)
        param = PRINT_CONFIGURATION_PARAMS.get(key.lower())
        if param:
            return await self.run(
                f"Set-PrintConfiguration -PrinterName {printer} -{param} {ps_quote(value)}"
            )
        return await self.run(
            f"Set-PrinterProperty -PrinterName {printer} "
            f"-PropertyName {ps_quote(key)} -Value {ps_quote(str(value))}"
        )

    @timed("configure_module")
    async def configure_module(
        self,
        device_name: str,
        module_type: str,
        settings: dict[str, Any],
    ) -> tuple[bool, str]:
        if not settings:
            return True, ""
        printer = ps_quote(device_name)
        commands = [
            f"Set-PrinterProperty -PrinterName {printer} "
            f"-PropertyName {ps_quote(f'{module_type}.{key}')} -Value {ps_quote(str(value))}"
            for key, value in settings.items()
        ]
        return await self.run("; ".join(commands))
