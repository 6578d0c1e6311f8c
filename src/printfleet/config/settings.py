"""Runtime settings for reconciliation runs.

Settings are layered: built-in defaults, then an optional settings.yaml,
then environment variables.

Environment variables:
    PRINTFLEET_<FIELD>: overrides any field, e.g. PRINTFLEET_VERIFY_DELAY=0
    PRINTFLEET_SETTINGS: explicit path to the settings file
"""
import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Optional

import yaml

from ..errors import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = "PRINTFLEET_"

DEFAULT_STATE_DIR = Path.home() / ".printfleet"

# Delays are in seconds
DELAY_FIELDS = ("driver_settle", "port_settle", "verify_delay", "spooler_settle")


@dataclass
class ReconcileSettings:
    """Tunable behaviour of a reconciliation pass."""
    driver_settle: float = 2.0
    port_settle: float = 2.0
    verify_delay: float = 5.0
    spooler_settle: float = 5.0
    port_prefix: str = "IP_"
    continue_after_port_failure: bool = True
    apply_config_after_install: bool = True
    backend: str = "powershell"
    powershell_exe: str = "powershell.exe"
    command_timeout: float = 120.0
    state_dir: Path = field(default_factory=lambda: DEFAULT_STATE_DIR)

    def __post_init__(self) -> None:
        self.state_dir = Path(self.state_dir).expanduser()
        for name in DELAY_FIELDS + ("command_timeout",):
            value = getattr(self, name)
            if value < 0:
                raise ConfigError(f"{name} must be >= 0, got {value}")

    def port_name_for(self, address: str) -> str:
        """Name of the TCP/IP port created for an address."""
        return f"{self.port_prefix}{address}"

    @property
    def marker_path(self) -> Path:
        return self.state_dir / "state" / "applied_manifest.yaml"

    @property
    def audit_log_path(self) -> Path:
        return self.state_dir / "audit.log"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReconcileSettings":
        """Build settings from a mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown settings: {', '.join(unknown)}")
        try:
            return cls(**{k: _coerce(k, v) for k, v in data.items()})
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid settings: {e}") from e

    @classmethod
    def from_file(cls, path: Path) -> "ReconcileSettings":
        """Load settings from a YAML file."""
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise ConfigError(f"Cannot read settings file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in settings file {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Settings file {path} must contain a mapping")

        logger.debug(f"Loaded settings from {path}")
        return cls.from_dict(data)

    def with_env(self, environ: Optional[dict[str, str]] = None) -> "ReconcileSettings":
        """Return a copy with PRINTFLEET_* environment overrides applied."""
        environ = os.environ if environ is None else environ
        overrides = {}
        for f in fields(self):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is not None:
                try:
                    overrides[f.name] = _coerce(f.name, raw)
                except ValueError as e:
                    raise ConfigError(f"Invalid {ENV_PREFIX}{f.name.upper()}: {e}") from e
        return replace(self, **overrides) if overrides else self


def _coerce(name: str, value: Any) -> Any:
    """Convert YAML/env values to the field's type."""
    if name in DELAY_FIELDS or name == "command_timeout":
        return float(value)
    if name in ("continue_after_port_failure", "apply_config_after_install"):
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in ("1", "true", "yes", "on"):
            return True
        if text in ("0", "false", "no", "off"):
            return False
        raise ValueError(f"expected a boolean for {name}, got {value!r}")
    if name == "state_dir":
        return Path(str(value))
    return str(value)


def find_settings_file() -> Optional[Path]:
    """Find settings.yaml in the usual places."""
    explicit = os.environ.get(ENV_PREFIX + "SETTINGS")
    if explicit:
        return Path(explicit)

    search_paths = [
        Path.cwd() / "configs" / "settings.yaml",
        Path.cwd() / "settings.yaml",
        Path.home() / ".config" / "printfleet" / "settings.yaml",
        Path("/etc/printfleet/settings.yaml"),
    ]

    for path in search_paths:
        if path.exists():
            return path
    return None


def load_settings(path: Optional[Path] = None) -> ReconcileSettings:
    """Load settings from file (explicit or discovered) plus environment."""
    path = path or find_settings_file()
    settings = ReconcileSettings.from_file(path) if path else ReconcileSettings()
    return settings.with_env()
