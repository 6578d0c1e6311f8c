"""Manifest parsing and validation.

Converts YAML or CSV manifests into an ordered, immutable tuple of
DesiredDevice records. All record problems are collected and reported
together; duplicate printer names are rejected here so the reconciler
never sees them.

YAML form:

```yaml
version: "2024-06-01"
printers:
  - name: Sales-Printer
    address: 10.0.0.5
    driver: HP Universal Printing PCL 6
    driver_package: drivers/hpcu.inf
    features:
      color: false
      duplex: TwoSidedLongEdge
    modules:
      finisher: {staple: TopLeft}
  - name: Old-Printer
    address: 10.0.0.9
    action: remove
```

CSV form uses a header row with Name, Address (or IP), Driver,
DriverPackage, Action, Feature.<key> and Module.<type>.<key> columns.
"""
import csv
import hashlib
import io
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ..devices.base import DesiredDevice, Lifecycle
from ..errors import ManifestError, ManifestValidationError

logger = logging.getLogger(__name__)

# CSV header (lowercased) -> record field
CSV_COLUMNS = {
    "name": "name",
    "printer": "name",
    "address": "address",
    "ip": "address",
    "driver": "driver",
    "drivername": "driver",
    "driverpackage": "driver_package",
    "driver_package": "driver_package",
    "action": "action",
}

FEATURE_PREFIX = "feature."
MODULE_PREFIX = "module."

TRUE_WORDS = {"true", "yes", "on"}
FALSE_WORDS = {"false", "no", "off"}


class PrinterRecord(BaseModel):
    """One manifest entry as written by the author."""
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: str
    address: str = ""
    driver: str = ""
    driver_package: str = ""
    features: dict[str, Any] = Field(default_factory=dict)
    modules: dict[str, dict[str, Any]] = Field(default_factory=dict)
    action: Lifecycle = Lifecycle.INSTALL

    @field_validator("name")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("address", mode="before")
    @classmethod
    def _address_text(cls, value: Any) -> Any:
        return str(value) if value is not None else value

    @field_validator("action", mode="before")
    @classmethod
    def _action_lower(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower() or Lifecycle.INSTALL.value
        return value

    @model_validator(mode="after")
    def _install_fields(self) -> "PrinterRecord":
        if self.action == Lifecycle.INSTALL:
            if not self.address:
                raise ValueError("address is required for install")
            if not self.driver:
                raise ValueError("driver is required for install")
        return self

    def to_device(self) -> DesiredDevice:
        return DesiredDevice(
            name=self.name,
            address=self.address,
            driver=self.driver,
            driver_package=self.driver_package,
            features=dict(self.features),
            modules={k: dict(v) for k, v in self.modules.items()},
            lifecycle=self.action,
        )


@dataclass(frozen=True)
class Manifest:
    """Validated desired state for one machine."""
    version: str
    devices: tuple[DesiredDevice, ...]
    checksum: str
    source: str = ""

    def __len__(self) -> int:
        return len(self.devices)


def compute_checksum(records: list[dict[str, Any]]) -> str:
    """
    Compute SHA256 checksum of manifest records.

    Serialized deterministically so that key order does not matter.
    """
    payload = json.dumps(records, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(payload.encode()).hexdigest()[:16]


class ManifestParser:
    """Parse manifests from YAML/CSV text or already-loaded data."""

    def parse(self, data: Any, source: str = "") -> Manifest:
        """
        Parse loaded YAML data into a Manifest.

        Accepts either a mapping with a ``printers`` list or a bare list.

        Raises:
            ManifestError: If the structure is wrong
            ManifestValidationError: If any record is invalid
        """
        version: Optional[str] = None
        if isinstance(data, dict):
            unknown = sorted(set(data) - {"version", "printers"})
            if unknown:
                raise ManifestError(f"Unknown manifest keys: {', '.join(unknown)}")
            if data.get("version") is not None:
                version = str(data["version"])
            entries = data.get("printers") or []
        elif isinstance(data, list):
            entries = data
        elif data is None:
            entries = []
        else:
            raise ManifestError("Manifest must be a mapping or a list of printers")

        if not isinstance(entries, list):
            raise ManifestError("'printers' must be a list")

        return self._build(entries, version, source)

    def parse_yaml(self, text: str, source: str = "") -> Manifest:
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ManifestError(f"Invalid YAML manifest: {e}") from e
        return self.parse(data, source)

    def parse_csv(self, text: str, source: str = "") -> Manifest:
        """Parse a CSV manifest. Blank cells are left out."""
        reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")))
        if not reader.fieldnames:
            return self._build([], None, source)

        header_errors = _check_csv_header(reader.fieldnames)
        entries = []
        for row in reader:
            if not any((v or "").strip() for v in row.values() if isinstance(v, str)):
                continue
            entries.append(_csv_row_to_entry(row))
        return self._build(entries, None, source, header_errors)

    def _build(
        self,
        entries: list[Any],
        version: Optional[str],
        source: str,
        problems: Optional[list[str]] = None,
    ) -> Manifest:
        errors: list[str] = list(problems or [])
        records: list[PrinterRecord] = []
        seen: dict[str, int] = {}

        for index, entry in enumerate(entries, start=1):
            label = _entry_label(index, entry)
            if not isinstance(entry, dict):
                errors.append(f"{label}: must be a mapping")
                continue
            try:
                record = PrinterRecord.model_validate(entry)
            except ValidationError as e:
                for err in e.errors():
                    loc = ".".join(str(p) for p in err["loc"]) or "record"
                    errors.append(f"{label}: {loc}: {err['msg']}")
                continue

            key = record.name.lower()
            if key in seen:
                errors.append(f"{label}: duplicate printer name '{record.name}' (first at #{seen[key]})")
                continue
            seen[key] = index
            records.append(record)

        if errors:
            raise ManifestValidationError(errors)

        dumped = [r.model_dump(mode="json") for r in records]
        checksum = compute_checksum(dumped)
        manifest = Manifest(
            version=version or checksum,
            devices=tuple(r.to_device() for r in records),
            checksum=checksum,
            source=source,
        )
        logger.info(f"Loaded manifest {manifest.version} with {len(manifest)} printers from {source or 'input'}")
        return manifest


def _entry_label(index: int, entry: Any) -> str:
    if isinstance(entry, dict) and entry.get("name"):
        return f"#{index} ({entry['name']})"
    return f"#{index}"


def _csv_value(raw: str) -> Any:
    text = raw.strip()
    if text.lower() in TRUE_WORDS:
        return True
    if text.lower() in FALSE_WORDS:
        return False
    return text


def _check_csv_header(fieldnames: list[str]) -> list[str]:
    """Report every unusable header cell. Bad columns are left out of rows."""
    errors = []
    for header in fieldnames:
        column = (header or "").strip().lower()
        if column.startswith(FEATURE_PREFIX):
            if not column[len(FEATURE_PREFIX):]:
                errors.append(f"Feature column must be Feature.<key>: {header}")
        elif column.startswith(MODULE_PREFIX):
            module_type, _, key = column[len(MODULE_PREFIX):].partition(".")
            if not module_type or not key:
                errors.append(f"Module column must be Module.<type>.<key>: {header}")
        elif column not in CSV_COLUMNS:
            errors.append(f"Unknown CSV column: {header}")
    return errors


def _csv_row_to_entry(row: dict[str, Any]) -> dict[str, Any]:
    entry: dict[str, Any] = {}
    features: dict[str, Any] = {}
    modules: dict[str, dict[str, Any]] = {}

    for header, raw in row.items():
        if header is None or raw is None:
            continue
        value = raw.strip() if isinstance(raw, str) else raw
        if value == "":
            continue
        column = header.strip().lower()

        if column.startswith(FEATURE_PREFIX):
            key = column[len(FEATURE_PREFIX):]
            if key:
                features[key] = _csv_value(value)
        elif column.startswith(MODULE_PREFIX):
            module_type, _, key = column[len(MODULE_PREFIX):].partition(".")
            if module_type and key:
                modules.setdefault(module_type, {})[key] = _csv_value(value)
        elif column in CSV_COLUMNS:
            entry[CSV_COLUMNS[column]] = value

    if features:
        entry["features"] = features
    if modules:
        entry["modules"] = modules
    return entry


def detect_format(source: str, content_type: str = "") -> str:
    """Pick 'csv' or 'yaml' from the file extension or content type."""
    suffix = Path(source.split("?", 1)[0]).suffix.lower()
    if suffix == ".csv":
        return "csv"
    if suffix in (".yaml", ".yml"):
        return "yaml"
    if "csv" in content_type.lower():
        return "csv"
    return "yaml"


def parse_manifest_text(text: str, source: str = "", content_type: str = "") -> Manifest:
    """Parse manifest text in whichever format the source implies."""
    parser = ManifestParser()
    if detect_format(source, content_type) == "csv":
        return parser.parse_csv(text, source)
    return parser.parse_yaml(text, source)


def read_manifest_file(path: Path) -> Manifest:
    """Load a manifest from the local filesystem."""
    try:
        text = path.read_text(encoding="utf-8-sig")
    except OSError as e:
        raise ManifestError(f"Cannot read manifest {path}: {e}") from e
    return parse_manifest_text(text, str(path))
