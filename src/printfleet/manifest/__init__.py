"""Manifest loading: retrieval, parsing and validation."""
from .loader import (
    Manifest,
    ManifestParser,
    PrinterRecord,
    compute_checksum,
    detect_format,
    parse_manifest_text,
    read_manifest_file,
)
from .fetch import fetch_manifest_text, load_manifest, is_remote

__all__ = [
    "Manifest",
    "ManifestParser",
    "PrinterRecord",
    "compute_checksum",
    "detect_format",
    "parse_manifest_text",
    "read_manifest_file",
    "fetch_manifest_text",
    "load_manifest",
    "is_remote",
]
