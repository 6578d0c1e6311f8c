"""Runtime settings."""
from .settings import ReconcileSettings, load_settings, find_settings_file, DEFAULT_STATE_DIR

__all__ = ["ReconcileSettings", "load_settings", "find_settings_file", "DEFAULT_STATE_DIR"]
