"""Logging configuration for printfleet.

Provides configurable logging with:
- File-based logging with rotation
- Console output for interactive runs
- Per-action timing on a separate performance logger

Environment Variables:
    PRINTFLEET_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    PRINTFLEET_LOG_FILE: Path to log file (default: ~/.printfleet/printfleet.log)
    PRINTFLEET_LOG_MAX_SIZE: Max log file size in MB (default: 10)
    PRINTFLEET_LOG_BACKUPS: Number of backup files to keep (default: 5)

Usage:
    from printfleet.utils.logging_config import setup_logging, timed_section

    setup_logging()  # Call once at startup

    async with timed_section("install", device_id="Sales-Printer"):
        ...
"""
import inspect
import functools
import logging
import os
import time
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Optional

# Performance logger - separate from main logger for easy filtering
perf_logger = logging.getLogger("printfleet.perf")

LOG_FORMAT = "%(asctime)s.%(msecs)03d | %(name)-28s | %(levelname)-7s | %(message)s"
PERF_FORMAT = "%(asctime)s.%(msecs)03d | PERF | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_log_level() -> int:
    """Get log level from environment."""
    level_str = os.environ.get("PRINTFLEET_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_str, logging.INFO)


def get_log_file(default_dir: Optional[Path] = None) -> Path:
    """Get log file path from environment."""
    default_path = (default_dir or Path.home() / ".printfleet") / "printfleet.log"
    path_str = os.environ.get("PRINTFLEET_LOG_FILE", str(default_path))
    return Path(path_str)


def setup_logging(verbose: bool = False, default_dir: Optional[Path] = None) -> None:
    """Configure logging for the application.

    Sets up:
    - Console handler (INFO+ by default, respects PRINTFLEET_LOG_LEVEL)
    - File handler with rotation (DEBUG level - captures everything)
    - Performance logger for action timings
    """
    log_level = logging.DEBUG if verbose else get_log_level()
    log_file = get_log_file(default_dir)
    max_size_mb = int(os.environ.get("PRINTFLEET_LOG_MAX_SIZE", "10"))
    backup_count = int(os.environ.get("PRINTFLEET_LOG_BACKUPS", "5"))

    log_file.parent.mkdir(parents=True, exist_ok=True)

    main_format = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    perf_format = logging.Formatter(PERF_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(main_format)

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8"
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(main_format)

    perf_log_file = log_file.parent / "printfleet-perf.log"
    perf_handler = RotatingFileHandler(
        perf_log_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8"
    )
    perf_handler.setLevel(logging.DEBUG)
    perf_handler.setFormatter(perf_format)

    root_logger = logging.getLogger("printfleet")
    root_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    # Timings go to their own file only
    perf_logger.setLevel(logging.DEBUG)
    perf_logger.handlers.clear()
    perf_logger.addHandler(perf_handler)
    perf_logger.propagate = False

    root_logger.debug(
        f"Logging initialized: level={logging.getLevelName(log_level)}, file={log_file}"
    )


def _perf_line(operation: str, device_id: Optional[str], elapsed_ms: float, status: str) -> str:
    return f"{operation:14s} | {device_id or 'N/A':24s} | {elapsed_ms:9.2f}ms | {status}"


def timed(operation: str):
    """Decorator to log execution time of an async function.

    The target column is the first positional string argument after
    self (a printer or port name), if any.

    Usage:
        @timed("restart_spooler")
        async def restart_spooler(self):
            ...
    """
    def decorator(func: Callable) -> Callable:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"@timed only supports coroutine functions, got {func!r}")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            device_id = None
            if len(args) > 1 and isinstance(args[1], str):
                device_id = args[1]

            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                elapsed = (time.perf_counter() - start) * 1000
                perf_logger.warning(_perf_line(operation, device_id, elapsed, f"FAIL: {e}"))
                raise
            elapsed = (time.perf_counter() - start) * 1000
            perf_logger.info(_perf_line(operation, device_id, elapsed, "OK"))
            return result

        return wrapper

    return decorator


@asynccontextmanager
async def timed_section(operation: str, device_id: Optional[str] = None, **extra):
    """Async context manager for timing code sections.

    Usage:
        async with timed_section("reinstall", device_id="Sales-Printer"):
            await executor.execute(planned)
    """
    start = time.perf_counter()
    extra_str = " | ".join(f"{k}={v}" for k, v in extra.items()) if extra else ""

    try:
        yield
    except Exception as e:
        elapsed = (time.perf_counter() - start) * 1000
        msg = _perf_line(operation, device_id, elapsed, f"FAIL: {e}")
        if extra_str:
            msg += f" | {extra_str}"
        perf_logger.warning(msg)
        raise

    elapsed = (time.perf_counter() - start) * 1000
    msg = _perf_line(operation, device_id, elapsed, "OK")
    if extra_str:
        msg += f" | {extra_str}"
    perf_logger.info(msg)
