"""
File logging setup for the structured logging system.

Configures rotating file handlers per log category plus an errors.log
aggregator under ``{log_base}/{environment}/``.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

# Log file -> logger name prefixes routed into it
LOG_CATEGORIES: dict[str, list[str]] = {
    "server": ["pushserver", "uvicorn"],
    "handlers": ["pushserver.handlers"],
    "realtime": ["pushserver.realtime"],
}


def detect_environment() -> str:
    """
    Detect the current environment.

    Returns:
        "unit_test" under pytest, otherwise LOGGING_ENVIRONMENT when valid, else "local"
    """
    valid_environments = ["unit_test", "production", "local"]

    if "pytest" in sys.modules:
        return "unit_test"

    logging_env = os.getenv("LOGGING_ENVIRONMENT", "")
    if logging_env in valid_environments:
        return logging_env

    return "local"


def resolve_log_base(log_base: str) -> Path:
    """
    Resolve log_base path to absolute path relative to project root.

    Args:
        log_base: Relative or absolute path to log directory

    Returns:
        Absolute path to log directory
    """
    log_path = Path(log_base)
    if log_path.is_absolute():
        return log_path

    current_dir = Path.cwd()
    for parent in [current_dir] + list(current_dir.parents):
        if (parent / "pyproject.toml").exists():
            return parent / log_path
    return current_dir / log_path


def _convert_max_size_to_bytes(max_size_str: str | int) -> int:
    """Convert max_size string to bytes."""
    if isinstance(max_size_str, str):
        if max_size_str.endswith("MB"):
            return int(max_size_str[:-2]) * 1024 * 1024
        if max_size_str.endswith("KB"):
            return int(max_size_str[:-2]) * 1024
        if max_size_str.endswith("B"):
            return int(max_size_str[:-1])
        return int(max_size_str)
    return max_size_str


class LoggerNameFilter(logging.Filter):
    """
    Filter that only allows logs from loggers matching specified prefixes.

    Keeps records of one subsystem out of another subsystem's file.
    """

    def __init__(self, allowed_prefixes: list[str]) -> None:
        super().__init__()
        self.allowed_prefixes = allowed_prefixes

    def filter(self, record: logging.LogRecord) -> bool:
        logger_name = record.name
        for prefix in self.allowed_prefixes:
            if logger_name == prefix or logger_name.startswith(f"{prefix}."):
                return True
        return False


def _create_handler(log_path: Path, max_bytes: int, backup_count: int, level: int = logging.DEBUG) -> logging.Handler:
    """
    Create a rotating file handler with graceful error handling.

    If handler creation fails, returns a NullHandler so a bad log directory
    never takes the server down.
    """
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
        handler.setLevel(level)
        # structlog already renders timestamp, logger and level into the message
        handler.setFormatter(logging.Formatter("%(message)s"))
        return handler
    except OSError as e:
        print(f"Warning: Failed to create log handler for {log_path}: {type(e).__name__}: {e}", file=sys.stderr)
        return logging.NullHandler()


def setup_enhanced_file_logging(environment: str, log_config: dict[str, Any], log_level: str) -> list[logging.Handler]:
    """
    Set up category file handlers and the errors.log aggregator.

    Returns:
        The handlers that were attached, so callers can close them.
    """
    env_log_dir = resolve_log_base(log_config.get("log_base", "logs")) / environment

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, str(log_level).upper(), logging.INFO))

    rotation_config = log_config.get("rotation", {})
    max_bytes = _convert_max_size_to_bytes(rotation_config.get("max_size", "10MB"))
    backup_count = rotation_config.get("backup_count", 5)

    handlers: list[logging.Handler] = []
    for log_file, prefixes in LOG_CATEGORIES.items():
        handler = _create_handler(env_log_dir / f"{log_file}.log", max_bytes, backup_count)
        handler.addFilter(LoggerNameFilter(prefixes))
        root_logger.addHandler(handler)
        handlers.append(handler)

    errors_handler = _create_handler(env_log_dir / "errors.log", max_bytes, backup_count, level=logging.ERROR)
    root_logger.addHandler(errors_handler)
    handlers.append(errors_handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(getattr(logging, str(log_level).upper(), logging.INFO))
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(console_handler)
    handlers.append(console_handler)

    logger.debug("File logging handlers configured", log_dir=str(env_log_dir), handler_count=len(handlers))
    return handlers
