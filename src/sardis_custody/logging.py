"""
Logging utilities for the custody core.

Provides helpers that keep signatures and key material out of log lines,
a JSON formatter for log aggregators, and a decorator that times and logs
synchronous entry points.

Usage:
    from sardis_custody.logging import (
        configure_logging,
        log_operation_sync,
        mask_address,
    )

    configure_logging(level=logging.DEBUG, json_format=True)

    @log_operation_sync("relay")
    def execute(...):
        ...
"""
from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Dict, Optional, ParamSpec, TypeVar

T = TypeVar("T")
P = ParamSpec("P")

MASK_PATTERN = "***MASKED***"

SENSITIVE_FIELDS = frozenset({
    "private_key",
    "privateKey",
    "secret",
    "signature",
    "signatures",
    "mnemonic",
    "seed",
})


# =============================================================================
# Sensitive Data Masking
# =============================================================================

def mask_address(address: Optional[str]) -> str:
    """Shorten an address to its first and last characters."""
    if not address:
        return "<none>"
    if len(address) < 12:
        return address
    return f"{address[:6]}...{address[-4:]}"


def mask_signature(signature: Any) -> str:
    """Render a signature as a short fingerprint."""
    if isinstance(signature, (bytes, bytearray)):
        signature = signature.hex()
    if not signature:
        return MASK_PATTERN
    return f"{str(signature)[:10]}..."


def mask_sensitive_data(data: Any, _depth: int = 0, _max_depth: int = 10) -> Any:
    """Recursively mask sensitive values in a data structure.

    Args:
        data: The data structure to mask (dict, list, or scalar)
        _depth: Current recursion depth (internal)
        _max_depth: Maximum recursion depth

    Returns:
        Copy of data with sensitive values masked
    """
    if _depth > _max_depth:
        return data

    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            if key in SENSITIVE_FIELDS:
                result[key] = MASK_PATTERN
            else:
                result[key] = mask_sensitive_data(value, _depth + 1, _max_depth)
        return result

    if isinstance(data, (list, tuple)):
        return type(data)(
            mask_sensitive_data(item, _depth + 1, _max_depth) for item in data
        )

    if isinstance(data, (bytes, bytearray)):
        return mask_signature(data)

    return data


# =============================================================================
# Logging Decorator
# =============================================================================

def log_operation_sync(
    operation_name: Optional[str] = None,
    logger: Optional[logging.Logger] = None,
    log_exceptions: bool = True,
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator to log and time synchronous entry points.

    Keyword arguments are masked before being attached to the record.
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        nonlocal logger
        if logger is None:
            logger = logging.getLogger(func.__module__)

        op_name = operation_name or func.__name__

        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            start_time = time.time()
            logger.debug(
                f"Starting {op_name}",
                extra={"data": mask_sensitive_data(dict(kwargs))},
            )

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration_ms = (time.time() - start_time) * 1000
                if log_exceptions:
                    logger.warning(
                        f"Failed {op_name}: {type(e).__name__}: {e}",
                        extra={"data": {"duration_ms": duration_ms}},
                    )
                raise

            duration_ms = (time.time() - start_time) * 1000
            logger.debug(
                f"Completed {op_name}",
                extra={"data": {"duration_ms": duration_ms}},
            )
            return result

        return wrapper

    return decorator


# =============================================================================
# JSON Formatter for Production
# =============================================================================

class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON."""
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "data") and record.data:
            log_data["data"] = record.data

        return json.dumps(log_data, default=str)


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """Configure logging for the application.

    Args:
        level: Logging level (int or name)
        json_format: Whether to use JSON formatting
        log_file: Optional file path for logging
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    handlers: list[logging.Handler] = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    if json_format:
        console_handler.setFormatter(JsonFormatter())
    else:
        console_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            )
        )
    handlers.append(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(JsonFormatter())  # Always JSON for files
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        handlers=handlers,
        force=True,
    )


__all__ = [
    "MASK_PATTERN",
    "mask_address",
    "mask_signature",
    "mask_sensitive_data",
    "log_operation_sync",
    "JsonFormatter",
    "configure_logging",
]
