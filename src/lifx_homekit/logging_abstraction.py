"""Logging abstraction layer for the LIFX HomeKit bridge.

Provides dual-format logging (JSON + human-readable) with correlation tracking,
structured context, and configurable output destinations.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import cast, override

__all__ = [
    "BridgeLogger",
    "HumanReadableFormatter",
    "JSONFormatter",
    "configure_logging",
    "get_logger",
]

_LOG_FORMAT_ENV = "LIFX_HOMEKIT_LOG_FORMAT"
_LOG_JSON_FILE_ENV = "LIFX_HOMEKIT_LOG_JSON_FILE"
_LOG_HUMAN_OUTPUT_ENV = "LIFX_HOMEKIT_LOG_HUMAN_OUTPUT"
_DEBUG_ENV = "LIFX_HOMEKIT_DEBUG"

# loggers handed out by get_logger, so configure_logging can reach all of them
_LOGGERS: dict[str, BridgeLogger] = {}


class JSONFormatter(logging.Formatter):
    """Formatter that outputs structured JSON logs."""

    @override
    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        from lifx_homekit.correlation import get_correlation_id

        log_data: dict[str, object] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
            "correlation_id": get_correlation_id(),
        }

        extra_data = getattr(record, "extra_data", None)
        if isinstance(extra_data, Mapping) and extra_data:
            context_map = cast("Mapping[str, object]", extra_data)
            log_data["context"] = dict(context_map)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            log_data["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Formatter that outputs human-readable logs with correlation IDs."""

    def __init__(self) -> None:
        # Format: timestamp level [module:line] correlation_id > message
        super().__init__(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s [%(module)s:%(lineno)d] %(correlation_id)s > %(message)s",
            datefmt="%m/%d/%y %H:%M:%S",
        )

    @override
    def format(self, record: logging.LogRecord) -> str:
        """Format log record as human-readable text."""
        from lifx_homekit.correlation import get_correlation_id

        correlation_id = get_correlation_id()
        record.correlation_id = f"[{correlation_id[:8]}]" if correlation_id else "[--------]"

        formatted = super().format(record)

        extra_data = getattr(record, "extra_data", None)
        if isinstance(extra_data, Mapping) and extra_data:
            context_map = cast("Mapping[str, object]", extra_data)
            context_str = " | ".join(f"{k}={v}" for k, v in context_map.items())
            formatted = f"{formatted} | {context_str}"

        return formatted


class BridgeLogger:
    """Logger abstraction providing dual-format output (JSON + human-readable).

    Wraps a stdlib logger; structured context is passed as ``extra={...}`` and
    rendered by both formatters.
    """

    def __init__(
        self,
        name: str,
        log_format: str = "human",
        json_file: str | Path | None = None,
        human_output: str | None = "stdout",
        level: int = logging.INFO,
    ) -> None:
        """Initialize BridgeLogger.

        Args:
            name: Logger name (typically module name)
            log_format: Output format - "json", "human", or "both"
            json_file: Path for JSON output file (None to disable file output)
            human_output: "stdout", "stderr", or file path for human-readable output
            level: Initial log level

        """
        self.name: str = name
        self.logger: logging.Logger = logging.getLogger(name)
        self.log_format: str = log_format
        self.logger.setLevel(level)

        # Don't add handlers if already configured (avoid duplicates)
        if not self.logger.handlers:
            self._configure_handlers(json_file, human_output)

    def _configure_handlers(
        self,
        json_file: str | Path | None,
        human_output: str | None,
    ) -> None:
        """Configure log handlers based on format settings."""
        handler_level = self.logger.level

        if self.log_format in ("json", "both") and json_file:
            try:
                json_path = Path(json_file).expanduser()
                json_path.parent.mkdir(parents=True, exist_ok=True)
                json_handler = logging.FileHandler(json_path, mode="a")
                json_handler.setFormatter(JSONFormatter())
                json_handler.setLevel(handler_level)
                self.logger.addHandler(json_handler)
            except OSError as e:
                print(f"Warning: Failed to create JSON log file {json_file}: {e}", file=sys.stderr)

        if self.log_format in ("human", "both") or not self.logger.handlers:
            normalized_output = human_output or "stdout"
            if normalized_output == "stdout":
                human_handler = logging.StreamHandler(sys.stdout)
            elif normalized_output == "stderr":
                human_handler = logging.StreamHandler(sys.stderr)
            else:
                try:
                    human_path = Path(normalized_output).expanduser()
                    human_path.parent.mkdir(parents=True, exist_ok=True)
                    human_handler = logging.FileHandler(human_path, mode="a")
                except OSError as e:
                    print(f"Warning: Failed to create human log file {human_output}: {e}", file=sys.stderr)
                    human_handler = logging.StreamHandler(sys.stdout)

            human_handler.setFormatter(HumanReadableFormatter())
            human_handler.setLevel(handler_level)
            self.logger.addHandler(human_handler)

    def reconfigure(self, log_format: str, json_file: str | Path | None, human_output: str | None) -> None:
        """Drop existing handlers and build new ones for the given destinations."""
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()
        self.log_format = log_format
        self._configure_handlers(json_file, human_output)

    def _log(self, level: int, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        extra_payload: Mapping[str, object] | None = None
        if extra:
            extra_payload = {"extra_data": dict(extra)}

        self.logger.log(level, msg, *args, extra=extra_payload, stacklevel=3)

    def debug(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log debug message with optional structured context."""
        self._log(logging.DEBUG, msg, *args, extra=extra)

    def info(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log info message with optional structured context."""
        self._log(logging.INFO, msg, *args, extra=extra)

    def warning(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log warning message with optional structured context."""
        self._log(logging.WARNING, msg, *args, extra=extra)

    def error(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log error message with optional structured context."""
        self._log(logging.ERROR, msg, *args, extra=extra)

    def critical(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log critical message with optional structured context."""
        self._log(logging.CRITICAL, msg, *args, extra=extra)

    def exception(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        """Log exception with traceback and optional structured context."""
        log_extra = {"extra_data": dict(extra)} if extra else None
        self.logger.exception(msg, *args, extra=log_extra, stacklevel=2)

    def set_level(self, level: int) -> None:
        """Set logging level on the logger and its handlers."""
        self.logger.setLevel(level)
        for handler in self.logger.handlers:
            handler.setLevel(level)


def get_logger(
    name: str,
    log_format: str | None = None,
    json_file: str | Path | None = None,
    human_output: str | None = None,
) -> BridgeLogger:
    """Get or create a BridgeLogger instance.

    Defaults come from the LIFX_HOMEKIT_LOG_* environment variables so that
    module-level loggers are usable before configuration has been loaded.
    """
    if name in _LOGGERS:
        return _LOGGERS[name]

    log_format = log_format or os.environ.get(_LOG_FORMAT_ENV, "human")
    json_file = json_file or os.environ.get(_LOG_JSON_FILE_ENV) or None
    human_output = human_output or os.environ.get(_LOG_HUMAN_OUTPUT_ENV, "stdout")
    debug = os.environ.get(_DEBUG_ENV, "0").casefold() in ("true", "1", "yes", "y", "t", "on")

    bridge_logger = BridgeLogger(
        name=name,
        log_format=log_format,
        json_file=json_file,
        human_output=human_output,
        level=logging.DEBUG if debug else logging.INFO,
    )
    _LOGGERS[name] = bridge_logger
    return bridge_logger


def configure_logging(
    *,
    debug: bool,
    log_format: str | None = None,
    json_file: str | Path | None = None,
    human_output: str | None = None,
    library_loggers: tuple[str, ...] = ("lifx", "pyhap"),
) -> None:
    """Apply loaded configuration to every bridge logger and the transport libraries.

    In debug mode the transport libraries log at DEBUG through the bridge's
    human-readable handler; otherwise they are limited to warnings.
    """
    level = logging.DEBUG if debug else logging.INFO
    for bridge_logger in _LOGGERS.values():
        if log_format is not None:
            bridge_logger.reconfigure(log_format, json_file, human_output)
        bridge_logger.set_level(level)

    for name in library_loggers:
        lib_logger = logging.getLogger(name)
        lib_logger.setLevel(logging.DEBUG if debug else logging.WARNING)
        if not lib_logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(HumanReadableFormatter())
            lib_logger.addHandler(handler)
        lib_logger.propagate = False
