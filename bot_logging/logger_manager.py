"""
Centralized logging for BSC Token Monitor.

Every component gets its own logger writing to logs/<Module_Folder>/<file>,
optionally mirrored to stderr. A separate deep-dive trace log records one JSON
line per pipeline stage (DATA_ENTRY when the router accepts a log,
DATA_OUTPUT when the dispatcher publishes a record), so a single chain log
can be followed from the node to the bus by its trace id.

Settings come from config/app.json ("logging": log_dir, level, console,
module_folders).

Usage:
    from bot_logging.logger_manager import setup_module_logger, create_module_log_directories

    create_module_log_directories()
    logger = setup_module_logger('router', 'router.log', module_folder='Router_Logs')
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

_PROJECT_ROOT = Path(__file__).parent.parent

try:
    from config.loader import get_config

    _LOGGING_CONFIG: dict[str, Any] = get_config().get_app_config().get("logging", {})
except ImportError:
    _LOGGING_CONFIG = {}

_LOG_DIR = str(_PROJECT_ROOT / _LOGGING_CONFIG.get("log_dir", "logs"))
_CONSOLE_ENABLED: bool = bool(_LOGGING_CONFIG.get("console", True))
_DEFAULT_LEVEL: int = logging.getLevelName(str(_LOGGING_CONFIG.get("level", "INFO")).upper())
if not isinstance(_DEFAULT_LEVEL, int):
    _DEFAULT_LEVEL = logging.INFO

_MODULE_FOLDERS: dict[str, str] = _LOGGING_CONFIG.get(
    "module_folders",
    {
        "main": "Main_Logs",
        "connection": "Connection_Logs",
        "block_cache": "Block_Cache_Logs",
        "router": "Router_Logs",
        "dispatcher": "Dispatcher_Logs",
        "chain_reader": "Chain_Reader_Logs",
        "kafka_bus": "Kafka_Logs",
        "deep_dive": "Deep_Dive_Logs",
    },
)

# Record attributes copied into JSON output when a caller passes them via extra=
_CONTEXT_FIELDS = ("trace_id", "block_number", "tx_hash", "topic")


# ============================================================================
# FORMATTERS
# ============================================================================


class HumanReadableFormatter(logging.Formatter):
    """Pretty-printed log formatter for console and module log files."""

    FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-14s | %(message)s"
    DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

    def __init__(self) -> None:
        super().__init__(fmt=self.FORMAT, datefmt=self.DATE_FORMAT)


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with pipeline context fields when present."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _CONTEXT_FIELDS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TraceFormatter(logging.Formatter):
    """Deep-dive trace lines: the structured payload attached as record.trace."""

    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(getattr(record, "trace", {"message": record.getMessage()}), default=str)


# ============================================================================
# LOGGER FACTORY
# ============================================================================


def create_module_log_directories() -> dict[str, str]:
    """
    Create the per-module log folders under the log directory.

    Returns dict mapping folder key to absolute path.
    """
    created = {}
    os.makedirs(_LOG_DIR, exist_ok=True)
    for key, folder_name in _MODULE_FOLDERS.items():
        folder_path = os.path.join(_LOG_DIR, folder_name)
        os.makedirs(folder_path, exist_ok=True)
        created[key] = folder_path
    return created


def setup_module_logger(
    name: str,
    log_file: str,
    level: int | None = None,
    module_folder: str | None = None,
    use_json_formatter: bool = False,
    console: bool | None = None,
    formatter: logging.Formatter | None = None,
) -> logging.Logger:
    """
    Create (or return the existing) module logger.

    Args:
        name: Logger name, unique per component.
        log_file: Log filename, placed inside module_folder if given.
        level: Logging level; defaults to app.json logging.level.
        module_folder: Subfolder of the log directory (e.g., 'Router_Logs').
        use_json_formatter: Write JSON lines instead of the human-readable format.
        console: Mirror to stderr; defaults to app.json logging.console.
        formatter: Explicit file formatter, overriding use_json_formatter.

    Returns:
        Configured logging.Logger instance.
    """
    logger = logging.getLogger(name)
    # Components built more than once (sessions, tests) share one set of handlers
    if logger.handlers:
        return logger

    level = _DEFAULT_LEVEL if level is None else level
    logger.setLevel(level)

    folder = os.path.join(_LOG_DIR, module_folder) if module_folder else _LOG_DIR
    os.makedirs(folder, exist_ok=True)

    file_handler = logging.FileHandler(os.path.join(folder, log_file), mode="a", encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(
        formatter or (JSONFormatter() if use_json_formatter else HumanReadableFormatter())
    )
    logger.addHandler(file_handler)

    if _CONSOLE_ENABLED if console is None else console:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setLevel(level)
        stream_handler.setFormatter(HumanReadableFormatter())
        logger.addHandler(stream_handler)

    logger.propagate = False
    return logger


_deep_dive_logger: logging.Logger | None = None


def get_deep_dive_logger() -> logging.Logger:
    """The deep-dive trace logger (created on first use, file only)."""
    global _deep_dive_logger
    if _deep_dive_logger is None:
        _deep_dive_logger = setup_module_logger(
            "deep_dive",
            "deep_dive_trace.log",
            level=logging.INFO,
            module_folder=_MODULE_FOLDERS.get("deep_dive", "Deep_Dive_Logs"),
            console=False,
            formatter=TraceFormatter(),
        )
    return _deep_dive_logger


# ============================================================================
# STRUCTURED LOGGING HELPERS (Deep-dive tracing)
# ============================================================================


def _trace(event: str, trace_id: str, source_module: str, what: str, why: str,
           data_type: str, data: Any, **links: Any) -> None:
    get_deep_dive_logger().info(
        "%s %s",
        event,
        trace_id,
        extra={
            "trace": {
                "event": event,
                "trace_id": trace_id,
                "source_module": source_module,
                "what": what,
                "why": why,
                "data_type": data_type,
                "data": data,
                **links,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        },
    )


def log_data_entry(
    trace_id: str,
    source_module: str,
    what: str,
    why: str,
    data_type: str,
    data: Any,
    previous_stage: str | None = None,
) -> None:
    """Trace data entering the pipeline (a log matched by a subscription)."""
    _trace("DATA_ENTRY", trace_id, source_module, what, why, data_type, data, previous_stage=previous_stage)


def log_data_output(
    trace_id: str,
    source_module: str,
    what: str,
    why: str,
    data_type: str,
    data: Any,
    next_stage: str,
) -> None:
    """Trace data leaving the pipeline (a canonical record handed to the bus topic)."""
    _trace("DATA_OUTPUT", trace_id, source_module, what, why, data_type, data, next_stage=next_stage)
