from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from pathlib import Path

import structlog
from structlog.typing import EventDict, Processor

from viewsync.config import AppSettings

LOG_FILE_NAME = "viewsync.log"
TELEMETRY_LOG_FILE_NAME = "viewsync-telemetry.log"
ROOT_LOGGER_NAME = "viewsync"
TELEMETRY_LOGGER_NAME = "viewsync.telemetry"
# Client libraries log every request at INFO/DEBUG; keep them at WARNING.
_QUIET_THIRD_PARTY_LOGGERS: tuple[str, ...] = (
    "googleapiclient",
    "googleapiclient.discovery_cache",
    "httpx",
    "httpcore",
)


@dataclass(frozen=True)
class LogTargets:
    log_file: Path
    telemetry_log_file: Path


def configure_application_logging(settings: AppSettings) -> LogTargets:
    log_dir = settings.log_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    targets = LogTargets(
        log_file=log_dir / LOG_FILE_NAME,
        telemetry_log_file=log_dir / TELEMETRY_LOG_FILE_NAME,
    )

    _configure_structlog()

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    _reset_handlers(logger)

    console_stream = sys.stdout
    console_handler = logging.StreamHandler(stream=console_stream)
    console_handler.setLevel(_resolve_log_level(settings.log_level))
    console_handler.setFormatter(
        _build_console_formatter(enable_colors=_stream_supports_color(console_stream))
    )
    logger.addHandler(console_handler)
    logger.addHandler(_build_file_handler(targets.log_file, level=logging.DEBUG))

    telemetry_logger = logging.getLogger(TELEMETRY_LOGGER_NAME)
    telemetry_logger.setLevel(logging.INFO)
    telemetry_logger.propagate = False
    _reset_handlers(telemetry_logger)
    telemetry_logger.addHandler(_build_file_handler(targets.telemetry_log_file, level=logging.INFO))

    for name in _QUIET_THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info(
        "logging configured console_level=%s path=%s telemetry_path=%s",
        settings.log_level.upper(),
        targets.log_file,
        targets.telemetry_log_file,
    )
    return targets


def _resolve_log_level(raw_level: str) -> int:
    resolved = logging.getLevelName(raw_level.strip().upper())
    if isinstance(resolved, int):
        return resolved
    return logging.INFO


def _configure_structlog() -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _reset_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def _build_file_handler(path: Path, *, level: int) -> logging.FileHandler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_shared_pre_chain(),
            processors=[
                _add_thread_metadata,
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(sort_keys=True),
            ],
        )
    )
    return handler


def _build_console_formatter(*, enable_colors: bool) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_pre_chain(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=enable_colors),
        ],
    )


def _shared_pre_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
    ]


def _add_thread_metadata(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    # Batch lookups and page writes run on worker threads.
    record = event_dict.get("_record")
    if isinstance(record, logging.LogRecord):
        event_dict["module"] = record.module
        event_dict["lineno"] = record.lineno
        event_dict["thread_name"] = record.threadName
    return event_dict


def _stream_supports_color(stream: object) -> bool:
    isatty = getattr(stream, "isatty", None)
    if not callable(isatty):
        return False
    try:
        return bool(isatty())
    except ValueError:
        return False
