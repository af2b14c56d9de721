from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import structlog

from shellmux.settings import LoggingSettings, LogLevel


LEVEL_MAP: dict[LogLevel, int] = {
    LogLevel.debug: logging.DEBUG,
    LogLevel.info: logging.INFO,
    LogLevel.warning: logging.WARNING,
    LogLevel.error: logging.ERROR,
    LogLevel.critical: logging.CRITICAL,
}


@dataclass
class LogRecordEntry:
    logger_name: str
    level: int
    level_name: str
    message: str
    created: float


class LogManager:
    def __init__(self, max_entries: Optional[int] = None) -> None:
        self._max_entries = max_entries
        self._records: list[LogRecordEntry] = []

    def add_record(self, record: logging.LogRecord) -> None:
        entry = LogRecordEntry(
            logger_name=record.name,
            level=record.levelno,
            level_name=record.levelname,
            message=record.getMessage(),
            created=record.created,
        )
        self._records.append(entry)
        if self._max_entries is not None and len(self._records) > self._max_entries:
            del self._records[0 : len(self._records) - self._max_entries]

    def get_records(self) -> list[LogRecordEntry]:
        return list(self._records)

    def clear(self) -> None:
        self._records.clear()


class _InMemoryLogHandler(logging.Handler):
    def __init__(self, manager: LogManager) -> None:
        super().__init__()
        self._manager = manager

    def emit(self, record: logging.LogRecord) -> None:
        self._manager.add_record(record)


_log_manager: Optional[LogManager] = None
_log_handler: Optional[_InMemoryLogHandler] = None


def init_log_manager(max_entries: Optional[int] = None) -> LogManager:
    """Attach an in-memory handler to the shellmux logger and return its buffer."""
    global _log_manager, _log_handler
    if _log_manager is None:
        _log_manager = LogManager(max_entries=max_entries)
        _log_handler = _InMemoryLogHandler(_log_manager)

    pkg_logger = logging.getLogger("shellmux")
    if _log_handler is not None and _log_handler not in pkg_logger.handlers:
        pkg_logger.addHandler(_log_handler)
    return _log_manager


def get_log_manager() -> Optional[LogManager]:
    return _log_manager


def configure_logging(settings: Optional[LoggingSettings] = None) -> None:
    settings = settings or LoggingSettings()
    default_level = LEVEL_MAP.get(settings.default_level, logging.INFO)

    pkg_logger = logging.getLogger("shellmux")
    pkg_logger.setLevel(default_level)

    for logger_name, level in settings.enabled_loggers.items():
        logging.getLogger(logger_name).setLevel(LEVEL_MAP.get(level, default_level))

    if settings.file:
        handler = logging.FileHandler(settings.file, mode="a", encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(message)s"))
        pkg_logger.addHandler(handler)


structlog.configure(
    wrapper_class=structlog.make_filtering_bound_logger(logging.NOTSET),
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", utc=False),
        structlog.dev.ConsoleRenderer(colors=False),
    ],
)

logger: structlog.BoundLogger = structlog.get_logger("shellmux")
