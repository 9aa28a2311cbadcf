"""
Logging Service for apidesk

Leveled application loggers with interchangeable sinks:

- ConsoleLoggingService writes to the stdlib ``logging`` channel matching
  the call's level
- StorageLoggingService keeps a bounded, newest-first list of LogEntry
  records in durable key-value storage
- CompositeLoggingService fans every call out to a list of loggers

All three share the same capability set (trace/debug/info/warn/error/fatal,
set_log_level/get_log_level, child) and can be swapped freely.
"""

import os
import json
import logging
import logging.handlers
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import IntEnum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from ..core.storage import KeyValueStorage

logger = logging.getLogger('apidesk.services.logging_service')

TRACE_LEVEL = 5
logging.addLevelName(TRACE_LEVEL, 'TRACE')

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

class LogLevel(IntEnum):
    """Log level thresholds, lowest first"""
    TRACE = 0
    DEBUG = 1
    INFO = 2
    WARN = 3
    ERROR = 4
    FATAL = 5
    OFF = 6

    @classmethod
    def parse(cls, value: Union['LogLevel', int, str]) -> 'LogLevel':
        """Accept a LogLevel, its integer value or a level name"""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            name = value.strip().upper()
            name = {'WARNING': 'WARN', 'CRITICAL': 'FATAL', 'NONE': 'OFF'}.get(name, name)
            try:
                return cls[name]
            except KeyError:
                raise ValueError(f"Unknown log level: {value}") from None
        return cls(value)

    def to_stdlib(self) -> int:
        return _STDLIB_LEVELS[self]

_STDLIB_LEVELS = {
    LogLevel.TRACE: TRACE_LEVEL,
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.FATAL: logging.CRITICAL,
    LogLevel.OFF: logging.CRITICAL + 10,
}

@dataclass
class LogEntry:
    """One persisted log record"""
    timestamp: str
    level: str
    context: str
    message: str
    details: Any = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.details is None:
            del data['details']
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LogEntry':
        return cls(
            timestamp=data['timestamp'],
            level=data['level'],
            context=data.get('context', ''),
            message=data['message'],
            details=data.get('details')
        )

def serialize_details(details: Any) -> Any:
    """Convert log details into a JSON-compatible value"""
    if details is None:
        return None
    if isinstance(details, BaseException):
        return {'name': type(details).__name__, 'message': str(details)}
    try:
        return json.loads(json.dumps(details, default=str))
    except (TypeError, ValueError):
        return str(details)

class LoggingService(ABC):
    """
    Base class for application loggers.

    Filtering happens here: a call is written only when its level is at or
    above the logger's threshold. Subclasses implement _write() and child().
    """

    def __init__(self, context: str = '', level: Union[LogLevel, int, str] = LogLevel.INFO):
        self._context = context
        self._level = LogLevel.parse(level)

    @property
    def context(self) -> str:
        return self._context

    def trace(self, message: str, details: Any = None) -> None:
        self.log(LogLevel.TRACE, message, details)

    def debug(self, message: str, details: Any = None) -> None:
        self.log(LogLevel.DEBUG, message, details)

    def info(self, message: str, details: Any = None) -> None:
        self.log(LogLevel.INFO, message, details)

    def warn(self, message: str, details: Any = None) -> None:
        self.log(LogLevel.WARN, message, details)

    def error(self, message: str, details: Any = None) -> None:
        self.log(LogLevel.ERROR, message, details)

    def fatal(self, message: str, details: Any = None) -> None:
        self.log(LogLevel.FATAL, message, details)

    def log(self, level: Union[LogLevel, int, str], message: str, details: Any = None) -> None:
        level = LogLevel.parse(level)
        if not self.is_enabled(level):
            return
        self._write(level, message, details)

    def is_enabled(self, level: LogLevel) -> bool:
        return level != LogLevel.OFF and level >= self._level

    def set_log_level(self, level: Union[LogLevel, int, str]) -> None:
        self._level = LogLevel.parse(level)

    def get_log_level(self) -> LogLevel:
        return self._level

    def _child_context(self, context: str) -> str:
        return f"{self._context}:{context}" if self._context else context

    @abstractmethod
    def _write(self, level: LogLevel, message: str, details: Any) -> None:
        pass

    @abstractmethod
    def child(self, context: str) -> 'LoggingService':
        """
        Create a logger scoped to a sub-context.

        The child's context is "{parent}:{context}" and its level is a copy
        of the parent's level at creation time; neither side affects the
        other afterwards.
        """

class ConsoleLoggingService(LoggingService):
    """Logger that writes through the stdlib logging module"""

    def __init__(
        self,
        context: str = '',
        level: Union[LogLevel, int, str] = LogLevel.INFO,
        channel_prefix: str = 'apidesk'
    ):
        super().__init__(context, level)
        self._channel_prefix = channel_prefix
        name = f"{channel_prefix}.{context}" if context else channel_prefix
        self._channel = logging.getLogger(name)

    def _write(self, level: LogLevel, message: str, details: Any) -> None:
        exc_info = None
        if isinstance(details, BaseException) and level >= LogLevel.ERROR:
            exc_info = (type(details), details, details.__traceback__)
        elif details is not None:
            message = f"{message} {serialize_details(details)}"

        self._channel.log(level.to_stdlib(), message, exc_info=exc_info)

    def child(self, context: str) -> 'ConsoleLoggingService':
        return ConsoleLoggingService(self._child_context(context), self._level, self._channel_prefix)

class StorageLoggingService(LoggingService):
    """
    Logger that persists structured entries into key-value storage.

    Entries are stored as a JSON array under storage_key, newest first,
    and never exceed max_log_size; the oldest entries are dropped. A
    storage failure is reported on the console channel and never raised.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        context: str = '',
        level: Union[LogLevel, int, str] = LogLevel.INFO,
        storage_key: str = 'app_logs',
        max_log_size: int = 100
    ):
        super().__init__(context, level)
        if max_log_size < 1:
            raise ValueError("max_log_size must be at least 1")
        self._storage = storage
        self._storage_key = storage_key
        self._max_log_size = max_log_size

    @property
    def storage_key(self) -> str:
        return self._storage_key

    @property
    def max_log_size(self) -> int:
        return self._max_log_size

    def _write(self, level: LogLevel, message: str, details: Any) -> None:
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=level.name,
            context=self._context,
            message=message,
            details=serialize_details(details)
        )

        try:
            entries = self._read_raw()
            entries.insert(0, entry.to_dict())
            del entries[self._max_log_size:]
            self._storage.set_item(self._storage_key, json.dumps(entries))
        except Exception as e:
            logger.error(f"Failed to persist log entry to '{self._storage_key}': {e}")

    def get_entries(self) -> List[LogEntry]:
        """Persisted entries, newest first; malformed records are skipped"""
        try:
            raw_entries = self._read_raw()
        except Exception as e:
            logger.error(f"Failed to read log entries from '{self._storage_key}': {e}")
            return []

        entries = []
        for raw in raw_entries:
            try:
                entries.append(LogEntry.from_dict(raw))
            except (KeyError, TypeError):
                logger.warning(f"Skipping malformed log entry in '{self._storage_key}'")
        return entries

    def clear_entries(self) -> None:
        try:
            self._storage.remove_item(self._storage_key)
        except Exception as e:
            logger.error(f"Failed to clear log entries from '{self._storage_key}': {e}")

    def _read_raw(self) -> List[Any]:
        stored = self._storage.get_item(self._storage_key)
        if not stored:
            return []

        try:
            entries = json.loads(stored)
        except json.JSONDecodeError:
            logger.warning(f"Discarding corrupt log data in '{self._storage_key}'")
            return []

        if not isinstance(entries, list):
            logger.warning(f"Discarding non-list log data in '{self._storage_key}'")
            return []
        return entries

    def child(self, context: str) -> 'StorageLoggingService':
        return StorageLoggingService(
            self._storage,
            context=self._child_context(context),
            level=self._level,
            storage_key=self._storage_key,
            max_log_size=self._max_log_size
        )

class CompositeLoggingService(LoggingService):
    """
    Logger that forwards every call to a list of member loggers.

    Each member applies its own level threshold. set_log_level() is
    propagated to every member, and child() builds a composite of each
    member's own child so the fan-out is preserved at every depth.
    """

    def __init__(self, loggers: Iterable[LoggingService], context: Optional[str] = None):
        self._loggers: List[LoggingService] = list(loggers)
        if context is None:
            context = self._loggers[0].context if self._loggers else ''
        level = min((member.get_log_level() for member in self._loggers), default=LogLevel.INFO)
        super().__init__(context, level)

    @property
    def loggers(self) -> List[LoggingService]:
        return list(self._loggers)

    def add_logger(self, member: LoggingService) -> None:
        self._loggers.append(member)

    def remove_logger(self, member: LoggingService) -> bool:
        if member in self._loggers:
            self._loggers.remove(member)
            return True
        return False

    def log(self, level: Union[LogLevel, int, str], message: str, details: Any = None) -> None:
        self._write(LogLevel.parse(level), message, details)

    def _write(self, level: LogLevel, message: str, details: Any) -> None:
        for member in self._loggers:
            member.log(level, message, details)

    def set_log_level(self, level: Union[LogLevel, int, str]) -> None:
        super().set_log_level(level)
        for member in self._loggers:
            member.set_log_level(self._level)

    def child(self, context: str) -> 'CompositeLoggingService':
        composite = CompositeLoggingService(
            [member.child(context) for member in self._loggers],
            context=self._child_context(context)
        )
        composite._level = self._level
        return composite

def create_logging_service(
    context: str = 'app',
    level: Union[LogLevel, int, str] = LogLevel.INFO,
    storage: Optional[KeyValueStorage] = None,
    storage_key: str = 'app_logs',
    max_log_size: int = 100
) -> LoggingService:
    """Console logger, plus a persisted sink when storage is given"""
    console = ConsoleLoggingService(context, level)
    if storage is None:
        return console

    persisted = StorageLoggingService(
        storage, context=context, level=level,
        storage_key=storage_key, max_log_size=max_log_size
    )
    return CompositeLoggingService([console, persisted], context=context)

def setup_logging(level: Union[LogLevel, int, str] = LogLevel.INFO, log_file_path: Optional[str] = None) -> None:
    """Set up stdlib logging handlers for the apidesk logger tree"""
    try:
        root_logger = logging.getLogger('apidesk')
        root_logger.setLevel(LogLevel.parse(level).to_stdlib())

        formatter = logging.Formatter(LOG_FORMAT)

        if not any(getattr(h, '_apidesk_handler', False) for h in root_logger.handlers):
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(formatter)
            console_handler._apidesk_handler = True
            root_logger.addHandler(console_handler)

        # File handler with rotation
        attached_files = {
            getattr(h, 'baseFilename', None) for h in root_logger.handlers
            if getattr(h, '_apidesk_handler', False)
        }
        if log_file_path and os.path.abspath(log_file_path) not in attached_files:
            Path(log_file_path).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                filename=log_file_path,
                encoding='utf-8',
                maxBytes=32 * 1024 * 1024,  # 32 MiB
                backupCount=5
            )
            file_handler.setFormatter(formatter)
            file_handler._apidesk_handler = True
            root_logger.addHandler(file_handler)

        logger.debug("Logging configured")

    except (OSError, ValueError) as e:
        logger.error(f"Failed to setup logging: {e}")
