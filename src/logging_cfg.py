#!/usr/bin/env python3
"""
Logging configuration module for rig-bridge.
Provides centralized logging functionality with JSON formatting,
rotating files, optional syslog integration, and an in-memory
log stream that feeds the live log endpoint.
"""

import json
import logging
import logging.handlers
import sys
import threading
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

# Custom log level for RECONNECT events
RECONNECT_LEVEL = 25
logging.addLevelName(RECONNECT_LEVEL, 'RECONNECT')

# Number of entries replayed to a new log stream client
LOG_HISTORY_SIZE = 200

_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'exc_info', 'exc_text', 'stack_info',
    'taskName', 'message',
}


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record):
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
            'process': record.process,
            'thread': record.thread
        }

        # Add exception info if present
        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        # Add extra fields if present
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """Console formatter with color support."""

    COLORS = {
        'DEBUG': '\033[1;36m',      # Cyan
        'INFO': '\033[1;32m',       # Green
        'WARNING': '\033[1;33m',    # Yellow
        'RECONNECT': '\033[1;35m',  # Magenta
        'ERROR': '\033[1;31m',      # Red
        'CRITICAL': '\033[1;37;41m' # White on red
    }
    RESET = '\033[0m'

    def format(self, record):
        color = self.COLORS.get(record.levelname, '')
        reset = self.RESET if color else ''

        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S')
        formatted_msg = f"{color}[{timestamp}] {record.levelname}: {record.getMessage()}{reset}"

        if record.exc_info:
            formatted_msg += '\n' + self.formatException(record.exc_info)

        return formatted_msg


class LogStreamHandler(logging.Handler):
    """Ring buffer of recent log lines plus fan-out to live listeners.

    Each entry is a dict ``{'ts': epoch_ms, 'level': str, 'text': str}``.
    Listeners are plain callables; one that raises is dropped without
    affecting the others.
    """

    def __init__(self, capacity: int = LOG_HISTORY_SIZE):
        super().__init__(level=logging.INFO)
        self._buffer = deque(maxlen=capacity)
        self._listeners: List[Callable[[Dict], None]] = []
        self._listeners_lock = threading.Lock()

    def emit(self, record):
        try:
            entry = {
                'ts': int(record.created * 1000),
                'level': record.levelname.lower(),
                'text': record.getMessage(),
            }
        except Exception:
            self.handleError(record)
            return

        with self._listeners_lock:
            self._buffer.append(entry)
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(entry)
            except Exception:
                self.remove_listener(listener)

    def history(self) -> List[Dict]:
        """Return a copy of the buffered entries, oldest first."""
        with self._listeners_lock:
            return list(self._buffer)

    def add_listener(self, listener: Callable[[Dict], None]):
        with self._listeners_lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[Dict], None]):
        with self._listeners_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def listener_count(self) -> int:
        with self._listeners_lock:
            return len(self._listeners)


class RigBridgeLogger:
    """Enhanced logger for rig-bridge."""

    def __init__(self):
        self.logger = logging.getLogger('rig_bridge')
        self.logger.setLevel(logging.DEBUG)
        self.stream = LogStreamHandler()
        self.logger.addHandler(self.stream)
        self._configured = False
        self._syslog_handler = None

    def configure(self, verbose: bool = False, log_file: Optional[str] = None,
                  enable_syslog: bool = False):
        """Configure the logging system.

        Args:
            verbose: Enable verbose (DEBUG) logging to console
            log_file: Optional custom log file path
            enable_syslog: Enable syslog handler for systemd integration
        """
        if self._configured:
            return

        # Clear any existing handlers, the stream sink is re-attached below
        self.logger.handlers.clear()
        self.logger.addHandler(self.stream)

        # Console handler with color formatting
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(ColoredConsoleFormatter())
        console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        self.logger.addHandler(console_handler)

        # File handler with JSON formatting and rotation
        if log_file:
            file_path = Path(log_file)
            file_path.parent.mkdir(parents=True, exist_ok=True)
        else:
            log_dir = Path.home() / '.cache' / 'rig-bridge' / 'logs'
            log_dir.mkdir(parents=True, exist_ok=True)
            file_path = log_dir / 'rig-bridge.log'

        # Rotating file handler (10MB max, keep 5 backups)
        file_handler = logging.handlers.RotatingFileHandler(
            file_path, maxBytes=10*1024*1024, backupCount=5
        )
        file_handler.setFormatter(JSONFormatter())
        file_handler.setLevel(logging.DEBUG)
        self.logger.addHandler(file_handler)

        # Optional syslog handler for systemd integration
        if enable_syslog:
            try:
                syslog_handler = logging.handlers.SysLogHandler(address='/dev/log')
                syslog_formatter = logging.Formatter(
                    'rig-bridge[%(process)d]: %(levelname)s - %(message)s'
                )
                syslog_handler.setFormatter(syslog_formatter)
                syslog_handler.setLevel(logging.INFO)
                self.logger.addHandler(syslog_handler)
                self._syslog_handler = syslog_handler
            except OSError as e:
                self.logger.warning(f"Failed to initialize syslog handler: {e}")

        self._configured = True
        self.logger.info("Logging system initialized", extra={
            'verbose': verbose,
            'log_file': str(file_path),
            'syslog_enabled': enable_syslog
        })

    def debug(self, msg: str, **kwargs):
        """Log debug message."""
        self.logger.debug(msg, extra=kwargs)

    def info(self, msg: str, **kwargs):
        """Log info message."""
        self.logger.info(msg, extra=kwargs)

    def warning(self, msg: str, **kwargs):
        """Log warning message."""
        self.logger.warning(msg, extra=kwargs)

    def reconnect(self, msg: str, **kwargs):
        """Log reconnection event."""
        self.logger.log(RECONNECT_LEVEL, msg, extra=kwargs)

    def error(self, msg: str, **kwargs):
        """Log error message."""
        self.logger.error(msg, extra=kwargs)

    def critical(self, msg: str, **kwargs):
        """Log critical message."""
        self.logger.critical(msg, extra=kwargs)

    def exception(self, msg: str, **kwargs):
        """Log exception with traceback."""
        self.logger.exception(msg, extra=kwargs)


# Global logger instance
_rig_logger = RigBridgeLogger()

# Live log sink used by the /api/log/stream endpoint
log_stream = _rig_logger.stream


def configure_logging(verbose: bool = False, log_file: Optional[str] = None,
                      enable_syslog: bool = False):
    """Configure global logging settings.

    Args:
        verbose: Enable verbose (DEBUG) logging to console
        log_file: Optional custom log file path
        enable_syslog: Enable syslog handler for systemd integration
    """
    _rig_logger.configure(verbose, log_file, enable_syslog)


def log(msg: str, level: str = "INFO"):
    """Log a message by level name.

    Args:
        msg: Message to log
        level: Log level (DEBUG, INFO, WARNING, RECONNECT, ERROR, CRITICAL)
    """
    level = level.upper()

    if level == "DEBUG":
        _rig_logger.debug(msg)
    elif level == "WARNING":
        _rig_logger.warning(msg)
    elif level == "RECONNECT":
        _rig_logger.reconnect(msg)
    elif level == "ERROR":
        _rig_logger.error(msg)
    elif level == "CRITICAL":
        _rig_logger.critical(msg)
    else:
        _rig_logger.info(msg)


# Expose logger methods for direct use
debug = _rig_logger.debug
info = _rig_logger.info
warning = _rig_logger.warning
reconnect = _rig_logger.reconnect
error = _rig_logger.error
critical = _rig_logger.critical
exception = _rig_logger.exception


class LogLevel:
    """Log level names accepted by log()."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    RECONNECT = "RECONNECT"
    CRITICAL = "CRITICAL"

