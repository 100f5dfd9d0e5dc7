"""
Logging utility for the S3 step definitions.

Loggers are configured from config/config.ini ([DEFAULT] log_level) and
environment variables:

    LOG_LEVEL=DEBUG
    LOG_FORMAT=colored      # standard, json, colored
    LOG_TO_FILE=false
    LOGS_BASE_DIR=logs
"""
import configparser
import json
import logging
import logging.handlers
import os
import sys
import threading
import time
import traceback
from datetime import datetime
from functools import wraps
from pathlib import Path
from typing import Optional, Dict, Any

CONSOLE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'

_RESERVED_RECORD_KEYS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename', 'module',
    'exc_info', 'exc_text', 'stack_info', 'lineno', 'funcName', 'created', 'msecs',
    'relativeCreated', 'thread', 'threadName', 'processName', 'process', 'message',
    'taskName',
}


class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
        'RESET': '\033[0m'
    }

    def format(self, record):
        color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        original = record.levelname
        record.levelname = f"{color}{original}{self.COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record):
        log_obj = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'function': record.funcName,
            'line': record.lineno,
            'message': record.getMessage(),
        }

        if record.exc_info:
            log_obj['exception'] = {
                'type': record.exc_info[0].__name__,  # type: ignore
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info)
            }

        # Extra fields passed via logger.info(..., extra={...})
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_obj[key] = value

        return json.dumps(log_obj, default=str, ensure_ascii=False)


class EnhancedLogger:
    """Creates and caches named loggers sharing one configuration."""

    def __init__(self, config_path: str = 'config/config.ini'):
        self._loggers: Dict[str, logging.Logger] = {}
        self._lock = threading.Lock()
        self._config_path = Path(config_path)
        self._config = self._load_default_config()

    def _load_default_config(self) -> Dict[str, Any]:
        """Load logging configuration from config.ini, overridden by environment variables."""
        log_level = 'INFO'
        if self._config_path.exists():
            parser = configparser.ConfigParser(interpolation=None)
            try:
                parser.read(self._config_path, encoding='utf-8')
                log_level = parser['DEFAULT'].get('log_level', log_level)
            except configparser.Error as e:
                print(f"Warning: Could not load log_level from {self._config_path}: {e}")

        return {
            'log_level': os.getenv('LOG_LEVEL', log_level),
            'log_format': os.getenv('LOG_FORMAT', 'standard'),
            'max_file_size': int(os.getenv('LOG_MAX_FILE_SIZE', '10485760')),  # 10MB
            'backup_count': int(os.getenv('LOG_BACKUP_COUNT', '5')),
            'log_to_console': os.getenv('LOG_TO_CONSOLE', 'true').lower() == 'true',
            'log_to_file': os.getenv('LOG_TO_FILE', 'true').lower() == 'true',
            'logs_base_dir': os.getenv('LOGS_BASE_DIR', 'logs'),
        }

    def _build_formatter(self) -> logging.Formatter:
        format_type = self._config['log_format']
        if format_type == 'json':
            return JSONFormatter()
        if format_type == 'colored' and sys.stdout.isatty():
            return ColoredFormatter(CONSOLE_FORMAT)
        return logging.Formatter(CONSOLE_FORMAT)

    def setup_logger(self, name: str, log_level: Optional[str] = None) -> logging.Logger:
        """
        Set up a logger with console and rotating file handlers.

        Args:
            name: Logger name
            log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

        Returns:
            Configured logger instance
        """
        with self._lock:
            if name in self._loggers:
                return self._loggers[name]

            logger = logging.getLogger(name)
            logger.handlers.clear()

            level = log_level or self._config['log_level']
            logger.setLevel(getattr(logging, level.upper()))

            formatter = self._build_formatter()

            if self._config['log_to_console']:
                console_handler = logging.StreamHandler(sys.stdout)
                console_handler.setFormatter(formatter)
                logger.addHandler(console_handler)

            if self._config['log_to_file']:
                logs_dir = Path(self._config['logs_base_dir'])
                logs_dir.mkdir(parents=True, exist_ok=True)
                # Single log file shared by all loggers
                file_handler = logging.handlers.RotatingFileHandler(
                    logs_dir / "test_automation.log",
                    maxBytes=self._config['max_file_size'],
                    backupCount=self._config['backup_count'],
                    encoding='utf-8'
                )
                file_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
                logger.addHandler(file_handler)

            logger.propagate = False

            self._loggers[name] = logger
            return logger

    def get_logger(self, name: str) -> logging.Logger:
        """Get existing logger or create new one with default settings."""
        if name in self._loggers:
            return self._loggers[name]
        return self.setup_logger(name)

    def set_level_for_all(self, level: str):
        log_level = getattr(logging, level.upper())
        self._config['log_level'] = level.upper()
        for logger in self._loggers.values():
            logger.setLevel(log_level)


_enhanced_logger = EnhancedLogger()


def setup_logger(name: str, log_level: Optional[str] = None) -> logging.Logger:
    return _enhanced_logger.setup_logger(name, log_level)


def get_logger(name: str) -> logging.Logger:
    """Get logger by name."""
    return _enhanced_logger.get_logger(name)


def set_log_level(level: str) -> str:
    """Set log level for all loggers."""
    level = level.upper()
    if level not in ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']:
        raise ValueError(f"Invalid log level: {level}")
    _enhanced_logger.set_level_for_all(level)
    return level


def log_execution_time(logger_name: str, operation_name: Optional[str] = None):
    """Decorator to log how long an operation took, or how long it ran before failing."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            op_name = operation_name or func.__name__
            log = get_logger(logger_name)
            start_time = time.time()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                log.error(f"Operation {op_name} failed after {time.time() - start_time:.3f}s: {e}")
                raise
            log.debug(f"Performance: {op_name} completed in {time.time() - start_time:.3f}s")
            return result
        return wrapper
    return decorator


logger = setup_logger("s3_steps")
test_logger = setup_logger("test_execution")
s3_logger = setup_logger("s3")


__all__ = [
    'setup_logger', 'get_logger', 'set_log_level', 'log_execution_time',
    'logger', 'test_logger', 's3_logger',
    'EnhancedLogger', 'ColoredFormatter', 'JSONFormatter'
]
