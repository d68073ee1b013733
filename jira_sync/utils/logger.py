"""
Logging Configuration Module
Provides consistent logging across the application, optionally as JSON lines.
"""

import json
import logging
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional

import pytz

class StructuredFormatter(logging.Formatter):
    """
    Formats records as one JSON object per line.

    Structured fields are passed with ``extra={'fields': {...}}`` and merged
    into the top level of the emitted object.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            'severity': record.levelname,
            'message': getattr(record, 'event', None) or record.getMessage(),
            'timestamp': datetime.fromtimestamp(record.created, pytz.UTC).isoformat(),
            'logger': record.name,
        }
        fields = getattr(record, 'fields', None)
        if isinstance(fields, dict):
            payload.update(fields)
        if record.exc_info:
            payload['exception'] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(log_config: Optional[Dict] = None) -> None:
    """
    Setup application-wide logging configuration.
    Call this once at application startup.
    """
    log_config = log_config or {}

    log_level = getattr(logging, str(log_config.get('level', 'INFO')).upper())
    log_format = log_config.get('format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    log_file = log_config.get('file')
    max_bytes = log_config.get('max_bytes', 10485760)  # 10MB
    backup_count = log_config.get('backup_count', 5)

    if log_config.get('json', False):
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(log_format)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Reduce noise from third-party libraries
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('requests').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for the specified module.

    Args:
        name: Module name (usually __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def log_event(logger: logging.Logger, level: int, message: str, **fields) -> None:
    """Emit a log record carrying structured fields."""
    if fields:
        detail = ', '.join(f"{k}={v}" for k, v in fields.items())
        logger.log(level, f"{message} ({detail})", extra={'fields': fields, 'event': message})
    else:
        logger.log(level, message)
