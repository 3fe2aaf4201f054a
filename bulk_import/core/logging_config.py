import logging
import sys
import json
from datetime import datetime, timezone

from .config import get_settings

_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'taskName', 'getMessage',
    'exc_info', 'exc_text', 'stack_info', 'session_id', 'source_kind',
}


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured JSON logging with session context."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        # Session context when present
        if getattr(record, 'session_id', None):
            log_entry['session_id'] = record.session_id
        if getattr(record, 'source_kind', None):
            log_entry['source_kind'] = record.source_kind

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_entry[key] = value

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class CorrelationFilter(logging.Filter):
    """Filter to add session correlation fields to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, 'session_id'):
            record.session_id = None
        if not hasattr(record, 'source_kind'):
            record.source_kind = None
        return True


def setup_logging():
    """Setup structured logging on stdout."""
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(StructuredFormatter())
    console_handler.addFilter(CorrelationFilter())
    root_logger.addHandler(console_handler)

    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    logging.getLogger("fastapi").setLevel(logging.INFO)

    # Reduce noise from external libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)

    return root_logger


def log_with_context(logger: logging.Logger, level: int, message: str,
                     session_id: str = None, source_kind: str = None, **kwargs):
    """Log a message with session context."""
    extra = kwargs.copy()
    if session_id:
        extra['session_id'] = session_id
    if source_kind:
        extra['source_kind'] = source_kind

    logger.log(level, message, extra=extra)
