"""Structured logging: JSON to a per-run file, colored lines to stderr."""

import logging
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

# Extra record attributes set through LogContext
STRUCTURED_FIELDS = ('phase', 'resource_id', 'resource_type', 'operation')

LOG_FILE_PATTERN = 'deployment-{stamp}.log'


def structured_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Return the structured fields present on a record."""
    return {
        key: getattr(record, key)
        for key in STRUCTURED_FIELDS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for the log file."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            **structured_fields(record),
        }
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Short colored lines prefixed with the phase and resource."""

    COLORS = {
        'DEBUG': '\033[2m',
        'INFO': '\033[36m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[1;31m',
    }
    RESET = '\033[0m'

    def __init__(self, use_color: Optional[bool] = None):
        super().__init__()
        self.use_color = sys.stderr.isatty() if use_color is None else use_color

    def format(self, record: logging.LogRecord) -> str:
        fields = structured_fields(record)
        prefix = ''
        if 'phase' in fields:
            prefix += f"({fields['phase']}) "
        if 'resource_id' in fields:
            prefix += f"[{fields['resource_id']}] "

        level = f"{record.levelname:<8}"
        if self.use_color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"

        stamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S')
        line = f"{stamp} {level} {prefix}{record.getMessage()}"
        if record.exc_info and record.levelno >= logging.ERROR:
            line += '\n' + self.formatException(record.exc_info)
        return line


def setup_logging(log_level: str = 'info', log_dir: str = 'logs') -> Path:
    """Configure the root logger for one CLI invocation.

    The console shows ``log_level`` and above on stderr, so rich tables on
    stdout stay clean. The log file always records DEBUG.

    Args:
        log_level: Console level name (debug, info, warning, error)
        log_dir: Directory that receives ``deployment-<timestamp>.log``

    Returns:
        Path of this invocation's log file
    """
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    log_file = directory / LOG_FILE_PATTERN.format(
        stamp=datetime.now().strftime('%Y%m%d_%H%M%S_%f')
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(getattr(logging, log_level.upper()))
    console_handler.setFormatter(ConsoleFormatter())

    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(JSONFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    # Request lines from the health checks are noise at INFO
    for noisy in ('httpx', 'httpcore'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return log_file


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LogContext:
    """Attach structured fields to every record created inside the block.

    Contexts nest: an inner context adds to (and may shadow) the fields of
    the outer one, and the outer fields come back on exit.

    Example:
        with LogContext(logger, phase='infrastructure'):
            with LogContext(logger, resource_id='my-vm'):
                logger.info('Creating instance')
    """

    def __init__(self, logger: logging.Logger, **fields: Any):
        self.logger = logger
        self.fields = {k: v for k, v in fields.items() if v is not None}
        self._previous_factory = None

    def __enter__(self) -> 'LogContext':
        previous = logging.getLogRecordFactory()
        fields = self.fields

        def factory(*args, **kwargs):
            record = previous(*args, **kwargs)
            for key, value in fields.items():
                setattr(record, key, value)
            return record

        self._previous_factory = previous
        logging.setLogRecordFactory(factory)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._previous_factory is not None:
            logging.setLogRecordFactory(self._previous_factory)
            self._previous_factory = None
