"""
Logging utilities for the clinic data layer.
"""

import logging
import logging.handlers
import json
import sys
from pathlib import Path
from typing import Dict, Any, Optional
from datetime import datetime, timezone


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        # Fields attached by ClinicLogAdapter
        for key in ('source', 'event_type', 'endpoint'):
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)

        return json.dumps(log_entry, ensure_ascii=False)


class ClinicLogAdapter(logging.LoggerAdapter):
    """Logger adapter that tags records with the data source they concern."""

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        """Merge adapter context into the record's extra fields."""
        extra = dict(self.extra)
        extra.update(kwargs.get('extra', {}))
        kwargs['extra'] = extra
        return msg, kwargs

    def log_source_event(self, level: int, source: str, message: str, **kwargs):
        """Log an event of the fallback chain (api, cache, snapshot, mock...)."""
        extra = kwargs.get('extra', {})
        extra['source'] = source
        extra['event_type'] = 'source_event'
        kwargs['extra'] = extra
        self.log(level, f"[{source}] {message}", **kwargs)


class NoiseFilter(logging.Filter):
    """Filter to suppress noisy third-party logs."""

    def __init__(self, suppress_modules: Optional[list] = None):
        super().__init__()
        self.suppress_modules = suppress_modules or [
            'aiohttp.access',
            'aiohttp.client',
            'urllib3.connectionpool',
        ]

    def filter(self, record: logging.LogRecord) -> bool:
        if any(record.name.startswith(module) for module in self.suppress_modules):
            return False
        return True


def setup_logging(config: Dict[str, Any],
                  enable_json: bool = False,
                  enable_noise_filtering: bool = True) -> logging.Logger:
    """
    Setup logging for the data layer and its command line tools.

    Args:
        config: Logging configuration dictionary (level, file, format)
        enable_json: Enable JSON formatted logging
        enable_noise_filtering: Drop records from chatty third-party loggers

    Returns:
        Configured root logger
    """
    log_file = Path(config.get('file', 'logs/clinic_data.log'))
    log_file.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.get('level', 'INFO').upper()))
    root_logger.handlers.clear()

    if enable_json:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            config.get('format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)
    if enable_noise_filtering:
        console_handler.addFilter(NoiseFilter())
    root_logger.addHandler(console_handler)

    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5,
        encoding='utf-8'
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    if enable_noise_filtering:
        file_handler.addFilter(NoiseFilter())
    root_logger.addHandler(file_handler)

    error_log_file = log_file.parent / 'errors.log'
    error_handler = logging.handlers.RotatingFileHandler(
        error_log_file,
        maxBytes=5 * 1024 * 1024,  # 5MB
        backupCount=3,
        encoding='utf-8'
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)
    root_logger.addHandler(error_handler)

    third_party_loggers = {
        'aiohttp': logging.WARNING,
        'redis': logging.WARNING,
        'asyncio': logging.WARNING,
    }
    for logger_name, level in third_party_loggers.items():
        logging.getLogger(logger_name).setLevel(level)

    root_logger.info("Logging system initialized")
    root_logger.info(f"Log file: {log_file}")
    root_logger.info(f"Log level: {config.get('level', 'INFO')}")

    return root_logger


def get_clinic_logger(name: str, **extra_context) -> ClinicLogAdapter:
    """
    Get a logger adapter carrying extra context on every record.

    Args:
        name: Logger name
        **extra_context: Additional context fields to include in all log messages
    """
    return ClinicLogAdapter(logging.getLogger(name), extra_context)


def log_system_info():
    """Log interpreter and host information at startup."""
    import platform
    import psutil

    logger = logging.getLogger(__name__)
    logger.debug(f"Platform: {platform.platform()}")
    logger.debug(f"Python version: {sys.version}")
    logger.debug(f"CPU cores: {psutil.cpu_count()}")
    logger.debug(f"Memory: {psutil.virtual_memory().total / 1024**3:.1f} GB")
