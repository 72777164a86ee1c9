"""Centralized logging configuration for Prunarr"""

import os
import logging
import logging.handlers
from pathlib import Path

# Loggers whose records also go to the deletion audit log
AUDIT_LOGGERS = (
    'prunarr.api.services.lifecycle',
    'prunarr.api.services.history',
    'prunarr.worker.deletion_executor',
    'prunarr.api.integrations',
)

DETAILED_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
SIMPLE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class AuditFilter(logging.Filter):
    """Passes records from the deletion workflow loggers"""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.name.startswith(AUDIT_LOGGERS)


def _rotating_handler(path: Path, level: int, backups: int) -> logging.Handler:
    max_bytes = int(os.getenv("LOG_MAX_BYTES", str(10 * 1024 * 1024)))
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=max_bytes,
        backupCount=backups,
        encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(DETAILED_FORMAT))
    return handler


def setup_logging(service_name: str = "prunarr") -> None:
    """
    Configure logging for Prunarr services

    Writes to the console, a main log, an errors-only log and an audit log
    holding every approval, cancellation and deletion attempt.

    Args:
        service_name: Prefix of the log file names
    """
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_dir = Path(os.getenv("LOG_DIR", "/data/logs"))
    log_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all, filter at handler level
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, log_level, logging.INFO))
    console_handler.setFormatter(logging.Formatter(SIMPLE_FORMAT))
    root_logger.addHandler(console_handler)

    main_log = log_dir / f"{service_name}.log"
    root_logger.addHandler(_rotating_handler(main_log, logging.DEBUG, backups=5))

    error_log = log_dir / f"{service_name}_errors.log"
    root_logger.addHandler(_rotating_handler(error_log, logging.ERROR, backups=3))

    # Audit records are kept longer than the main log
    audit_log = log_dir / f"{service_name}_deletions.log"
    audit_handler = _rotating_handler(audit_log, logging.INFO, backups=10)
    audit_handler.addFilter(AuditFilter())
    root_logger.addHandler(audit_handler)

    noisy_loggers = {
        'prunarr.worker.rules.conditions': logging.INFO,
        'aiohttp.access': logging.WARNING,
        'aiosqlite': logging.WARNING,
        'nats': logging.WARNING,
        'uvicorn.access': logging.WARNING,
    }
    for logger_name, level in noisy_loggers.items():
        logging.getLogger(logger_name).setLevel(level)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured for {service_name} (level {log_level})")
    logger.info(f"Logs: {main_log}, {error_log}, {audit_log}")
