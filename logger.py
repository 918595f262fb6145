"""
Logging configuration with rotation and bus address context
"""
import logging
import sys
from contextvars import ContextVar
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Optional
from config import settings

# Bus address of the message being handled in the current task
current_address: ContextVar[str] = ContextVar("current_address", default="-")


class BusContextFilter(logging.Filter):
    """Stamps each record with the bus address it was logged under"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.address = current_address.get()
        return True


def _rotating_handler(path: Path, level: int, formatter: logging.Formatter) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        path,
        maxBytes=settings.log_file_max_bytes,
        backupCount=settings.log_file_backup_count
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def get_logger(name: str, log_file: Optional[str] = None) -> logging.Logger:
    """Get configured logger instance with rotation"""
    log_dir = Path(settings.get('log_dir', 'logs'))
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)

    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logger.setLevel(log_level)

    # Prevent duplicate logs
    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(address)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))

    # Files also carry the executor thread name
    file_format = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(address)s [%(threadName)s] '
        '%(funcName)s:%(lineno)d - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    log_file = log_file or settings.get('log_file', 'nlp_bus.log')

    handlers = [
        console_handler,
        _rotating_handler(log_dir / log_file, logging.DEBUG, file_format),
        _rotating_handler(log_dir / "errors.log", logging.ERROR, file_format),
    ]
    context = BusContextFilter()
    for handler in handlers:
        handler.addFilter(context)
        logger.addHandler(handler)

    # Prevent propagation to root logger
    logger.propagate = False

    return logger


def configure_root_logger():
    """Configure the root logger for third-party libraries (spaCy, redis, uvicorn)"""
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.WARNING)

    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        root_logger.addHandler(handler)
