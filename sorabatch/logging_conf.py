"""Logging configuration with Betterstack support.

Both run modes share one root logger. Each mode writes its own rotating file
(sorabatch-headless.log, sorabatch-console.log) so an unattended run and an
interactive session never interleave. Records carry the thread name, which
tells the scheduler loop apart from individual fetch workers.
"""
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from logtail import LogtailHandler

from sorabatch import settings

LOG_FORMAT = "%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_MODE = "headless"


def log_file_path(mode: str) -> Path:
    return settings.LOGS_DIR / f"sorabatch-{mode}.log"


def _file_handler(mode: str, formatter: logging.Formatter) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        log_file_path(mode), maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8"
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(formatter)
    return handler


def _betterstack_handler(root_logger: logging.Logger, formatter: logging.Formatter):
    if not settings.BETTERSTACK_SOURCE_TOKEN:
        return None
    try:
        handler_kwargs = {"source_token": settings.BETTERSTACK_SOURCE_TOKEN}
        if settings.BETTERSTACK_INGEST_HOST:
            handler_kwargs["host"] = settings.BETTERSTACK_INGEST_HOST
        handler = LogtailHandler(**handler_kwargs)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(formatter)
        return handler
    except Exception as e:
        root_logger.warning(f"Failed to initialize BetterStack logging: {e}")
        return None


def setup_logging(mode: str = DEFAULT_MODE) -> logging.Logger:
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = []
    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    root_logger.addHandler(_file_handler(mode, formatter))

    betterstack_handler = _betterstack_handler(root_logger, formatter)
    if betterstack_handler is not None:
        root_logger.addHandler(betterstack_handler)
        host_info = settings.BETTERSTACK_INGEST_HOST or "default (in.logs.betterstack.com)"
        root_logger.info(f"BetterStack logging enabled (host: {host_info})")

    logging.getLogger("urllib3").setLevel(logging.WARNING)
    return root_logger


def use_log_file(mode: str) -> Path:
    """Point the rotating file handler at the log file for `mode`."""
    root_logger = logging.getLogger()
    path = log_file_path(mode)
    formatter = logging.Formatter(LOG_FORMAT)
    for handler in list(root_logger.handlers):
        if isinstance(handler, RotatingFileHandler):
            if handler.baseFilename == os.path.abspath(path):
                return path
            formatter = handler.formatter or formatter
            root_logger.removeHandler(handler)
            handler.close()
    root_logger.addHandler(_file_handler(mode, formatter))
    return path


def set_console_level(level: int) -> None:
    """Change the stdout handler level (the interactive console keeps it quiet)."""
    for handler in logging.getLogger().handlers:
        if isinstance(handler, logging.StreamHandler) and getattr(handler, "stream", None) is sys.stdout:
            handler.setLevel(level)


logger = setup_logging()
