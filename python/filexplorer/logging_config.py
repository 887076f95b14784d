"""
Logging configuration for the filexplorer server.

CRITICAL: in stdio mode stdout carries MCP JSON-RPC messages. Never print;
never attach a handler to stdout.

HTTP mode may additionally log to stderr (console=True).

All logs go to file: .filexplorer/logs/filexplorer-YYYY-MM-DD.log (new file each day)
"""

import logging
import logging.handlers
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, Union


class FlushingHandler(logging.handlers.TimedRotatingFileHandler):
    """Handler that flushes after every emit for immediate visibility."""

    def emit(self, record):
        super().emit(record)
        self.flush()


def setup_logging(
    log_dir: Optional[Path] = None,
    level: Union[int, str] = logging.INFO,
    backup_count: int = 30,  # Keep 30 days of logs
    console: bool = False,  # Enable console logging (safe for HTTP mode)
) -> logging.Logger:
    """
    Set up file-based logging with daily rotation.

    Safe to call repeatedly: handlers are added once.

    Args:
        log_dir: Directory for log files (default: .filexplorer/logs)
        level: Logging level, as int or name (default: INFO)
        backup_count: Number of daily backup files to keep (default: 30 days)
        console: If True, also log to stderr (useful for HTTP mode)

    Returns:
        The "filexplorer" logger
    """
    if log_dir is None:
        log_dir = Path.cwd() / ".filexplorer" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger("filexplorer")
    logger.setLevel(level)

    has_file_handler = any(
        isinstance(h, logging.handlers.TimedRotatingFileHandler) for h in logger.handlers
    )
    has_console_handler = any(
        isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stderr
        for h in logger.handlers
    )

    if has_file_handler and (not console or has_console_handler):
        return logger

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if not has_file_handler:
        log_file = log_dir / f"filexplorer-{datetime.now().strftime('%Y-%m-%d')}.log"
        file_handler = FlushingHandler(
            log_file,
            when="midnight",
            interval=1,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

        logger.info("=" * 60)
        logger.info("filexplorer - Logging Initialized")
        logger.info(f"Log file: {log_file}")
        logger.info(f"Log level: {logging.getLevelName(level)}")
        logger.info("=" * 60)

    if console and not has_console_handler:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)
        logger.info("Console logging enabled (HTTP mode)")

    return logger


def get_logger(name: str = "filexplorer") -> logging.Logger:
    """Get a filexplorer logger instance."""
    return logging.getLogger(name)
