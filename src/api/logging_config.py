"""Centralized logging configuration module"""

import logging
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

# Whether already initialized
_initialized = False

LOG_FORMAT = '[%(asctime)s] [%(levelname)s] %(name)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logging(
    level: Union[str, int] = "INFO",
    logs_dir: Optional[Path] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 3,
):
    """Configure console and rotating file logging for the service"""
    global _initialized

    if _initialized:
        return

    logs_dir = Path(logs_dir or "logs")
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_file = logs_dir / "server.log"

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8',
    )
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)

    # Configure root logger
    logging.basicConfig(
        level=level,
        handlers=[console_handler, file_handler],
        force=True
    )

    # Set log levels for specific modules
    logging.getLogger('src').setLevel(level)
    logging.getLogger('llm_interactions').setLevel(logging.INFO)

    # Reduce log level for third-party libraries
    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)
    logging.getLogger('openai').setLevel(logging.WARNING)

    _initialized = True

    logger = logging.getLogger(__name__)
    logger.info("=" * 80)
    logger.info("Server started at: %s", datetime.now().strftime(DATE_FORMAT))
    logger.info("Logs are written to: %s", log_file.absolute())
    logger.info("Log rotation: max %sMB per file, keep %s backups", max_bytes // (1024 * 1024), backup_count)
    logger.info("=" * 80)
