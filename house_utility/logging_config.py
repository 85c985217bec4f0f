"""Root logger setup for the API server and cron scripts.

Level comes from LOG_LEVEL (default INFO). Output always goes to stdout; set
LOG_FILE to also append to a file.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Optional

LOG_FORMAT = "[%(asctime)s] %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def get_log_level() -> int:
    level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    return LOG_LEVEL_MAP.get(level_str, logging.INFO)


def setup_logging(log_file: Optional[str] = None) -> None:
    """Configure the root logger once; repeated calls are no-ops."""
    root_logger = logging.getLogger()
    if getattr(root_logger, "_house_utility_configured", False):
        return

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    root_logger.setLevel(get_log_level())

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    log_file = log_file or os.getenv("LOG_FILE")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # httpx logs every Telegram request URL, which includes the bot token
    logging.getLogger("httpx").setLevel(logging.WARNING)

    root_logger._house_utility_configured = True
