from __future__ import annotations

import glob
import logging
import os
import sys
import time
from datetime import datetime
from typing import List, Optional

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
RULE = "=" * 76
THIN_RULE = "-" * 76


def setup_logging(log_file: Optional[str] = None, level: str = "INFO") -> None:
    """Log to stdout and, when given, append to ``log_file``."""
    root = logging.getLogger("stackupdater")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)


def rotate_log_file(log_file: str, now: Optional[datetime] = None) -> Optional[str]:
    """Move an existing log aside as ``<log_file>.<YYYYmmdd_HHMMSS>``."""
    if not os.path.isfile(log_file):
        return None
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    rotated = f"{log_file}.{stamp}"
    os.replace(log_file, rotated)
    return rotated


def cleanup_old_logs(log_dir: str, pattern: str, max_age_days: int, now: Optional[float] = None) -> List[str]:
    cutoff = (now if now is not None else time.time()) - max_age_days * 86400
    deleted: List[str] = []
    for path in sorted(glob.glob(os.path.join(log_dir, pattern))):
        try:
            if os.path.getmtime(path) < cutoff:
                os.remove(path)
                deleted.append(path)
                logger.info(f"Deleting old log: {path}")
        except OSError as e:
            logger.warning(f"Failed to remove {path}: {e}")
    if deleted:
        logger.info(f"Deleted {len(deleted)} old log file(s)")
    else:
        logger.info("No old logs to clean up")
    return deleted


def log_header(log: logging.Logger, title: str) -> None:
    log.info(RULE)
    log.info(title)
    log.info(RULE)


def log_section(log: logging.Logger, title: str) -> None:
    log.info(THIN_RULE)
    log.info(title)
    log.info(THIN_RULE)
