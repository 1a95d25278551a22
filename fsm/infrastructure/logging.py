import logging
import os
from pathlib import Path
from typing import Optional

DEFAULT_LOG_NAME = "fsm.log"
# Scans, searches and file operations log from pool threads; the thread name tells them apart.
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(threadName)s - %(message)s"


def resolve_log_file(log_dir: Path, log_path: Optional[Path] = None) -> Path:
    return Path(log_path) if log_path else Path(log_dir) / DEFAULT_LOG_NAME


def setup_logging(log_dir: Path, debug: bool = False, log_path: Optional[Path] = None) -> logging.Logger:
    """
    Route all fsm logging to a file.

    The dashboard owns the terminal for the whole session, so nothing may log to
    stderr: the file handler replaces every root handler and Python warnings are
    captured into the same file.

    Args:
        log_dir: Directory holding fsm.log (created if missing)
        debug: Log scan, task and per-action timings at DEBUG
        log_path: Explicit log file; its directory is used instead of log_dir
    """
    log_file = resolve_log_file(log_dir, log_path)
    if log_path is None:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.FileHandler(log_file, encoding="utf-8")],
        force=True,
    )
    logging.captureWarnings(True)

    logger = logging.getLogger("fsm")
    logger.setLevel(level)
    logger.info(f"SESSION_START: pid={os.getpid()} log={log_file} debug={'ON' if debug else 'OFF'}")
    return logger
