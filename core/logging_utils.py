"""LayerSync logging: rotating controller log plus the daily JSONL journal."""
from __future__ import annotations
import logging
import logging.handlers
import json
import time
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUPS = 5
JOURNAL_PREFIX = "layersync"


def setup_rotating_logger(name: str, log_dir: Path, level: int = logging.DEBUG,
                          console_level: int = logging.INFO) -> logging.Logger:
    """
    Attach a rotating file handler (everything at `level`) and a console
    handler (`console_level`) to the `name` logger. Calling it again for the
    same log file does not add handlers twice.
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = (log_dir / f"{name}.log").resolve()

    logger = logging.getLogger(name)
    logger.setLevel(level)

    for handler in logger.handlers:
        if isinstance(handler, logging.handlers.RotatingFileHandler) and \
                Path(handler.baseFilename) == log_file:
            return logger

    fmt = logging.Formatter(LOG_FORMAT)
    fh = logging.handlers.RotatingFileHandler(
        log_file, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8"
    )
    fh.setLevel(level)
    fh.setFormatter(fmt)
    logger.addHandler(fh)

    ch = logging.StreamHandler()
    ch.setLevel(console_level)
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    return logger


def journal_path(log_dir: Path, day: Optional[time.struct_time] = None) -> Path:
    return log_dir / f"{JOURNAL_PREFIX}-{time.strftime('%Y-%m-%d', day or time.localtime())}.jsonl"


def log_jsonl(log_dir: Path, record: dict) -> None:
    """Append one advance or macro record to today's journal."""
    log_dir.mkdir(parents=True, exist_ok=True)
    line = json.dumps({"ts_utc_ms": int(time.time() * 1000), **record})
    with open(journal_path(log_dir), "a", encoding="utf-8") as f:
        f.write(line + "\n")
