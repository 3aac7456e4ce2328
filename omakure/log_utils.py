import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

STDOUT_ENV = "OMAKURE_LOG_STDOUT"


def setup_logger(
    path: Path,
    name: str = "omakure",
    max_bytes: int = 2_000_000,
    backups: int = 3,
    stdout: Optional[bool] = None,
) -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    path.parent.mkdir(parents=True, exist_ok=True)
    logger.setLevel(logging.INFO)
    fh = RotatingFileHandler(path, encoding="utf-8", maxBytes=max_bytes, backupCount=backups)
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
    fh.setFormatter(fmt)
    logger.addHandler(fh)
    if stdout is None:
        stdout = os.environ.get(STDOUT_ENV) == "1"
    if stdout:
        sh = logging.StreamHandler()
        sh.setFormatter(fmt)
        logger.addHandler(sh)
    return logger


def get_logger(component: str) -> logging.Logger:
    """Child of the root `omakure` logger; silent until setup_logger attaches handlers."""
    return logging.getLogger(f"omakure.{component}")
