"""
Run transcripts: one log file per invocation, named after host and start time.
"""

import logging
import socket
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator

from gpokit.util.files import ensure_dir

TRANSCRIPT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def transcript_path(
    log_dir: str | Path,
    name: str,
    host: str | None = None,
    when: datetime | None = None,
) -> Path:
    """Build `<log_dir>/<name>_<HOST>_<YYYYMMDD-HHMMSS>.log`."""
    host = (host or socket.gethostname()).split(".")[0].upper()
    when = when or datetime.now()
    return Path(log_dir) / f"{name}_{host}_{when:%Y%m%d-%H%M%S}.log"


@contextmanager
def transcript(
    log_dir: str | Path,
    name: str,
    level: int = logging.INFO,
) -> Iterator[Path]:
    """
    Mirror everything logged under the ``gpokit`` logger into a transcript file.

    Usage:
        with transcript(workspace.root / "logs", "backup") as log_file:
            run_backups(...)

    Yields:
        Path of the transcript file
    """
    ensure_dir(log_dir)
    path = transcript_path(log_dir, name)

    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(TRANSCRIPT_FORMAT))

    package_logger = logging.getLogger("gpokit")
    previous_level = package_logger.level
    if package_logger.level == logging.NOTSET or package_logger.level > level:
        package_logger.setLevel(level)
    package_logger.addHandler(handler)

    package_logger.info("Transcript started: %s on %s", name, socket.gethostname())
    try:
        yield path
    finally:
        package_logger.info("Transcript stopped: %s", name)
        package_logger.removeHandler(handler)
        package_logger.setLevel(previous_level)
        handler.close()
