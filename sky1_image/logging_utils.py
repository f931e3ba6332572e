from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

DEFAULT_LOG_PATH = "logs/sky1-build.log"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

_configured_path: Optional[str] = None


def _open_log(log_path: str) -> tuple[logging.FileHandler, str]:
    """Append to log_path, or to a same-named file in the cwd if that is not writable."""

    try:
        Path(os.path.dirname(log_path) or ".").mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(log_path), log_path
    except OSError:
        fallback = str(Path.cwd() / Path(log_path).name)
        return logging.FileHandler(fallback), fallback


def configure_logging(
    log_path: str = DEFAULT_LOG_PATH,
    level: int = logging.INFO,
    also_console: bool = True,
) -> str:
    """Send every log record to an appended file, and INFO and up to the console.

    The file also receives DEBUG, which carries the stdout/stderr of every
    external command. Only the first call configures anything; later calls
    return the path chosen then.

    Returns the actual file path being used.
    """

    global _configured_path
    if _configured_path is not None:
        return _configured_path

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    file_handler, chosen_path = _open_log(log_path)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(fmt)
    root.addHandler(file_handler)

    if also_console:
        console = logging.StreamHandler()
        console.setLevel(level)
        console.setFormatter(fmt)
        root.addHandler(console)

    _configured_path = chosen_path
    if chosen_path != log_path:
        logging.getLogger(__name__).warning("Cannot write %s; logging to %s", log_path, chosen_path)
    logging.getLogger(__name__).info("Logging to %s", chosen_path)
    return chosen_path
