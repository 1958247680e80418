# src/taskloop/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path

# Console thresholds per logger prefix. Timer arming/dormancy chatter from the
# entries is DEBUG and stays in the log file even when the console runs at DEBUG.
_CONSOLE_THRESHOLDS: tuple[tuple[str, int], ...] = (
    ("taskloop.tasks.task_entry", logging.WARNING),
    ("taskloop.", logging.NOTSET),
    ("py.warnings", logging.ERROR),
)


class _ConsoleNoiseFilter(logging.Filter):
    """
    Per-logger console thresholds, checked in order (first prefix match wins).
    Anything unlisted is third-party and only reaches the console at ERROR+.
    """

    def __init__(
        self,
        thresholds: tuple[tuple[str, int], ...] = _CONSOLE_THRESHOLDS,
        default: int = logging.ERROR,
    ) -> None:
        super().__init__()
        self._thresholds = thresholds
        self._default = default

    def filter(self, record: logging.LogRecord) -> bool:
        for prefix, level in self._thresholds:
            if record.name.startswith(prefix):
                return record.levelno >= level
        return record.levelno >= self._default


def setup_logging(
    *,
    log_dir: str | Path = ".local/taskloop",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Install a filtered stderr handler and a full file handler on the root logger.

    Replaces any handlers already on the root logger, so calling it twice does
    not duplicate output. Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "taskloop.log"

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    # Isolated runs log from their own threads; the thread name tells them apart.
    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)-7s [%(threadName)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(fmt)
    console.addFilter(_ConsoleNoiseFilter())
    root.addHandler(console)

    file_handler = logging.FileHandler(str(log_file), encoding="utf-8")
    file_handler.setLevel(file_level)
    file_handler.setFormatter(fmt)
    root.addHandler(file_handler)

    logging.captureWarnings(True)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    return log_file
