from __future__ import annotations

import logging
import logging.handlers
import os
import queue
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

LOG_LEVEL_ENV = "FERALSIM_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(levelname)s [tid=%(thread)d] %(name)s:%(funcName)s:%(lineno)d - %(message)s"


@dataclass
class LoggingRuntime:
    listener: logging.handlers.QueueListener
    level: int

    def stop(self) -> None:
        self.listener.stop()


def resolve_level(level: Optional[str] = None) -> int:
    name = (os.environ.get(LOG_LEVEL_ENV, "").strip() or level or "WARNING").upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.WARNING


def setup_logging(
    level: Optional[str] = None,
    *,
    console: bool = True,
    log_file: Path | str | None = None,
) -> LoggingRuntime:
    """Routes every record through one queue so worker threads never write handlers directly.

    ``FERALSIM_LOG_LEVEL`` overrides ``level`` when set.
    """
    resolved = resolve_level(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT)

    handlers: List[logging.Handler] = []
    if console:
        stream = logging.StreamHandler(stream=sys.stderr)
        stream.setFormatter(formatter)
        handlers.append(stream)
    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=str(path),
            maxBytes=5 * 1024 * 1024,
            backupCount=3,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)
    if not handlers:
        handlers.append(logging.NullHandler())

    log_queue: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=20_000)
    root = logging.getLogger()
    root.setLevel(resolved)
    root.handlers.clear()
    root.addHandler(logging.handlers.QueueHandler(log_queue))

    listener = logging.handlers.QueueListener(log_queue, *handlers, respect_handler_level=True)
    listener.start()

    logging.getLogger(__name__).debug("logging initialized at %s", logging.getLevelName(resolved))
    return LoggingRuntime(listener=listener, level=resolved)
