"""Logging setup for the runmatrix command line."""

from __future__ import annotations

import logging
import os
from pathlib import Path

_OWNED_ATTR = "_runmatrix_owned"
_FORMAT = "ts=%(asctime)s level=%(levelname)s logger=%(name)s msg=%(message)s"


def _resolve_level(level: int | None) -> int:
    if level is not None:
        return level
    name = os.environ.get("RUNMATRIX_LOG_LEVEL", "").strip().upper()
    resolved = logging.getLevelName(name) if name else logging.WARNING
    return resolved if isinstance(resolved, int) else logging.WARNING


def _add_handler(root: logging.Logger, handler: logging.Handler, level: int) -> None:
    setattr(handler, _OWNED_ATTR, True)
    handler.setFormatter(logging.Formatter(_FORMAT))
    handler.setLevel(level)
    root.addHandler(handler)


def setup_logging(*, level: int | None = None) -> None:
    """Attach a stderr handler, plus a file handler when ``RUNMATRIX_LOG_FILE`` is set.

    The stderr level comes from *level* or ``RUNMATRIX_LOG_LEVEL`` and defaults
    to WARNING. The file always receives the INFO ``cli_command_*`` events.
    Handlers from an earlier call are replaced, never duplicated.
    """
    root = logging.getLogger("runmatrix")
    for handler in list(root.handlers):
        if getattr(handler, _OWNED_ATTR, False):
            root.removeHandler(handler)
            handler.close()

    stream_level = _resolve_level(level)
    _add_handler(root, logging.StreamHandler(), stream_level)
    root_level = stream_level

    log_file = os.environ.get("RUNMATRIX_LOG_FILE", "").strip()
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_level = min(stream_level, logging.INFO)
        _add_handler(root, logging.FileHandler(path, encoding="utf-8"), file_level)
        root_level = min(root_level, file_level)
    root.setLevel(root_level)
