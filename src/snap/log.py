from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_HANDLER_ATTR = "_snap_handler"


def configure_logging(level: str | int = "WARNING") -> logging.Logger:
    """Attach a single stderr handler to the ``snap`` logger tree."""
    logger = logging.getLogger("snap")
    if isinstance(level, str):
        resolved = logging.getLevelName(level.strip().upper())
        level = resolved if isinstance(resolved, int) else logging.WARNING
    logger.setLevel(level)
    for handler in logger.handlers:
        if getattr(handler, _HANDLER_ATTR, False):
            handler.setLevel(level)
            return logger
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.setLevel(level)
    setattr(handler, _HANDLER_ATTR, True)
    logger.addHandler(handler)
    return logger
