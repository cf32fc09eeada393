from __future__ import annotations

import logging
from typing import Optional

_DEFAULT_FMT = "%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s"
_DEFAULT_DATEFMT = "%H:%M:%S"

# Logs one line per HTTP call; only wanted with -vv
_WIRE_LOGGERS = ("sfbroker.transport", "sfbroker.auth")


def configure_logging(level: Optional[int]) -> None:
    """Configure root logging once; safe to call multiple times.

    Queue activity (logins, retries, failures) follows ``level``. Per-request
    lines from the transport and token exchange only show at DEBUG.
    """
    lvl = level if level is not None else logging.WARNING
    root = logging.getLogger()

    if root.handlers:
        root.setLevel(lvl)
    else:
        logging.basicConfig(
            level=lvl,
            format=_DEFAULT_FMT,
            datefmt=_DEFAULT_DATEFMT,
        )

    wire_level = logging.DEBUG if lvl <= logging.DEBUG else logging.WARNING
    for name in _WIRE_LOGGERS:
        logging.getLogger(name).setLevel(wire_level)

    for noisy in ("urllib3.connection", "urllib3.connectionpool"):
        lg = logging.getLogger(noisy)
        if lg.level == logging.NOTSET or lg.level < logging.WARNING:
            lg.setLevel(logging.WARNING)
