from __future__ import annotations

import logging

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_HANDLER_NAME = "dndcombat"


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger("dndcombat")
    root.setLevel(level.upper())

    # repeated calls must not stack handlers
    for h in root.handlers:
        if h.get_name() == _HANDLER_NAME:
            h.setLevel(level.upper())
            return

    handler = logging.StreamHandler()
    handler.set_name(_HANDLER_NAME)
    handler.setLevel(level.upper())
    handler.setFormatter(logging.Formatter(_FORMAT))
    root.addHandler(handler)
