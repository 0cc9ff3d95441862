from __future__ import annotations

import logging

from app.core.config import LOG_LEVEL

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(level: str | None = None) -> None:
    root = logging.getLogger()
    resolved = getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO)
    if not root.handlers:
        logging.basicConfig(level=resolved, format=_FORMAT)
    else:
        root.setLevel(resolved)

    # paramiko logs every transport negotiation at INFO
    logging.getLogger("paramiko").setLevel(logging.WARNING)
