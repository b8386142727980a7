from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(*, debug: bool, app_name: str = "app") -> None:
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)

    logging.getLogger("uvicorn.error").setLevel(level)
    logging.getLogger("uvicorn.access").setLevel(level)
    # Per-statement SQL and websocket frame traces only in debug mode.
    quiet_level = logging.INFO if debug else logging.WARNING
    for noisy in ("sqlalchemy.engine", "websockets", "passlib"):
        logging.getLogger(noisy).setLevel(quiet_level)

    logging.getLogger(__name__).info("Logging configured app=%s debug=%s", app_name, debug)
