"""
Logging configuration for the API, workers and CLI scripts.

Call ``setup_logging()`` once at process startup. Modules log through
``logging.getLogger(__name__)``.
"""

from __future__ import annotations

import logging
import sys

from pythonjsonlogger import jsonlogger

from core.config import env


def setup_logging(service_name: str = "scriptfactory") -> None:
    root = logging.getLogger()
    root.setLevel(env("LOG_LEVEL", "INFO").upper())

    handler = logging.StreamHandler(sys.stdout)
    if env("LOG_FORMAT", "json") == "json":
        fmt = jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
        )
    else:
        fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s %(message)s")
    handler.setFormatter(fmt)

    root.handlers.clear()
    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("rq.worker").setLevel(env("RQ_LOG_LEVEL", "INFO").upper())
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    logging.getLogger(service_name).info("Logging initialised", extra={"service": service_name})
