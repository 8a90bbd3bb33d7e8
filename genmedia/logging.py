from __future__ import annotations

import logging
from typing import Optional

from pythonjsonlogger import jsonlogger

from genmedia.config import settings

_NOISY = (
    "httpx",
    "httpcore",
    "uvicorn.access",
    "azure.core.pipeline.policies.http_logging_policy",
)


class _ServiceFilter(logging.Filter):
    """Stamps every record with the service name/version so worker and API logs can be told apart."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = settings.SERVICE_NAME
        record.version = settings.SERVICE_VERSION
        return True


def configure_logging(level: Optional[str] = None) -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))

    # uvicorn / pytest may already have installed handlers
    if root.handlers:
        return

    handler = logging.StreamHandler()
    handler.addFilter(_ServiceFilter())
    handler.setFormatter(
        jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(service)s %(version)s %(message)s")
    )
    root.addHandler(handler)

    for name in _NOISY:
        logging.getLogger(name).setLevel(logging.WARNING)
