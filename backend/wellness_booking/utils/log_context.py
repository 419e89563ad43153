"""Request correlation for logs.

The request-id middleware stores the id in a ContextVar; ``RequestIdFilter``
copies it onto every record so handlers can format ``%(request_id)s``.
"""

from __future__ import annotations

import logging
import uuid
from contextvars import ContextVar
from typing import Optional

_request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s"


def generate_request_id() -> str:
    return uuid.uuid4().hex


def set_request_id(request_id: str | None) -> None:
    """Store request id in context (None to clear)."""
    _request_id_ctx.set(request_id)


def get_request_id() -> Optional[str]:
    return _request_id_ctx.get()


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id_ctx.get() or "-"
        return True


def configure_logging(level: int = logging.INFO) -> None:
    """Attach a request-id aware handler to the package logger once."""
    logger = logging.getLogger("wellness_booking")
    if any(isinstance(f, RequestIdFilter) for h in logger.handlers for f in h.filters):
        return
    handler = logging.StreamHandler()
    handler.addFilter(RequestIdFilter())
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(level)
