"""Logging setup: stdlib logging with the request id attached to every record."""

import logging
from contextvars import ContextVar

_request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] [req=%(request_id)s] %(message)s"


def get_request_id() -> str | None:
    return _request_id_ctx.get()


def set_request_id(request_id: str | None):
    """Bind a request id to the current context. Returns the reset token."""
    return _request_id_ctx.set(request_id)


def reset_request_id(token) -> None:
    _request_id_ctx.reset(token)


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id() or "-"
        return True


def configure_logging(level: str = "INFO") -> None:
    """Install a single stream handler on the ``planshare`` logger (idempotent)."""
    root = logging.getLogger("planshare")
    root.setLevel(level.upper())
    for handler in root.handlers:
        if getattr(handler, "_planshare", False):
            return

    handler = logging.StreamHandler()
    handler._planshare = True  # type: ignore[attr-defined]
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(RequestIdFilter())
    root.addHandler(handler)
