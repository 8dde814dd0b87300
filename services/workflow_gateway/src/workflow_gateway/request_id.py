import time
from contextvars import ContextVar

REQUEST_ID_HEADER = "X-Request-ID"

_request_id_ctx: ContextVar[str] = ContextVar("request_id", default="-")
_started_at_ctx: ContextVar[float | None] = ContextVar("request_started_at", default=None)


def set_request_id(value: str) -> None:
    _request_id_ctx.set(value)


def get_request_id() -> str:
    return _request_id_ctx.get()


def mark_request_start(started_at: float | None = None) -> float:
    value = time.monotonic() if started_at is None else started_at
    _started_at_ctx.set(value)
    return value


def elapsed_ms(started_at: float | None = None) -> int:
    """Milliseconds since ``started_at`` or, by default, since the request began."""
    origin = started_at if started_at is not None else _started_at_ctx.get()
    if origin is None:
        return 0
    return int((time.monotonic() - origin) * 1000)
