import logging
import logging.config
import re

from .request_id import elapsed_ms, get_request_id

_SECRET_KV_RE = re.compile(
    r"(?i)\b(authorization|token|secret|api_key|apikey|password)\b\s*[:=]\s*([^\s,;]+)"
)
_BEARER_RE = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9\-._~+/]+=*")
_DATA_URI_RE = re.compile(r"(data:[\w.+-]+/[\w.+-]+;base64,)[A-Za-z0-9+/=]+")

api_logger = logging.getLogger("workflow_gateway.api_calls")


def _redact_text(text: str) -> str:
    text = _DATA_URI_RE.sub(r"\1[redacted]", text)
    text = _BEARER_RE.sub("Bearer [redacted]", text)
    text = _SECRET_KV_RE.sub(r"\1=[redacted]", text)
    return text


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        return True


class RedactionFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        record.msg = _redact_text(message)
        record.args = ()
        return True


def log_api_call(path: str, started_at: float | None = None) -> None:
    api_logger.info("backend call path=%s elapsed_ms=%s", path, elapsed_ms(started_at))


def configure_logging(log_level: str) -> None:
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "request_id": {"()": "workflow_gateway.logging_config.RequestIdFilter"},
                "redact": {"()": "workflow_gateway.logging_config.RedactionFilter"},
            },
            "formatters": {
                "standard": {
                    "format": "%(asctime)s %(levelname)s %(name)s request_id=%(request_id)s %(message)s"
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "standard",
                    "filters": ["request_id", "redact"],
                    "level": log_level,
                }
            },
            "loggers": {
                "uvicorn": {
                    "handlers": ["console"],
                    "level": log_level,
                    "propagate": False,
                },
                "uvicorn.error": {
                    "handlers": ["console"],
                    "level": log_level,
                    "propagate": False,
                },
                "uvicorn.access": {
                    "handlers": ["console"],
                    "level": log_level,
                    "propagate": False,
                },
                "httpx": {
                    "handlers": ["console"],
                    "level": "WARNING",
                    "propagate": False,
                },
            },
            "root": {"handlers": ["console"], "level": log_level},
        }
    )
