import logging
import logging.config
import re

_API_KEY_HEADER_RE = re.compile(r"(?i)\b(x-api-key|x-goog-api-key)\b(['\"]?\s*[:=]\s*['\"]?)([^\s'\",;]+)")
_QUERY_KEY_RE = re.compile(r"([?&]key=)[^&\s'\"]+")
_ENV_KEY_RE = re.compile(r"\b([A-Z][A-Z0-9_]*_API_KEY)\s*=\s*([^\s,;]+)")
_BEARER_RE = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9\-._~+/]+=*")
_VENDOR_KEY_RE = re.compile(r"\b(sk-[A-Za-z0-9\-_]{8,}|AIza[0-9A-Za-z\-_]{20,})")


def redact(text: str) -> str:
    text = _BEARER_RE.sub("Bearer [redacted]", text)
    text = _API_KEY_HEADER_RE.sub(r"\1\2[redacted]", text)
    text = _QUERY_KEY_RE.sub(r"\1[redacted]", text)
    text = _ENV_KEY_RE.sub(r"\1=[redacted]", text)
    text = _VENDOR_KEY_RE.sub("[redacted]", text)
    return text


class RedactionFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        record.msg = redact(message)
        record.args = ()
        return True


def configure_logging(log_level: str) -> None:
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "redact": {"()": "switchboard.logging_config.RedactionFilter"},
            },
            "formatters": {
                "standard": {"format": "%(asctime)s %(levelname)s %(name)s %(message)s"}
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "standard",
                    "filters": ["redact"],
                    "level": log_level,
                }
            },
            "loggers": {
                "httpx": {"handlers": ["console"], "level": "WARNING", "propagate": False},
                "httpcore": {"handlers": ["console"], "level": "WARNING", "propagate": False},
            },
            "root": {"handlers": ["console"], "level": log_level},
        }
    )
