import logging
from logging.config import dictConfig
from typing import Union

# ``extra`` fields set by the scrape and fetch code.
_EXTRA_KEYS = ("target", "path", "status", "duration_ms", "observations")

_configured = False


class ContextualFormatter(logging.Formatter):
    """Appends ``key=value`` for each scrape field carried by the record."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        fields = [f"{key}={getattr(record, key)}" for key in _EXTRA_KEYS if getattr(record, key, None) is not None]
        if fields:
            return f"{message} | {' '.join(fields)}"
        return message


def configure_logging(level: Union[str, int] = "INFO") -> None:
    global _configured
    if _configured:
        return

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "contextual": {
                    "()": ContextualFormatter,
                    "fmt": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S",
                }
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "contextual",
                }
            },
            "root": {"handlers": ["default"], "level": level},
        }
    )

    _configured = True
