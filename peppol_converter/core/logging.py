import json
import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

# Attributes every LogRecord carries; anything else on a record came in through `extra`.
_EXTRA_SKIP = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))) | {
    "message",
    "asctime",
    "taskName",
}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }
        for key, value in record.__dict__.items():
            if key not in _EXTRA_SKIP:
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(log_level: str = "INFO") -> None:
    root = logging.getLogger()
    for existing in root.handlers:
        if isinstance(existing.formatter, JsonFormatter):
            break
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
        root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))


@contextmanager
def log_stage(logger: logging.Logger, stage: str, **fields: Any) -> Iterator[dict[str, Any]]:
    """Time a pipeline stage and log ``"<stage> complete"`` when it finishes.

    The body may add keys to the yielded dict; they are logged with the record.
    Nothing is logged when the body raises.
    """
    extra: dict[str, Any] = dict(fields)
    start = time.monotonic()
    yield extra
    extra["stage"] = stage
    extra["duration_ms"] = int((time.monotonic() - start) * 1000)
    logger.info("%s complete", stage, extra=extra)
