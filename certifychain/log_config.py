"""Process-wide logging setup.

JSON lines by default so ``extra=`` fields (route, method, status,
transaction_hash, ...) survive into the log pipeline. ``CERTIFYCHAIN_LOG_FORMAT=text``
switches to a plain formatter for local development.
"""
import json
import logging
import sys
from datetime import datetime, timezone

from certifychain import config

# Attributes every LogRecord has; anything else came from ``extra=``
_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys()) | {
    "message",
    "asctime",
}

_configured = False


class JsonFormatter(logging.Formatter):
    """Render a record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Install the root handler. Safe to call more than once."""
    global _configured
    if _configured:
        return

    handler = logging.StreamHandler(sys.stderr)
    if (fmt or config.LOG_FORMAT) == "text":
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
    else:
        handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level or config.LOG_LEVEL)

    # web3 logs every RPC at DEBUG
    logging.getLogger("web3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    _configured = True
