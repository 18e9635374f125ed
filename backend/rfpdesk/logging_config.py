# logging_config.py
# Console logging for the API and the poller. Call setup_logging() once at startup.
#
# Module loggers pass ingestion context through extra={...}; both formatters
# carry it, so a reply can be followed from fetch to proposal by uid or rfp_id.

import json
import logging
import sys
from datetime import datetime, timezone

CONTEXT_FIELDS = ("rfp_id", "vendor_id", "session_id", "uid", "outcome")

QUIET_LOGGERS = {
    # pypdf warns on every malformed attachment
    "pypdf": logging.ERROR,
    "httpx": logging.WARNING,
    "openai": logging.WARNING,
}


def record_context(record: logging.LogRecord) -> dict:
    return {key: getattr(record, key) for key in CONTEXT_FIELDS if getattr(record, key, None) is not None}


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record):
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            **record_context(record),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """`12:00:01 WARNING rfpdesk.poller: message  [uid=7 outcome=no_token]`"""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s", datefmt="%H:%M:%S")

    def format(self, record):
        line = super().format(record)
        context = record_context(record)
        if not context:
            return line
        tags = " ".join(f"{k}={v}" for k, v in context.items())
        head, sep, trace = line.partition("\n")
        return f"{head}  [{tags}]{sep}{trace}"


def setup_logging(level: str = "INFO", json_logs: bool = False):
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if json_logs else ConsoleFormatter())
    root.addHandler(handler)

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)
