"""Root logger setup: logfmt (the default) or one JSON object per line."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

from .config import LoggingConfig

# Attributes every LogRecord carries; anything else came in through ``extra=``.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def _fields(record: logging.LogRecord) -> dict[str, object]:
    """Collect ts/level/caller/msg followed by the record's extra fields."""
    fields: dict[str, object] = {
        "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
        "level": record.levelname.lower(),
        "caller": f"{record.module}.py:{record.lineno}",
        "msg": record.getMessage(),
    }
    for key, value in vars(record).items():
        if key not in _RECORD_ATTRS and not key.startswith("_"):
            fields[key] = value
    return fields


class LogfmtFormatter(logging.Formatter):
    """key=value pairs, values quoted when they contain spaces, quotes or '='."""

    def format(self, record: logging.LogRecord) -> str:
        fields = _fields(record)
        if record.exc_info and record.exc_info[1]:
            fields["err"] = self.formatException(record.exc_info)
        return " ".join(f"{key}={self._quote(value)}" for key, value in fields.items())

    @staticmethod
    def _quote(value: object) -> str:
        text = str(value)
        if text and not any(c in text for c in ' ="\n\t'):
            return text
        return json.dumps(text)


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        fields = _fields(record)
        if record.exc_info and record.exc_info[1]:
            fields["err"] = self.formatException(record.exc_info)
        return json.dumps(fields, default=str)


def configure_logging(config: LoggingConfig) -> None:
    """Replace the root logger's handlers with one stderr handler in the configured format."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, config.level.upper(), logging.INFO))

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if config.format == "json" else LogfmtFormatter())
    root.addHandler(handler)

    # requests logs every connection at DEBUG through urllib3
    logging.getLogger("urllib3").setLevel(logging.WARNING)
