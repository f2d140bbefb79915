"""
Log output for the archive service: every record becomes one JSON line on
stderr, carrying whatever the caller passed in extra= (document_id, reference,
media_count...) as top-level keys.
"""
import json
import logging
from datetime import datetime, timezone

# Set on every LogRecord by the logging module itself
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "extra"}

# python-multipart logs each parsed part at DEBUG
_CHATTY_LOGGERS = ("multipart", "python_multipart")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (k, v) for k, v in record.__dict__.items()
            if k not in _RECORD_ATTRS and v is not None
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        # Paths and enums in extra= are not JSON types
        return json.dumps(entry, default=str)


def _level_number(level: int | str) -> int:
    if isinstance(level, int):
        return level
    number = logging.getLevelName(level.strip().upper())
    return number if isinstance(number, int) else logging.INFO


def setup_logging(level: int | str = logging.INFO) -> None:
    """Route all logging through JSONFormatter. level may be a name from LOG_LEVEL."""
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    logging.basicConfig(level=_level_number(level), handlers=[handler], force=True)
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(_level_number(level), logging.INFO))
