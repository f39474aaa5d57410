import json
import logging
import sys
from datetime import datetime, timezone

# Emitted first so pipeline log lines can be grepped per run.
CONTEXT_FIELDS = ("owner_id", "session_id", "job_id", "stage")


def _context(record: logging.LogRecord) -> dict:
    extra = getattr(record, "extra", None)
    return extra if isinstance(extra, dict) else {}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = _context(record)
        payload.update({key: context[key] for key in CONTEXT_FIELDS if key in context})
        payload.update({key: value for key, value in context.items() if key not in CONTEXT_FIELDS})
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class ConsoleFormatter(logging.Formatter):
    """Single-line output for the command-line scripts."""

    def format(self, record: logging.LogRecord) -> str:
        line = f"{record.levelname:<7} {record.getMessage()}"
        context = _context(record)
        if context:
            line += " " + " ".join(f"{key}={value}" for key, value in context.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level: int | str = logging.INFO, *, json_format: bool = True) -> None:
    root = logging.getLogger()
    root.setLevel(level.upper() if isinstance(level, str) else level)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if json_format else ConsoleFormatter())
    root.handlers = [handler]
    # httpx request lines carry query-string API keys.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
