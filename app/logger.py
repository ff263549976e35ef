# app/logger.py
import json
import logging
import re
import sys
from typing import Optional
from app.config import config

_DEFAULT_FMT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_JOB_PREFIX = re.compile(r"^\[([A-Za-z0-9_-]+)\]\s")
_configured = False


class CloudRunFormatter(logging.Formatter):
    """
    One JSON object per line, the shape Cloud Logging parses from stdout.
    A leading "[<job_id>] " in the message becomes a `job_id` field.
    """

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        entry = {
            "severity": record.levelname,
            "message": message,
            "logger": record.name,
            "time": self.formatTime(record),
        }
        m = _JOB_PREFIX.match(message)
        if m:
            entry["job_id"] = m.group(1)
        if record.exc_info:
            entry["message"] += "\n" + self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def _formatter(fmt: str) -> logging.Formatter:
    if config.log_format == "json":
        return CloudRunFormatter()
    return logging.Formatter(fmt)


def configure_logging(level: Optional[str] = None, fmt: str = _DEFAULT_FMT) -> None:
    """Configure logging once, respecting LOG_LEVEL / LOG_FORMAT and overruling prior basicConfig."""
    global _configured
    if _configured:
        return

    level_name = (level or config.log_level).upper()
    level_value = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    root.setLevel(level_value)

    if not root.handlers:
        h = logging.StreamHandler(sys.stdout)
        h.setLevel(level_value)
        h.setFormatter(_formatter(fmt))
        root.addHandler(h)
    else:
        for h in root.handlers:
            h.setLevel(level_value)
            if not h.formatter:
                h.setFormatter(_formatter(fmt))

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "gunicorn.error", "gunicorn.access", "asyncio"):
        logging.getLogger(name).setLevel(level_value)

    # SDK request logging is noisy at DEBUG
    for name in ("httpx", "httpcore", "openai", "urllib3", "filelock"):
        logging.getLogger(name).setLevel(max(level_value, logging.INFO))

    _configured = True

def get_logger(name: Optional[str] = None) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name or __name__)
