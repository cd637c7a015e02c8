"""Logging setup for the CMS backend.

Production emits one JSON object per line for the log shipper; ``DEBUG``
switches to a readable single-line format. Modules log through
``logging.getLogger(__name__)`` so everything sits under ``tutorial_cms``.
"""

import json
import logging
import sys

READABLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Third-party loggers held at WARNING regardless of the app level
NOISY_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "aiosqlite")


class JSONFormatter(logging.Formatter):
    """Render records as JSON lines; json.dumps escapes quotes and newlines."""

    def __init__(self):
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO", json_output: bool = True) -> None:
    """Replace the root handlers with a single stdout handler.

    Args:
        level: Log level name, already validated by Settings.
        json_output: JSON lines when true, readable text otherwise.
    """
    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(READABLE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level.upper())

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    # SQL echo only when debugging
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.DEBUG if level.upper() == "DEBUG" else logging.WARNING
    )

    logging.getLogger(__name__).info(
        f"Logging configured: level={level.upper()}, json={json_output}"
    )
