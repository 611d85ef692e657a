from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime

from qmeter.config import load_runtime_env
from qmeter_shared.sanitization import sanitize_text

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per record, with the message scrubbed of credentials."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": sanitize_text(record.getMessage()),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True)


def configure_logging(
    verbose: bool = False,
    log_format: str | None = None,
    default_level: int = logging.INFO,
) -> None:
    """Install a single stderr handler on the root logger.

    Output stays on stderr so stdout carries only the rendered snapshot.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    level = logging.DEBUG if verbose else default_level
    handler = logging.StreamHandler(sys.stderr)

    fmt = (log_format or load_runtime_env().log_format).lower()
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    root.setLevel(level)
    root.addHandler(handler)
