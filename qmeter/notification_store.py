from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Literal

from pydantic import Field, ValidationError

from qmeter.config import default_state_dir
from qmeter_core.models import NotificationState
from qmeter_shared.schemas import WireModel
from qmeter_shared.serialization import atomic_write_text, pretty_json_text

logger = logging.getLogger("qmeter.notification_store")

STATE_FILE_NAME = "notification-state.v1.json"


class NotificationStoreFile(WireModel):
    version: Literal[1] = 1
    items: dict[str, NotificationState] = Field(default_factory=dict)


def default_notification_state_path() -> Path:
    override = os.getenv("QMETER_NOTIFICATION_STATE_PATH", "").strip()
    if override:
        return Path(override).expanduser()
    return default_state_dir() / STATE_FILE_NAME


def load_notification_state(state_path: Path | None = None) -> dict[str, NotificationState]:
    path = state_path or default_notification_state_path()
    try:
        parsed = NotificationStoreFile.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except FileNotFoundError:
        return {}
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, ValidationError) as exc:
        logger.debug("ignoring unusable notification state at %s: %s", path, exc.__class__.__name__)
        return {}
    return parsed.items


def save_notification_state(state: dict[str, NotificationState], state_path: Path | None = None) -> Path:
    document = NotificationStoreFile.model_validate({"version": 1, "items": state})
    path = state_path or default_notification_state_path()
    atomic_write_text(path, pretty_json_text(document) + "\n")
    return path
