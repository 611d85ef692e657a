from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from qmeter_shared.enums import Confidence, Provenance, SourceId
from qmeter_shared.schemas import NormalizedRow

FIXED_NOW = datetime(2026, 2, 20, 12, 0, tzinfo=UTC)

_QMETER_ENV = (
    "QMETER_FIXTURE",
    "QMETER_CACHE_TTL_SECS",
    "QMETER_LOG_FORMAT",
    "QMETER_CLAUDE_COMMAND",
    "QMETER_CODEX_COMMAND",
)


@pytest.fixture(autouse=True)
def isolated_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    for name in _QMETER_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("QMETER_CACHE_PATH", str(tmp_path / "cache.v1.json"))
    monkeypatch.setenv("QMETER_NOTIFICATION_STATE_PATH", str(tmp_path / "notification-state.v1.json"))
    monkeypatch.setenv("QMETER_SETTINGS_PATH", str(tmp_path / "settings.v1.json"))
    return tmp_path


@pytest.fixture(autouse=True)
def restore_root_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    try:
        yield
    finally:
        for handler in list(root.handlers):
            if handler not in handlers:
                root.removeHandler(handler)
        for handler in handlers:
            if handler not in root.handlers:
                root.addHandler(handler)
        root.setLevel(level)


@pytest.fixture()
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture()
def make_row() -> Callable[..., NormalizedRow]:
    def _make(
        source_id: SourceId = SourceId.CODEX,
        window: str = "codex:5h",
        used_percent: float | None = 50,
        **overrides: Any,
    ) -> NormalizedRow:
        values: dict[str, Any] = {
            "source_id": source_id,
            "window": window,
            "used_percent": used_percent,
            "reset_at": None,
            "provenance": Provenance.STRUCTURED,
            "confidence": Confidence.HIGH,
            "stale": False,
            "notes": None,
        }
        values.update(overrides)
        return NormalizedRow(**values)

    return _make
