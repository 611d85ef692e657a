from __future__ import annotations

from datetime import UTC, datetime

from qmeter_core.models import NotificationState, NotificationThresholds
from qmeter_shared.enums import AlertLevel
from qmeter_shared.schemas import NormalizedRow


def make_event_key(row: NormalizedRow) -> str:
    return f"{row.source_id.value}:{row.window}"


def to_alert_level(row: NormalizedRow, thresholds: NotificationThresholds) -> AlertLevel:
    percent = row.used_percent or 0
    if percent >= thresholds.critical_percent:
        return AlertLevel.CRITICAL
    if percent >= thresholds.warning_percent:
        return AlertLevel.WARNING
    return AlertLevel.NORMAL


def _as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.astimezone()
    return value


def should_notify_transition(
    prev: NotificationState | None,
    nxt: NotificationState,
    cooldown_seconds: float,
    now: datetime | None = None,
) -> bool:
    """Decide whether ``nxt`` deserves a notification, ignoring quiet hours.

    Repeats at an unchanged level need a previous notification time; a key that
    reached its level silently stays silent until the level changes.
    """
    if nxt.level == AlertLevel.NORMAL:
        return False
    if prev is None or prev.level != nxt.level:
        return True
    if prev.last_notified_at is None:
        return False
    current = _as_aware(now or datetime.now(UTC))
    elapsed = (current - _as_aware(prev.last_notified_at)).total_seconds()
    return elapsed >= cooldown_seconds
