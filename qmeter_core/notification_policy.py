from __future__ import annotations

import math
from datetime import UTC, datetime

from qmeter_core.models import (
    NotificationEvaluation,
    NotificationEvent,
    NotificationPolicyConfig,
    NotificationState,
    QuietHours,
)
from qmeter_core.notification_state import make_event_key, should_notify_transition, to_alert_level
from qmeter_shared.enums import AlertLevel
from qmeter_shared.schemas import NormalizedRow


def _clamp_hour(hour: float) -> int:
    if not math.isfinite(hour):
        return 0
    return max(0, min(23, math.floor(hour)))


def _local_hour(now: datetime) -> int:
    if now.tzinfo is None:
        return now.hour
    return now.astimezone().hour


def is_in_quiet_hours(quiet: QuietHours, now: datetime | None = None) -> bool:
    if not quiet.enabled:
        return False
    start = _clamp_hour(quiet.start_hour)
    end = _clamp_hour(quiet.end_hour)
    hour = _local_hour(now or datetime.now())

    if start == end:
        return True
    if start < end:
        return start <= hour < end
    return hour >= start or hour < end


def level_with_hysteresis(used_percent: float, prev: AlertLevel, config: NotificationPolicyConfig) -> AlertLevel:
    percent = max(0.0, min(100.0, used_percent))
    warning = config.thresholds.warning_percent
    critical = config.thresholds.critical_percent
    band = max(0.0, config.hysteresis_percent)

    if prev == AlertLevel.CRITICAL:
        if percent >= critical - band:
            return AlertLevel.CRITICAL
        if percent >= warning:
            return AlertLevel.WARNING
        return AlertLevel.NORMAL

    if prev == AlertLevel.WARNING:
        if percent >= critical:
            return AlertLevel.CRITICAL
        if percent >= warning - band:
            return AlertLevel.WARNING
        return AlertLevel.NORMAL

    if percent >= critical:
        return AlertLevel.CRITICAL
    if percent >= warning:
        return AlertLevel.WARNING
    return AlertLevel.NORMAL


def evaluate_notification_policy(
    rows: list[NormalizedRow],
    prev_state: dict[str, NotificationState],
    config: NotificationPolicyConfig,
    now: datetime | None = None,
) -> NotificationEvaluation:
    """Advance per-window alert levels and collect the notifications to emit.

    Quiet hours only silence emission: levels are still advanced and persisted.
    The returned ``next_state`` carries every key from ``prev_state``.
    """
    current = now or datetime.now(UTC)
    next_state: dict[str, NotificationState] = dict(prev_state)
    events: list[NotificationEvent] = []
    quiet = is_in_quiet_hours(config.quiet_hours, current)

    for row in rows:
        if row.used_percent is None:
            continue
        event_key = make_event_key(row)
        prev = prev_state.get(event_key)
        if prev is None:
            level = to_alert_level(row, config.thresholds)
        else:
            level = level_with_hysteresis(row.used_percent, prev.level, config)

        candidate = NotificationState(
            event_key=event_key,
            level=level,
            last_notified_at=prev.last_notified_at if prev is not None else None,
        )

        notify = not quiet and should_notify_transition(prev, candidate, config.cooldown_seconds, current)
        if notify and level != AlertLevel.NORMAL:
            reason = "cooldown" if prev is not None and prev.level == level else "transition"
            events.append(NotificationEvent(event_key=event_key, level=level, row=row, reason=reason))
            candidate.last_notified_at = current if current.tzinfo else current.astimezone()

        next_state[event_key] = candidate

    return NotificationEvaluation(events=events, next_state=next_state)
