"""Pure alerting and scheduling logic."""

from qmeter_core.backoff import DEFAULT_BACKOFF, BackoffOptions, compute_backoff_delay
from qmeter_core.models import NotificationEvaluation, NotificationEvent, NotificationPolicyConfig, NotificationState
from qmeter_core.notification_policy import evaluate_notification_policy, is_in_quiet_hours

__all__ = [
    "evaluate_notification_policy",
    "is_in_quiet_hours",
    "compute_backoff_delay",
    "BackoffOptions",
    "DEFAULT_BACKOFF",
    "NotificationEvaluation",
    "NotificationEvent",
    "NotificationPolicyConfig",
    "NotificationState",
]
