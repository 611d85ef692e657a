from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from qmeter_shared.enums import AlertLevel
from qmeter_shared.schemas import NormalizedRow, WireModel

NotificationReason = Literal["transition", "cooldown"]


class NotificationState(WireModel):
    event_key: str = Field(min_length=1)
    level: AlertLevel = AlertLevel.NORMAL
    last_notified_at: datetime | None = None


class NotificationThresholds(BaseModel):
    model_config = ConfigDict(extra="forbid")

    warning_percent: float = Field(default=80, ge=0, le=100)
    critical_percent: float = Field(default=95, ge=0, le=100)

    @model_validator(mode="after")
    def validate_order(self) -> "NotificationThresholds":
        if self.warning_percent > self.critical_percent:
            raise ValueError("warning_percent must not exceed critical_percent")
        return self


class QuietHours(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = False
    start_hour: int = 22
    end_hour: int = 8


class NotificationPolicyConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    thresholds: NotificationThresholds = Field(default_factory=NotificationThresholds)
    cooldown_seconds: float = Field(default=3600, ge=0)
    hysteresis_percent: float = 2
    quiet_hours: QuietHours = Field(default_factory=QuietHours)


class NotificationEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    event_key: str
    level: Literal[AlertLevel.WARNING, AlertLevel.CRITICAL]
    row: NormalizedRow
    reason: NotificationReason


class NotificationEvaluation(BaseModel):
    model_config = ConfigDict(extra="forbid")

    events: list[NotificationEvent] = Field(default_factory=list)
    next_state: dict[str, NotificationState] = Field(default_factory=dict)
