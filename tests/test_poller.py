from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

import pytest

from qmeter.config import RuntimeEnv, Settings, VisibleProviders
from qmeter.notification_store import load_notification_state
from qmeter.poller import UsagePoller
from qmeter_core.models import NotificationEvent
from qmeter_shared.enums import AlertLevel, ErrorKind, SourceId
from qmeter_shared.schemas import AcquireContext, NormalizedError, NormalizedRow, ProviderResult


class ScriptedProvider:
    def __init__(self, source_id: SourceId, results: list[ProviderResult]) -> None:
        self.source_id = source_id
        self.results = results
        self.calls = 0
        self.on_acquire: Callable[[], None] | None = None

    def acquire(self, ctx: AcquireContext) -> ProviderResult:
        self.calls += 1
        if self.on_acquire is not None:
            self.on_acquire()
        return self.results[min(self.calls, len(self.results)) - 1]


def _failure(source_id: SourceId) -> ProviderResult:
    return ProviderResult(errors=[NormalizedError(source_id=source_id, kind=ErrorKind.TIMEOUT, message="timed out")])


@pytest.fixture()
def codex_only() -> Settings:
    return Settings(refresh_interval_seconds=120, visible_providers=VisibleProviders(claude=False, codex=True))


def _poller(
    settings: Settings,
    provider: ScriptedProvider,
    tmp_path: Path,
    fixed_now: datetime,
    notifier: Callable[[NotificationEvent], None] | None = None,
) -> UsagePoller:
    def _factory(source_id: SourceId) -> ScriptedProvider:
        assert source_id == provider.source_id
        return provider

    return UsagePoller(
        settings,
        provider_factory=_factory,
        notifier=notifier,
        cache_path=tmp_path / "poller-cache.json",
        state_path=tmp_path / "poller-state.json",
        clock=lambda: fixed_now,
        random=lambda: 0.5,
        env=RuntimeEnv(),
    )


def test_refresh_notifies_once_and_persists_state(
    codex_only: Settings, tmp_path: Path, fixed_now: datetime, make_row: Callable[..., NormalizedRow]
) -> None:
    provider = ScriptedProvider(SourceId.CODEX, [ProviderResult(rows=[make_row(used_percent=81)])])
    events: list[NotificationEvent] = []
    poller = _poller(codex_only, provider, tmp_path, fixed_now, events.append)

    snapshot = poller.refresh()
    assert snapshot is not None
    assert poller.last_snapshot is snapshot
    assert [(event.level, event.reason) for event in events] == [(AlertLevel.WARNING, "transition")]
    assert load_notification_state(tmp_path / "poller-state.json")["codex:codex:5h"].level is AlertLevel.WARNING

    poller.refresh(force=True)
    assert provider.calls == 2
    assert len(events) == 1


def test_failures_drive_backoff_and_success_resets(
    codex_only: Settings, tmp_path: Path, fixed_now: datetime, make_row: Callable[..., NormalizedRow]
) -> None:
    provider = ScriptedProvider(
        SourceId.CODEX,
        [_failure(SourceId.CODEX), _failure(SourceId.CODEX), ProviderResult(rows=[make_row(used_percent=10)])],
    )
    poller = _poller(codex_only, provider, tmp_path, fixed_now)

    assert poller.next_delay() == 120
    poller.refresh(force=True)
    assert poller.consecutive_failures == 1
    assert poller.next_delay() == 60
    poller.refresh(force=True)
    assert poller.next_delay() == 120
    assert poller.consecutive_failures == 2
    poller.refresh(force=True)
    assert poller.consecutive_failures == 0
    assert poller.next_delay() == 120


def test_refresh_skipped_while_another_is_running(
    codex_only: Settings, tmp_path: Path, fixed_now: datetime, make_row: Callable[..., NormalizedRow]
) -> None:
    provider = ScriptedProvider(SourceId.CODEX, [ProviderResult(rows=[make_row()])])
    poller = _poller(codex_only, provider, tmp_path, fixed_now)
    nested: list[object] = []
    provider.on_acquire = lambda: nested.append(poller.refresh())

    assert poller.refresh() is not None
    assert nested == [None]
    assert provider.calls == 1


def test_notifier_failures_are_contained(
    codex_only: Settings, tmp_path: Path, fixed_now: datetime, make_row: Callable[..., NormalizedRow]
) -> None:
    def _explode(event: NotificationEvent) -> None:
        raise RuntimeError("display unavailable")

    provider = ScriptedProvider(SourceId.CODEX, [ProviderResult(rows=[make_row(used_percent=99)])])
    poller = _poller(codex_only, provider, tmp_path, fixed_now, _explode)

    assert poller.refresh() is not None
    assert poller.consecutive_failures == 0


def test_settings_reloaded_each_pass_when_not_pinned(
    tmp_path: Path, fixed_now: datetime, make_row: Callable[..., NormalizedRow]
) -> None:
    settings_path = tmp_path / "settings.json"
    settings_path.write_text('{"version": 1, "visibleProviders": {"claude": false, "codex": true}}', encoding="utf-8")
    provider = ScriptedProvider(SourceId.CODEX, [ProviderResult(rows=[make_row()])])
    poller = UsagePoller(
        settings_path=settings_path,
        provider_factory=lambda source_id: provider,
        cache_path=tmp_path / "cache.json",
        state_path=tmp_path / "state.json",
        clock=lambda: fixed_now,
        env=RuntimeEnv(),
    )

    settings_path.write_text(
        '{"version": 1, "refreshIntervalSeconds": 30, "visibleProviders": {"claude": false, "codex": true}}',
        encoding="utf-8",
    )
    poller.refresh()
    assert poller.settings.refresh_interval_seconds == 30
    assert poller.next_delay() == 30


def test_run_loops_until_stopped(
    codex_only: Settings, tmp_path: Path, fixed_now: datetime, make_row: Callable[..., NormalizedRow]
) -> None:
    stop_event = threading.Event()
    provider = ScriptedProvider(SourceId.CODEX, [ProviderResult(rows=[make_row()])])
    provider.on_acquire = stop_event.set
    poller = _poller(codex_only, provider, tmp_path, fixed_now)

    poller.run(stop_event)
    assert provider.calls == 1
    assert poller.last_snapshot is not None
