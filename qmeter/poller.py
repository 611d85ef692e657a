from __future__ import annotations

import logging
import random as _random
import threading
from collections.abc import Callable
from pathlib import Path

from qmeter.config import RuntimeEnv, Settings, load_settings
from qmeter.notification_store import load_notification_state, save_notification_state
from qmeter.output import window_title
from qmeter.providers.factory import ProviderFactory
from qmeter.runtime import Clock, CollectOptions, collect_snapshot, utc_now
from qmeter_core.backoff import DEFAULT_BACKOFF, BackoffOptions, compute_backoff_delay
from qmeter_core.models import NotificationEvent
from qmeter_core.notification_policy import evaluate_notification_policy
from qmeter_shared.schemas import NormalizedSnapshot

logger = logging.getLogger("qmeter.poller")

Notifier = Callable[[NotificationEvent], None]


def log_notifier(event: NotificationEvent) -> None:
    percent = round(event.row.used_percent or 0)
    logger.warning(
        "%s - %s: %s%% used (%s)",
        event.level.upper(),
        window_title(event.row.source_id.value, event.row.window),
        percent,
        event.reason,
    )


class UsagePoller:
    """Periodic refresh loop: collect, evaluate alerts, persist state, notify.

    Passes are serialized by a non-blocking lock; a refresh requested while
    another is running is skipped. Settings are re-read on every pass unless
    pinned at construction.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        settings_path: Path | None = None,
        provider_factory: ProviderFactory | None = None,
        notifier: Notifier | None = None,
        cache_path: Path | None = None,
        state_path: Path | None = None,
        backoff: BackoffOptions = DEFAULT_BACKOFF,
        clock: Clock | None = None,
        random: Callable[[], float] = _random.random,
        env: RuntimeEnv | None = None,
    ) -> None:
        self._pinned_settings = settings
        self.settings_path = settings_path
        self.settings = settings or load_settings(settings_path)
        self.provider_factory = provider_factory
        self.notifier = notifier or log_notifier
        self.cache_path = cache_path
        self.state_path = state_path
        self.backoff = backoff
        self.env = env
        self._clock = clock or utc_now
        self._random = random
        self._lock = threading.Lock()
        self.last_snapshot: NormalizedSnapshot | None = None
        self.consecutive_failures = 0

    def _deliver(self, events: list[NotificationEvent]) -> None:
        for event in events:
            try:
                self.notifier(event)
            except Exception:
                logger.exception("notification delivery failed: %s", event.event_key)

    def _refresh_locked(self, force: bool) -> NormalizedSnapshot:
        if self._pinned_settings is None:
            self.settings = load_settings(self.settings_path)
        settings = self.settings

        prev_state = load_notification_state(self.state_path)
        result = collect_snapshot(
            CollectOptions(sources=settings.selected_sources(), refresh=force),
            self.provider_factory,
            cache_path=self.cache_path,
            clock=self._clock,
            env=self.env,
        )
        snapshot = result.snapshot
        self.last_snapshot = snapshot

        evaluation = evaluate_notification_policy(
            snapshot.rows,
            prev_state,
            settings.policy_config(),
            self._clock(),
        )
        try:
            save_notification_state(evaluation.next_state, self.state_path)
        except OSError:
            logger.exception("failed to persist notification state")
        self._deliver(evaluation.events)
        return snapshot

    def refresh(self, force: bool = False) -> NormalizedSnapshot | None:
        if not self._lock.acquire(blocking=False):
            logger.info("refresh already in progress, skipping")
            return None
        try:
            try:
                snapshot = self._refresh_locked(force)
            except Exception:
                logger.exception("refresh cycle failed")
                self.consecutive_failures += 1
                return None
            if snapshot.rows:
                self.consecutive_failures = 0
            else:
                self.consecutive_failures += 1
            logger.info(
                "cycle summary rows=%s errors=%s failures=%s",
                len(snapshot.rows),
                len(snapshot.errors),
                self.consecutive_failures,
            )
            return snapshot
        finally:
            self._lock.release()

    def next_delay(self) -> float:
        if self.consecutive_failures == 0:
            return float(self.settings.refresh_interval_seconds)
        return compute_backoff_delay(self.consecutive_failures, self.backoff, self._random)

    def run(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            self.refresh()
            delay = self.next_delay()
            logger.debug("next refresh in %.1fs", delay)
            stop_event.wait(timeout=delay)
