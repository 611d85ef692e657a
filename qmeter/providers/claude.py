from __future__ import annotations

import logging
import shlex
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from qmeter.parsers.claude_usage import (
    DEBUG_LINE_RE,
    ScreenParseResult,
    clean_screen_text,
    has_all_windows,
    parse_usage_from_screen,
)
from qmeter.providers.common import error_message, failure_result, is_missing_binary
from qmeter.providers.pty_session import PtySession
from qmeter_shared.enums import ErrorKind, SourceId
from qmeter_shared.schemas import AcquireContext, NormalizedError, ProviderResult
from qmeter_shared.timeutil import local_timezone_name

logger = logging.getLogger("qmeter.providers.claude")

INSTALL_HINT = "ensure `claude` is on PATH or set QMETER_CLAUDE_COMMAND"
LOGIN_HINT = "run `claude` and verify /usage is available and you are logged in"


class ScreenSession(Protocol):
    @property
    def eof(self) -> bool: ...

    def start(self) -> None: ...

    def pump(self, timeout: float) -> None: ...

    def write(self, text: str) -> None: ...

    def text(self) -> str: ...

    def close(self) -> None: ...


@dataclass(frozen=True, slots=True)
class ScrapeTimings:
    timeout_seconds: float = 25.0
    poll_interval_seconds: float = 0.3
    keystrokes: tuple[tuple[float, str], ...] = ((2.5, "/usage"), (4.0, "\r"))
    quit_keystrokes: tuple[tuple[float, str], ...] = ((0.0, "\x1b"), (0.3, "/exit"), (0.3, "\r"))
    kill_delay_seconds: float = 0.5


@dataclass(slots=True)
class _ScrapeOutcome:
    reason: str
    parsed: ScreenParseResult = field(default_factory=ScreenParseResult)
    screen: str = ""


class ClaudeProvider:
    source_id = SourceId.CLAUDE

    def __init__(
        self,
        command: str = "claude",
        timings: ScrapeTimings | None = None,
        session_factory: Callable[[Sequence[str]], ScreenSession] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.argv = shlex.split(command) or ["claude"]
        self.timings = timings or ScrapeTimings()
        self._session_factory = session_factory or PtySession
        self._clock = clock
        self._sleep = sleep

    def acquire(self, ctx: AcquireContext) -> ProviderResult:
        session = self._session_factory(self.argv)
        try:
            session.start()
        except OSError as exc:
            message = error_message(exc)
            kind = ErrorKind.NOT_INSTALLED if is_missing_binary(message) else ErrorKind.TTY_UNAVAILABLE
            logger.warning("claude session failed to start kind=%s", kind.value)
            return failure_result(self.source_id, kind, message, INSTALL_HINT)

        try:
            outcome = self._drive(session)
        finally:
            self._quit(session)

        errors = list(outcome.parsed.errors)
        rows = outcome.parsed.rows
        if outcome.reason == "timeout":
            timeout_error = NormalizedError(
                source_id=self.source_id,
                kind=ErrorKind.TIMEOUT,
                message=f"claude /usage timed out after {self.timings.timeout_seconds:g}s",
                actionable=LOGIN_HINT,
            )
            errors = [timeout_error] if not rows else [*errors, timeout_error]
        elif outcome.reason == "exited":
            exited_error = NormalizedError(
                source_id=self.source_id,
                kind=ErrorKind.ACQUIRE_FAILED,
                message="claude exited before the /usage screen was complete",
                actionable=LOGIN_HINT,
            )
            errors = [exited_error] if not rows else [*errors, exited_error]

        debug = None
        if ctx.debug:
            lines = [line.rstrip() for line in outcome.screen.split("\n") if DEBUG_LINE_RE.search(line)]
            debug = {
                "reason": outcome.reason,
                "systemTimeZone": local_timezone_name(),
                "extractedLines": "\n".join(lines[-50:]),
            }
        return ProviderResult(rows=rows, errors=errors, debug=debug)

    def _parse(self, session: ScreenSession) -> tuple[ScreenParseResult, str]:
        screen = clean_screen_text(session.text())
        return parse_usage_from_screen(screen), screen

    def _drive(self, session: ScreenSession) -> _ScrapeOutcome:
        timings = self.timings
        start = self._clock()
        pending = list(timings.keystrokes)
        next_poll = start + timings.poll_interval_seconds
        deadline = start + timings.timeout_seconds

        while True:
            now = self._clock()
            while pending and now - start >= pending[0][0]:
                session.write(pending.pop(0)[1])

            if now >= deadline:
                parsed, screen = self._parse(session)
                return _ScrapeOutcome("timeout", parsed, screen)

            if session.eof:
                parsed, screen = self._parse(session)
                reason = "success" if has_all_windows(parsed.rows) else "exited"
                return _ScrapeOutcome(reason, parsed, screen)

            wake = min(next_poll, deadline)
            if pending:
                wake = min(wake, start + pending[0][0])
            session.pump(max(0.0, wake - now))

            if self._clock() >= next_poll:
                next_poll += timings.poll_interval_seconds
                parsed, screen = self._parse(session)
                if has_all_windows(parsed.rows):
                    return _ScrapeOutcome("success", parsed, screen)

    def _quit(self, session: ScreenSession) -> None:
        try:
            for delay, keys in self.timings.quit_keystrokes:
                if delay > 0:
                    self._sleep(delay)
                session.write(keys)
            if self.timings.kill_delay_seconds > 0:
                self._sleep(self.timings.kill_delay_seconds)
        finally:
            session.close()
