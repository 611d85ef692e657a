from __future__ import annotations

from collections.abc import Sequence

from qmeter.providers.claude import ClaudeProvider, ScrapeTimings
from qmeter_shared.enums import ErrorKind, SourceId
from qmeter_shared.schemas import AcquireContext

USAGE_SCREEN = (
    "\x1b[1mCurrent session\x1b[0m\r\n"
    "  ████▌ 90% used\r\n"
    "  Resets 3am\r\n\r\n"
    "\x1b[1mCurrent week (all models)\x1b[0m\r\n"
    "  █▌ 21% used\r\n"
    "  Resets Feb 28, 10am\r\n"
)
SESSION_ONLY_SCREEN = "Current session\r\n  33% used\r\n"


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class FakeSession:
    def __init__(
        self,
        clock: FakeClock,
        screen: str = USAGE_SCREEN,
        *,
        exit_after_render: bool = False,
        start_error: OSError | None = None,
    ) -> None:
        self.clock = clock
        self.screen = screen
        self.exit_after_render = exit_after_render
        self.start_error = start_error
        self.writes: list[tuple[float, str]] = []
        self.buffer = "\x1b[?25l Welcome to Claude Code\r\n> "
        self.rendered = False
        self.closed = False
        self._eof = False

    @property
    def eof(self) -> bool:
        return self._eof

    def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error

    def pump(self, timeout: float) -> None:
        self.clock.now += max(timeout, 0.0)

    def write(self, text: str) -> None:
        self.writes.append((self.clock.now, text))
        sent = [keys for _, keys in self.writes]
        if text == "\r" and "/usage" in sent and not self.rendered:
            self.rendered = True
            self.buffer += self.screen
            if self.exit_after_render:
                self._eof = True

    def text(self) -> str:
        return self.buffer

    def close(self) -> None:
        self.closed = True


def _provider(session: FakeSession, clock: FakeClock, timings: ScrapeTimings | None = None) -> ClaudeProvider:
    def _factory(argv: Sequence[str]) -> FakeSession:
        assert argv == ["claude"]
        return session

    return ClaudeProvider(timings=timings, session_factory=_factory, clock=clock, sleep=lambda seconds: None)


def test_scrape_returns_both_windows_after_keystrokes() -> None:
    clock = FakeClock()
    session = FakeSession(clock)
    result = _provider(session, clock).acquire(AcquireContext(debug=True))

    assert result.errors == []
    assert [(row.window, row.used_percent) for row in result.rows] == [
        ("claude:session", 90),
        ("claude:week(all-models)", 21),
    ]
    assert all(row.source_id == SourceId.CLAUDE for row in result.rows)
    assert result.debug is not None
    assert result.debug["reason"] == "success"
    assert "90% used" in result.debug["extractedLines"]


def test_keystrokes_follow_fixed_schedule_then_quit_sequence() -> None:
    clock = FakeClock()
    session = FakeSession(clock)
    _provider(session, clock).acquire(AcquireContext())

    keys = [text for _, text in session.writes]
    assert keys == ["/usage", "\r", "\x1b", "/exit", "\r"]
    usage_at, enter_at = session.writes[0][0], session.writes[1][0]
    assert usage_at >= 2.5
    assert enter_at >= 4.0
    assert session.closed


def test_timeout_without_rows_reports_only_timeout() -> None:
    clock = FakeClock()
    session = FakeSession(clock, screen="Loading...\r\n")
    timings = ScrapeTimings(timeout_seconds=6.0)
    result = _provider(session, clock, timings).acquire(AcquireContext())

    assert result.rows == []
    assert [error.kind for error in result.errors] == [ErrorKind.TIMEOUT]
    assert session.closed


def test_timeout_with_partial_rows_keeps_rows() -> None:
    clock = FakeClock()
    session = FakeSession(clock, screen=SESSION_ONLY_SCREEN)
    timings = ScrapeTimings(timeout_seconds=6.0)
    result = _provider(session, clock, timings).acquire(AcquireContext())

    assert [row.used_percent for row in result.rows] == [33]
    assert [error.kind for error in result.errors] == [ErrorKind.TIMEOUT]


def test_timeout_fires_when_clock_reaches_deadline_exactly() -> None:
    clock = FakeClock()
    session = FakeSession(clock, screen="Loading...\r\n")
    timings = ScrapeTimings(timeout_seconds=5.0, poll_interval_seconds=1.0)
    result = _provider(session, clock, timings).acquire(AcquireContext())

    assert clock.now == 5.0
    assert [error.kind for error in result.errors] == [ErrorKind.TIMEOUT]


def test_early_exit_with_complete_screen_is_success() -> None:
    clock = FakeClock()
    session = FakeSession(clock, exit_after_render=True)
    result = _provider(session, clock).acquire(AcquireContext())

    assert len(result.rows) == 2
    assert result.errors == []


def test_early_exit_without_usage_is_acquire_failure() -> None:
    clock = FakeClock()
    session = FakeSession(clock, screen="Please log in\r\n", exit_after_render=True)
    result = _provider(session, clock).acquire(AcquireContext())

    assert result.rows == []
    assert [error.kind for error in result.errors] == [ErrorKind.ACQUIRE_FAILED]


def test_missing_binary_is_not_installed() -> None:
    clock = FakeClock()
    session = FakeSession(clock, start_error=FileNotFoundError(2, "No such file or directory"))
    result = _provider(session, clock).acquire(AcquireContext())

    assert [error.kind for error in result.errors] == [ErrorKind.NOT_INSTALLED]
    assert session.writes == []


def test_pty_failure_is_tty_unavailable() -> None:
    clock = FakeClock()
    session = FakeSession(clock, start_error=OSError("out of pty devices"))
    result = _provider(session, clock).acquire(AcquireContext())

    assert [error.kind for error in result.errors] == [ErrorKind.TTY_UNAVAILABLE]


def test_command_override_is_split_into_argv() -> None:
    clock = FakeClock()
    session = FakeSession(clock)
    provider = ClaudeProvider(
        command="/opt/claude --model sonnet",
        session_factory=lambda argv: session,
        clock=clock,
        sleep=lambda seconds: None,
    )
    assert provider.argv == ["/opt/claude", "--model", "sonnet"]
