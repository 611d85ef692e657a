from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

from qmeter.parsers.claude_usage import (
    SESSION_WINDOW,
    WEEK_WINDOW,
    clean_screen_text,
    has_all_windows,
    parse_usage_from_screen,
    strip_ansi,
)
from qmeter_shared.enums import Confidence, ErrorKind, Provenance

KST = timezone(timedelta(hours=9), "KST")
NOW = datetime(2026, 2, 20, 1, 0, tzinfo=UTC)

SCREEN = """
 Settings:  Status   Config   Usage

 Current session
 ███████████████████████████████████████████▌      90% used
 Resets 3am (Asia/Seoul)

 Current week (all models)
 ██████████▌                                       21% used
 Resets Feb 28, 10am (Asia/Seoul)
"""


def test_extracts_both_windows() -> None:
    result = parse_usage_from_screen(SCREEN, now=NOW, system_tz="Asia/Seoul", tz=KST)

    assert result.errors == []
    assert [(row.window, row.used_percent) for row in result.rows] == [(SESSION_WINDOW, 90), (WEEK_WINDOW, 21)]
    assert all(row.provenance == Provenance.PARSED for row in result.rows)
    assert all(row.confidence == Confidence.MEDIUM for row in result.rows)
    assert has_all_windows(result.rows)


def test_reset_times_resolve_in_local_zone() -> None:
    result = parse_usage_from_screen(SCREEN, now=NOW, system_tz="Asia/Seoul", tz=KST)
    session, week = result.rows

    # 01:00 UTC is 10:00 KST, so 3am has passed and rolls to the next day.
    assert session.reset_at == datetime(2026, 2, 20, 18, 0, tzinfo=UTC)
    assert week.reset_at == datetime(2026, 2, 28, 1, 0, tzinfo=UTC)
    assert session.notes == "Resets 3am (Asia/Seoul)"


def test_mismatched_zone_label_keeps_raw_line_only() -> None:
    result = parse_usage_from_screen(SCREEN, now=NOW, system_tz="Europe/Berlin", tz=KST)

    assert [row.used_percent for row in result.rows] == [90, 21]
    assert all(row.reset_at is None for row in result.rows)
    assert result.rows[1].notes == "Resets Feb 28, 10am (Asia/Seoul)"


def test_reset_without_label_uses_local_zone() -> None:
    screen = "Current session\n90% used\nResets 3am\n\nCurrent week (all models)\n21% used\nResets Feb 28, 10am\n"
    result = parse_usage_from_screen(screen, now=NOW, system_tz="UTC", tz=UTC)

    assert len(result.rows) == 2
    assert result.errors == []
    assert result.rows[0].reset_at == datetime(2026, 2, 20, 3, 0, tzinfo=UTC)
    assert result.rows[1].reset_at == datetime(2026, 2, 28, 10, 0, tzinfo=UTC)


def test_missing_headings_is_a_single_parse_failure() -> None:
    result = parse_usage_from_screen("Welcome to Claude Code\n> ", now=NOW, system_tz="UTC", tz=UTC)

    assert result.rows == []
    assert len(result.errors) == 1
    assert result.errors[0].kind == ErrorKind.PARSE_FAILED


def test_partial_screen_yields_partial_rows() -> None:
    result = parse_usage_from_screen("Current session\n 12% used\n", now=NOW, system_tz="UTC", tz=UTC)

    assert [row.window for row in result.rows] == [SESSION_WINDOW]
    assert result.rows[0].reset_at is None
    assert not has_all_windows(result.rows)


def test_percent_out_of_range_is_ignored() -> None:
    result = parse_usage_from_screen("Current session\n 250% used\n", now=NOW, system_tz="UTC", tz=UTC)
    assert result.rows == []


def test_clean_screen_text_strips_escape_sequences() -> None:
    raw = "\x1b[2J\x1b[1;1H\x1b]0;claude\x07Current session\r\n\x1b[32m45%\x1b[0m used"
    assert strip_ansi("\x1b[31mred\x1b[0m") == "red"
    assert clean_screen_text(raw) == "Current session\n45% used"
