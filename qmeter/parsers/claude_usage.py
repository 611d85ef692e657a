from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, tzinfo

from qmeter_shared.enums import Confidence, ErrorKind, Provenance, SourceId
from qmeter_shared.schemas import NormalizedError, NormalizedRow
from qmeter_shared.timeutil import local_timezone_name, parse_local_reset_at

SESSION_WINDOW = "claude:session"
WEEK_WINDOW = "claude:week(all-models)"

SESSION_ANCHOR = re.compile(r"Current session", re.IGNORECASE)
WEEK_ANCHOR = re.compile(r"Current week \(all models\)", re.IGNORECASE)

PERCENT_SEARCH_CHARS = 600
RESET_SEARCH_CHARS = 1200

_CSI_RE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]")
_OSC_BEL_RE = re.compile(r"\x1b\][^\x07]*\x07")
_OSC_ST_RE = re.compile(r"\x1b\][^\x1b]*\x1b\\")
_PERCENT_RE = re.compile(r"(\d{1,3})%\s*used", re.IGNORECASE)
_RESET_RE = re.compile(r"Resets\s+([^\n]+?)(?:\s*\(([^)]+)\))?\s*(?:\n|$)", re.IGNORECASE)
DEBUG_LINE_RE = re.compile(r"(Current session|Current week \(all models\)|Resets\s+|%\s*used)", re.IGNORECASE)


@dataclass(slots=True)
class ResetLine:
    raw: str | None = None
    reset_at: datetime | None = None


@dataclass(slots=True)
class ScreenParseResult:
    rows: list[NormalizedRow] = field(default_factory=list)
    errors: list[NormalizedError] = field(default_factory=list)


def strip_ansi(text: str) -> str:
    text = _CSI_RE.sub("", text)
    text = _OSC_BEL_RE.sub("", text)
    return _OSC_ST_RE.sub("", text)


def normalize_whitespace(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = text.replace("\u00a0", " ")
    text = re.sub(r"[ \t]+", " ", text)
    return re.sub(r"\n{3,}", "\n\n", text)


def clean_screen_text(raw: str) -> str:
    return normalize_whitespace(strip_ansi(raw))


def parse_percent_near(text: str, anchor: re.Pattern[str]) -> int | None:
    match = anchor.search(text)
    if match is None:
        return None
    window = text[match.start() : match.start() + PERCENT_SEARCH_CHARS]
    found = _PERCENT_RE.search(window)
    if found is None:
        return None
    value = int(found.group(1))
    if value > 100:
        return None
    return value


def parse_reset_line_near(
    text: str,
    anchor: re.Pattern[str],
    now: datetime | None = None,
    system_tz: str | None = None,
    tz: tzinfo | None = None,
) -> ResetLine:
    """Find the ``Resets ...`` line after ``anchor``.

    A parenthesised zone label that differs from the host zone leaves
    ``reset_at`` unset; the raw line is still returned.
    """
    match = anchor.search(text)
    if match is None:
        return ResetLine()
    window = text[match.start() : match.start() + RESET_SEARCH_CHARS]
    found = _RESET_RE.search(window)
    if found is None:
        return ResetLine()

    raw = found.group(0).strip()
    body = (found.group(1) or "").strip()
    label = (found.group(2) or "").strip()
    host_zone = system_tz if system_tz is not None else local_timezone_name()
    if label and label != host_zone:
        return ResetLine(raw=raw)
    return ResetLine(raw=raw, reset_at=parse_local_reset_at(body, now=now, tz=tz))


def _usage_row(window: str, percent: int, reset: ResetLine) -> NormalizedRow:
    return NormalizedRow(
        source_id=SourceId.CLAUDE,
        window=window,
        used_percent=percent,
        reset_at=reset.reset_at,
        provenance=Provenance.PARSED,
        confidence=Confidence.MEDIUM,
        stale=False,
        notes=reset.raw,
    )


def parse_usage_from_screen(
    screen_text: str,
    now: datetime | None = None,
    system_tz: str | None = None,
    tz: tzinfo | None = None,
) -> ScreenParseResult:
    result = ScreenParseResult()
    for window, anchor in ((SESSION_WINDOW, SESSION_ANCHOR), (WEEK_WINDOW, WEEK_ANCHOR)):
        percent = parse_percent_near(screen_text, anchor)
        if percent is None:
            continue
        reset = parse_reset_line_near(screen_text, anchor, now=now, system_tz=system_tz, tz=tz)
        result.rows.append(_usage_row(window, percent, reset))

    if not result.rows:
        result.errors.append(
            NormalizedError(
                source_id=SourceId.CLAUDE,
                kind=ErrorKind.PARSE_FAILED,
                message="Failed to extract usage from /usage screen output",
                actionable="run `claude`, run /usage, and ensure you are logged in",
            )
        )
    return result


def has_all_windows(rows: list[NormalizedRow]) -> bool:
    windows = {row.window for row in rows}
    return SESSION_WINDOW in windows and WEEK_WINDOW in windows
