from __future__ import annotations

import re
from datetime import datetime

from qmeter_shared.schemas import NormalizedRow, NormalizedSnapshot

TABLE_COLUMNS = (("PROV", 6), ("WINDOW", 16), ("USAGE", 10), ("RESET_AT", 25), ("META", 18))
BAR_WIDTH = 32

_WINDOW_TITLES = {
    ("claude", "claude:session"): "Claude Session limit",
    ("claude", "claude:week(all-models)"): "Claude Week limit",
    ("codex", "codex:5h"): "Codex Session limit",
    ("codex", "codex:weekly"): "Codex Week limit",
}
_RESETS_PREFIX_RE = re.compile(r"^Resets\s+", re.IGNORECASE)


def window_title(source: str, window: str) -> str:
    return _WINDOW_TITLES.get((source, window), window)


def _clamp_text(text: str, width: int) -> str:
    if len(text) <= width:
        return text
    if width <= 1:
        return text[:width]
    return text[: width - 1] + "…"


def _iso(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


def _meta(row: NormalizedRow) -> str:
    meta = f"{row.provenance.value}/{row.confidence.value}"
    return f"{meta}/stale" if row.stale else meta


def _usage(row: NormalizedRow) -> str:
    if row.used_percent is not None:
        return f"{round(row.used_percent)}%"
    if row.used is not None and row.limit is not None:
        return f"{row.used:g}/{row.limit:g}"
    return "?"


def make_bar(percent: float, width: int = BAR_WIDTH) -> str:
    clamped = max(0, min(100, round(percent)))
    filled = round(clamped / 100 * width)
    return "█" * filled + "░" * (width - filled)


def _reset_label(row: NormalizedRow) -> str:
    if row.reset_at is not None:
        return f"Resets {row.reset_at.astimezone().strftime('%b %d, %Y %H:%M')}"
    if row.notes:
        return f"Resets {_RESETS_PREFIX_RE.sub('', row.notes)}"
    return "Resets unknown"


def render_errors(snapshot: NormalizedSnapshot) -> list[str]:
    if not snapshot.errors:
        return []
    lines = ["", "Errors:"]
    for error in snapshot.errors:
        action = f" (next: {error.actionable})" if error.actionable else ""
        lines.append(f"- {error.source_id.value}: {error.kind.value}: {error.message}{action}")
    return lines


def render_table(snapshot: NormalizedSnapshot) -> str:
    header = " ".join(name.ljust(width) for name, width in TABLE_COLUMNS)
    lines = [header, "-" * len(header)]
    if not snapshot.rows:
        lines.append("(no rows)")
    for row in snapshot.rows:
        cells = (
            row.source_id.value,
            row.window,
            _usage(row),
            _iso(row.reset_at) if row.reset_at else "?",
            _meta(row),
        )
        lines.append(
            " ".join(_clamp_text(cell, width).ljust(width) for cell, (_, width) in zip(cells, TABLE_COLUMNS))
        )
    lines.extend(render_errors(snapshot))
    return "\n".join(lines)


def render_graph(snapshot: NormalizedSnapshot) -> str:
    lines = [f"Usage Snapshot @ {_iso(snapshot.fetched_at)}", ""]
    if not snapshot.rows:
        lines.append("(no rows)")
    for row in snapshot.rows:
        lines.append(window_title(row.source_id.value, row.window))
        if row.used_percent is not None:
            lines.append(f"  {make_bar(row.used_percent)}  {round(row.used_percent)}% used")
        else:
            usage = _usage(row)
            lines.append(f"  {'unknown' if usage == '?' else usage} used")
        lines.append(f"  {_reset_label(row)}")
        lines.append(f"  Source {_meta(row)}")
        lines.append("")
    while lines and lines[-1] == "":
        lines.pop()
    lines.extend(render_errors(snapshot))
    return "\n".join(lines)
