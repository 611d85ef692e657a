from __future__ import annotations

from datetime import UTC, datetime

from qmeter_shared.enums import Confidence, Provenance, SourceId
from qmeter_shared.schemas import AcquireContext, NormalizedRow, ProviderResult

FIXTURE_RESET_AT = datetime(2026, 2, 24, tzinfo=UTC)

_FIXTURE_WINDOWS: dict[SourceId, tuple[tuple[str, int], ...]] = {
    SourceId.CLAUDE: (("claude:session", 79), ("claude:week(all-models)", 22)),
    SourceId.CODEX: (("codex:5h", 81), ("codex:weekly", 30)),
}


class FixtureProvider:
    """Deterministic stand-in used for demos and screenshots."""

    def __init__(self, source_id: SourceId) -> None:
        self.source_id = source_id

    def acquire(self, ctx: AcquireContext) -> ProviderResult:
        structured = self.source_id == SourceId.CODEX
        rows = [
            NormalizedRow(
                source_id=self.source_id,
                window=window,
                used_percent=percent,
                reset_at=FIXTURE_RESET_AT,
                provenance=Provenance.STRUCTURED if structured else Provenance.PARSED,
                confidence=Confidence.HIGH if structured else Confidence.MEDIUM,
                stale=False,
                notes="fixture",
            )
            for window, percent in _FIXTURE_WINDOWS[self.source_id]
        ]
        return ProviderResult(rows=rows, debug={"fixture": True} if ctx.debug else None)
