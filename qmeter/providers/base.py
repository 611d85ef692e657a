from __future__ import annotations

from typing import Protocol

from qmeter_shared.enums import SourceId
from qmeter_shared.schemas import AcquireContext, ProviderResult


class Provider(Protocol):
    source_id: SourceId

    def acquire(self, ctx: AcquireContext) -> ProviderResult:
        """Acquire current usage rows for one source within a bounded time budget."""
