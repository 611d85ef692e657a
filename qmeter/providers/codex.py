from __future__ import annotations

import logging
import os
import shlex
import shutil
import time
from collections.abc import Callable, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, wait
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from qmeter import __version__
from qmeter.providers.common import classify_failure, error_message, failure_result
from qmeter.providers.rpc import JsonRpcProcess, RpcError
from qmeter_shared.enums import Confidence, ErrorKind, Provenance, SourceId
from qmeter_shared.schemas import AcquireContext, NormalizedRow, ProviderResult
from qmeter_shared.timeutil import iso_from_epoch_seconds

logger = logging.getLogger("qmeter.providers.codex")

INITIALIZE_ID = 1
RATE_LIMITS_ID = 2
RATE_LIMITS_METHOD = "account/rateLimits/read"
DEFAULT_TIMEOUT_SECONDS = 10.0

LOGIN_HINT = "run `codex` once and ensure you are logged in"
_HINTS = {
    ErrorKind.NOT_INSTALLED: "install `codex` and ensure it is on PATH or set QMETER_CODEX_COMMAND",
    ErrorKind.OFFLINE: "check your network connection and retry",
}


class AppServerModel(BaseModel):
    model_config = ConfigDict(extra="ignore", alias_generator=to_camel, populate_by_name=True)


class RateLimitWindow(AppServerModel):
    used_percent: int = Field(ge=0, le=100)
    window_duration_mins: int | None = None
    resets_at: int | None = None


class Credits(AppServerModel):
    has_credits: bool
    unlimited: bool
    balance: str | None = None


class RateLimitSnapshot(AppServerModel):
    limit_id: str | None = None
    limit_name: str | None = None
    plan_type: str | None = None
    primary: RateLimitWindow | None = None
    secondary: RateLimitWindow | None = None
    credits: Credits | None = None


class RateLimitsResponse(AppServerModel):
    rate_limits: RateLimitSnapshot
    rate_limits_by_limit_id: dict[str, RateLimitSnapshot] | None = None


class AppServerError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class SpawnSpec:
    args: list[str] | str
    shell: bool
    description: str


def format_window(mins: int | None) -> str:
    if not mins or mins <= 0:
        return "unknown"
    if 295 <= mins <= 305:
        return "5h"
    if 10_000 <= mins <= 10_100:
        return "weekly"
    if mins % (60 * 24) == 0:
        return f"{mins // (60 * 24)}d"
    if mins % 60 == 0:
        return f"{mins // 60}h"
    return f"{mins}m"


def snapshot_to_rows(snapshot: RateLimitSnapshot) -> list[NormalizedRow]:
    rows: list[NormalizedRow] = []
    for window in (snapshot.primary, snapshot.secondary):
        if window is None:
            continue
        rows.append(
            NormalizedRow(
                source_id=SourceId.CODEX,
                window=f"codex:{format_window(window.window_duration_mins)}",
                used_percent=window.used_percent,
                reset_at=iso_from_epoch_seconds(window.resets_at),
                provenance=Provenance.STRUCTURED,
                confidence=Confidence.HIGH,
                stale=False,
            )
        )
    return rows


def select_snapshot(response: RateLimitsResponse, limit_id: str = "codex") -> RateLimitSnapshot:
    by_id = response.rate_limits_by_limit_id or {}
    return by_id.get(limit_id) or response.rate_limits


def build_spawn_spec(command: str, args: Sequence[str] = ("app-server",)) -> SpawnSpec:
    """Resolve how to launch ``command``; login shells pick up user PATH changes."""
    if os.name == "nt":
        win_command = "codex.cmd" if command == "codex" else command
        line = " ".join([win_command, *args])
        return SpawnSpec(args=line, shell=True, description=f"{line} (shell=true)")

    bash = shutil.which("bash")
    if bash:
        line = " ".join(shlex.quote(part) for part in [*shlex.split(command), *args])
        return SpawnSpec(args=[bash, "-lc", line], shell=False, description=f"bash -lc {line}")

    argv = [*shlex.split(command), *args]
    return SpawnSpec(args=argv, shell=False, description=" ".join(argv))


def _await_rate_limits(initialize: Future[Any], rate_limits: Future[Any], deadline: float, timeout: float) -> Any:
    pending: set[Future[Any]] = {initialize, rate_limits}
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise AppServerError(f"codex app-server timed out after {timeout:g}s")
        done, _ = wait(pending, timeout=remaining, return_when=FIRST_COMPLETED)
        if initialize in done:
            exc = initialize.exception()
            if exc is not None:
                raise AppServerError(f"codex initialize failed: {error_message(exc)}") from exc
            pending.discard(initialize)
        if rate_limits in done:
            exc = rate_limits.exception()
            if exc is not None:
                raise AppServerError(f"codex {RATE_LIMITS_METHOD} failed: {error_message(exc)}") from exc
            return rate_limits.result()


class CodexProvider:
    source_id = SourceId.CODEX

    def __init__(
        self,
        command: str = "codex",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        spawn_spec: SpawnSpec | None = None,
        client_factory: Callable[[SpawnSpec], JsonRpcProcess] | None = None,
    ) -> None:
        self.command = command
        self.timeout_seconds = timeout_seconds
        self.spawn_spec = spawn_spec or build_spawn_spec(command)
        self._client_factory = client_factory or (lambda spec: JsonRpcProcess(spec.args, shell=spec.shell))

    def _fetch(self) -> Any:
        client = self._client_factory(self.spawn_spec)
        deadline = time.monotonic() + self.timeout_seconds
        client.start()
        try:
            initialize = client.request(
                "initialize",
                INITIALIZE_ID,
                {"clientInfo": {"name": "qmeter", "title": "QMeter", "version": __version__}},
            )
            client.notify("initialized", {})
            rate_limits = client.request(RATE_LIMITS_METHOD, RATE_LIMITS_ID)
            return _await_rate_limits(initialize, rate_limits, deadline, self.timeout_seconds)
        finally:
            client.close()

    def acquire(self, ctx: AcquireContext) -> ProviderResult:
        try:
            result = self._fetch()
        except (OSError, AppServerError, RpcError) as exc:
            message = error_message(exc)
            kind = classify_failure(message)
            logger.warning("codex acquisition failed kind=%s", kind.value)
            return failure_result(self.source_id, kind, message, _HINTS.get(kind, LOGIN_HINT))

        try:
            response = RateLimitsResponse.model_validate(result)
        except ValidationError as exc:
            return failure_result(
                self.source_id,
                ErrorKind.INVALID_RESPONSE,
                f"codex {RATE_LIMITS_METHOD} returned an unexpected shape ({exc.error_count()} issues)",
                "update `codex` to a version that supports app-server rate limits",
            )

        snapshot = select_snapshot(response)
        debug = None
        if ctx.debug:
            debug = {
                "spawnCommand": self.spawn_spec.description,
                "limitId": snapshot.limit_id,
                "limitName": snapshot.limit_name,
                "planType": snapshot.plan_type,
                "hadRateLimitsByLimitId": response.rate_limits_by_limit_id is not None,
            }
        return ProviderResult(rows=snapshot_to_rows(snapshot), debug=debug)
