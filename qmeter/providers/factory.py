from __future__ import annotations

from collections.abc import Callable

from qmeter.config import RuntimeEnv, load_runtime_env
from qmeter.providers.base import Provider
from qmeter.providers.claude import ClaudeProvider
from qmeter.providers.codex import CodexProvider
from qmeter.providers.fixture import FixtureProvider
from qmeter_shared.enums import SourceId

ProviderFactory = Callable[[SourceId], Provider]


def build_provider(source_id: SourceId, env: RuntimeEnv | None = None) -> Provider:
    runtime = env or load_runtime_env()
    if runtime.fixture_mode:
        return FixtureProvider(source_id)
    if source_id == SourceId.CLAUDE:
        return ClaudeProvider(command=runtime.claude_command)
    return CodexProvider(command=runtime.codex_command)


def provider_factory_from_env(env: RuntimeEnv | None = None) -> ProviderFactory:
    runtime = env or load_runtime_env()

    def _factory(source_id: SourceId) -> Provider:
        return build_provider(source_id, runtime)

    return _factory
