from qmeter.providers.base import Provider
from qmeter.providers.claude import ClaudeProvider
from qmeter.providers.codex import CodexProvider
from qmeter.providers.fixture import FixtureProvider

__all__ = [
    "Provider",
    "ClaudeProvider",
    "CodexProvider",
    "FixtureProvider",
]
