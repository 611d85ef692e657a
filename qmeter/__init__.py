"""Local usage meter for Claude Code and Codex subscription limits."""

__version__ = "0.1.0"
