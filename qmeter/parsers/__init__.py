"""Text parsers for rendered terminal output."""

from qmeter.parsers.claude_usage import clean_screen_text, parse_usage_from_screen

__all__ = ["clean_screen_text", "parse_usage_from_screen"]
