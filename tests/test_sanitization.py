from __future__ import annotations

from qmeter_shared.enums import ErrorKind, SourceId
from qmeter_shared.sanitization import REDACTED, sanitize_jsonable, sanitize_text
from qmeter_shared.schemas import NormalizedError, ProviderResult


def test_sanitize_text_redacts_tokens_and_control_chars() -> None:
    text = sanitize_text("auth failed: Bearer abcdefghijklmnop1234\x07 token=xyz")
    assert "abcdefghijklmnop1234" not in text
    assert "xyz" not in text
    assert "\x07" not in text


def test_sanitize_text_strips_terminal_escapes() -> None:
    assert sanitize_text("\x1b[31merror:\x1b[0m not logged in\r") == "error: not logged in\r"


def test_sanitize_jsonable_redacts_secret_keys() -> None:
    cleaned = sanitize_jsonable({"apiKey": "k", "nested": [{"password": "p"}], "count": 3})
    assert cleaned == {"apiKey": REDACTED, "nested": [{"password": REDACTED}], "count": 3}


def test_error_messages_and_debug_payloads_are_sanitized() -> None:
    error = NormalizedError(
        source_id=SourceId.CODEX,
        kind=ErrorKind.AUTH_REQUIRED,
        message="rejected key sk-proj-0123456789abcdefghij",
    )
    assert "sk-proj" not in error.message

    result = ProviderResult(debug={"token": "secret-value", "reason": "timeout"})
    assert result.debug == {"token": REDACTED, "reason": "timeout"}
