from datetime import datetime, timezone

from banhammer.backend.messages import format_end_time, kick_message, resolve_reason


def test_resolve_reason_defaults_blank_messages_per_mode() -> None:
    assert resolve_reason(None, admin=True) == "Administrative Ban"
    assert resolve_reason("   ", admin=False) == "Automatic Ban"
    assert resolve_reason("", admin=False, automatic_reason="Bot detected") == "Bot detected"


def test_resolve_reason_keeps_explicit_message() -> None:
    assert resolve_reason("spam", admin=True) == "spam"


def test_format_end_time_uses_month_day_year_24h() -> None:
    end = datetime(2026, 3, 7, 18, 5, 9, tzinfo=timezone.utc)

    assert format_end_time(end) == "03/07/2026 18:05:09"


def test_kick_message_with_and_without_end_time() -> None:
    end = datetime(2026, 12, 31, 23, 59, 0)

    assert kick_message("spam", None) == "spam"
    assert kick_message("spam", end) == "spam. Ends 12/31/2026 23:59:00"
