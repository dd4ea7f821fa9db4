"""Ban reason defaults and disconnect message formatting."""

from __future__ import annotations

from datetime import datetime

from .config import DEFAULT_ADMIN_REASON, DEFAULT_AUTOMATIC_REASON

END_TIME_FORMAT = "%m/%d/%Y %H:%M:%S"


def resolve_reason(
    message: str | None,
    admin: bool,
    admin_reason: str = DEFAULT_ADMIN_REASON,
    automatic_reason: str = DEFAULT_AUTOMATIC_REASON,
) -> str:
    """Return ``message`` unless it is blank, else the default for the issuing mode."""
    if message is None or message.strip() == "":
        return admin_reason if admin else automatic_reason
    return message


def format_end_time(end_time: datetime) -> str:
    return end_time.strftime(END_TIME_FORMAT)


def kick_message(reason: str, end_time: datetime | None) -> str:
    if end_time is None:
        return reason
    return f"{reason}. Ends {format_end_time(end_time)}"
