"""Configuration helpers for backend runtime."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

DEFAULT_ADMIN_REASON = "Administrative Ban"
DEFAULT_AUTOMATIC_REASON = "Automatic Ban"


@dataclass(frozen=True)
class BackendSettings:
    server_salt: str
    database_url: str | None
    host: str
    port: int
    admin_token: str | None = None
    admin_reason: str = DEFAULT_ADMIN_REASON
    automatic_reason: str = DEFAULT_AUTOMATIC_REASON
    log_level: str = "INFO"


def load_settings() -> BackendSettings:
    port_raw = os.getenv("BANHAMMER_PORT", "8000")
    return BackendSettings(
        server_salt=os.getenv("BANHAMMER_SERVER_SALT", "dev-salt"),
        database_url=os.getenv("BANHAMMER_DATABASE_URL"),
        host=os.getenv("BANHAMMER_HOST", "127.0.0.1"),
        port=int(port_raw),
        admin_token=os.getenv("BANHAMMER_ADMIN_TOKEN") or None,
        admin_reason=os.getenv("BANHAMMER_ADMIN_REASON", DEFAULT_ADMIN_REASON),
        automatic_reason=os.getenv("BANHAMMER_AUTOMATIC_REASON", DEFAULT_AUTOMATIC_REASON),
        log_level=os.getenv("BANHAMMER_LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
