"""Admin token checks for the ban API and the kick websocket."""

from __future__ import annotations

from dataclasses import dataclass
import hashlib
import hmac
import logging
import secrets

from .config import BackendSettings

logger = logging.getLogger(__name__)

ADMIN_TOKEN_BYTES = 32


def new_admin_token() -> str:
    """Return a fresh value suitable for BANHAMMER_ADMIN_TOKEN."""
    return secrets.token_urlsafe(ADMIN_TOKEN_BYTES)


def token_digest(token: str, server_salt: str) -> str:
    """HMAC-SHA256 of the token keyed with the server salt."""
    return hmac.new(server_salt.encode("utf-8"), token.encode("utf-8"), hashlib.sha256).hexdigest()


@dataclass(frozen=True)
class AdminTokenGuard:
    """Holds only the digest of the configured admin token.

    With no token configured the guard is open and lets every caller through.
    """

    server_salt: str
    expected_digest: str | None

    @classmethod
    def from_settings(cls, settings: BackendSettings) -> AdminTokenGuard:
        if not settings.admin_token:
            logger.warning(
                "BANHAMMER_ADMIN_TOKEN is not set; ban endpoints and the kick websocket accept any caller"
            )
            return cls(server_salt=settings.server_salt, expected_digest=None)
        return cls(
            server_salt=settings.server_salt,
            expected_digest=token_digest(settings.admin_token, settings.server_salt),
        )

    @property
    def is_open(self) -> bool:
        return self.expected_digest is None

    def allows(self, presented: str | None) -> bool:
        if self.expected_digest is None:
            return True
        if not presented:
            return False
        return hmac.compare_digest(token_digest(presented, self.server_salt), self.expected_digest)


if __name__ == "__main__":
    print(new_admin_token())
