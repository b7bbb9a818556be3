from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

# Columns a store may overwrite on an existing account; identity and email are fixed.
MUTABLE_FIELDS = frozenset(
    {
        "password_hash",
        "first_name",
        "last_name",
        "is_email_verified",
        "email_verification_token",
        "reset_password_token",
        "reset_password_expires",
        "refresh_token_hash",
    }
)


@dataclass(slots=True)
class NewAccount:
    """Registration fields supplied before the store assigns identity and timestamps."""

    email: str
    password_hash: str
    first_name: str
    last_name: str
    email_verification_token: str | None = None


@dataclass(slots=True)
class Account:
    """Aggregate root holding a user's identity and credential state."""

    account_id: str
    email: str
    password_hash: str
    first_name: str
    last_name: str
    created_at: datetime
    updated_at: datetime
    is_email_verified: bool = False
    email_verification_token: str | None = None
    reset_password_token: str | None = None
    reset_password_expires: datetime | None = None
    refresh_token_hash: str | None = None

    @property
    def display_name(self) -> str:
        return self.first_name

    @property
    def has_active_session(self) -> bool:
        return self.refresh_token_hash is not None

    def has_valid_reset_token(self, now: datetime) -> bool:
        """Return ``True`` when a reset token is present and has not passed its expiry."""
        if self.reset_password_token is None or self.reset_password_expires is None:
            return False
        return self.reset_password_expires >= now

    def clear_reset_token(self) -> None:
        self.reset_password_token = None
        self.reset_password_expires = None
