"""Domain-level request contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class RegisterInput:
    """Validated inputs required to register a new account."""

    email: str
    password: str = field(repr=False)
    first_name: str
    last_name: str


@dataclass(slots=True)
class LoginInput:
    """Email/password pair presented at login."""

    email: str
    password: str = field(repr=False)


@dataclass(slots=True)
class PasswordResetInput:
    """Reset token plus the replacement password."""

    token: str = field(repr=False)
    new_password: str = field(repr=False)
