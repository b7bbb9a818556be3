"""Out-of-band notification records handed to the mail-dispatch collaborator."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .account import Account


class NotificationKind(str, Enum):
    verification = "verification"
    password_reset = "password_reset"


@dataclass(slots=True, frozen=True)
class Notification:
    """Message the transport layer forwards to the mail sender."""

    to: str
    kind: NotificationKind
    token: str = field(repr=False)
    display_name: str

    @classmethod
    def verification(cls, account: Account, token: str) -> "Notification":
        return cls(
            to=account.email,
            kind=NotificationKind.verification,
            token=token,
            display_name=account.display_name,
        )

    @classmethod
    def password_reset(cls, account: Account, token: str) -> "Notification":
        return cls(
            to=account.email,
            kind=NotificationKind.password_reset,
            token=token,
            display_name=account.display_name,
        )
