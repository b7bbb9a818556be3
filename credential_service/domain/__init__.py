"""Account aggregate, error taxonomy and notification records."""

from .account import MUTABLE_FIELDS, Account, NewAccount
from .contracts import LoginInput, PasswordResetInput, RegisterInput
from .errors import (
    Acknowledgement,
    CredentialErrorKind,
    DuplicateEmailError,
    Failure,
    InvalidTokenError,
    Result,
    StoreUnavailableError,
    Success,
)
from .notifications import Notification, NotificationKind

__all__ = [
    "MUTABLE_FIELDS",
    "Account",
    "NewAccount",
    "LoginInput",
    "PasswordResetInput",
    "RegisterInput",
    "Acknowledgement",
    "CredentialErrorKind",
    "DuplicateEmailError",
    "Failure",
    "InvalidTokenError",
    "Result",
    "StoreUnavailableError",
    "Success",
    "Notification",
    "NotificationKind",
]
