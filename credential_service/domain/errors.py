"""Error taxonomy and typed operation results for credential workflows."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class CredentialErrorKind(str, Enum):
    duplicate_account = "duplicate_account"
    invalid_credentials = "invalid_credentials"
    email_not_verified = "email_not_verified"
    account_not_found = "account_not_found"
    invalid_or_expired_token = "invalid_or_expired_token"


@dataclass(slots=True, frozen=True)
class Success(Generic[T]):
    """Successful outcome wrapping the operation's value."""

    value: T


@dataclass(slots=True, frozen=True)
class Failure:
    """Rejected outcome identifying exactly which taxonomy kind occurred."""

    kind: CredentialErrorKind
    message: str


Result = Union[Success[T], Failure]


@dataclass(slots=True, frozen=True)
class Acknowledgement:
    message: str


class StoreUnavailableError(RuntimeError):
    """Raised when the account store backend cannot serve a request."""


class DuplicateEmailError(Exception):
    """Raised by an account store when an insert collides on email."""

    def __init__(self, email: str) -> None:
        super().__init__("email already registered")
        self.email = email


class InvalidTokenError(Exception):
    """Raised by a token signer when a token is malformed, forged, expired or of the wrong type."""
