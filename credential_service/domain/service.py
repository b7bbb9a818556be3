"""Credential manager orchestrating account state transitions and token issuance."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import hmac
import logging
from typing import Callable, Protocol

from .account import Account, NewAccount
from .contracts import LoginInput, PasswordResetInput, RegisterInput
from .errors import (
    Acknowledgement,
    CredentialErrorKind,
    DuplicateEmailError,
    Failure,
    InvalidTokenError,
    Result,
    Success,
)
from .notifications import Notification
from ..repository import AccountStore
from ..security.tokens import REFRESH_TOKEN_TYPE, TokenBundle, hash_refresh_token

logger = logging.getLogger(__name__)

_INVALID_CREDENTIALS = "invalid credentials"
_INVALID_TOKEN = "invalid or expired token"
_SESSION_FIELDS = ("refresh_token_hash",)
_RESET_FIELDS = ("reset_password_token", "reset_password_expires")


class SecretHasher(Protocol):
    def hash(self, password: str) -> str: ...

    def verify(self, password: str, password_hash: str) -> bool: ...

    def verify_dummy(self, password: str) -> bool: ...


class TokenSigner(Protocol):
    def opaque_token(self) -> str: ...

    def issue_session(self, *, subject: str, email: str) -> TokenBundle: ...

    def decode(self, token: str, *, token_type: str = ...) -> dict: ...


@dataclass(slots=True)
class Registration:
    """Outcome of a successful registration."""

    account: Account
    tokens: TokenBundle
    email_verification_token: str = field(repr=False)
    notification: Notification


@dataclass(slots=True)
class PasswordResetRequest:
    """Reset token issued for an account along with its mail notification."""

    account: Account
    token: str = field(repr=False)
    expires_at: datetime
    notification: Notification


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialManager:
    """Owns every security-relevant transition of an account."""

    def __init__(
        self,
        store: AccountStore,
        hasher: SecretHasher,
        signer: TokenSigner,
        *,
        reset_token_ttl: timedelta = timedelta(hours=1),
        revoke_sessions_on_password_reset: bool = True,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Store the collaborators used to persist accounts and mint credentials."""
        self._store = store
        self._hasher = hasher
        self._signer = signer
        self._reset_token_ttl = reset_token_ttl
        self._revoke_on_reset = revoke_sessions_on_password_reset
        self._clock = clock

    def register(self, payload: RegisterInput) -> Result[Registration]:
        """Create an unverified account and open its first session.

        The returned :class:`Registration` carries the verification
        notification; forwarding it to the mail sender is the caller's job.
        """
        if self._store.get_by_email(payload.email) is not None:
            logger.info("registration rejected: email already registered")
            return Failure(CredentialErrorKind.duplicate_account, "email already registered")

        verification_token = self._signer.opaque_token()
        draft = NewAccount(
            email=payload.email,
            password_hash=self._hasher.hash(payload.password),
            first_name=payload.first_name,
            last_name=payload.last_name,
            email_verification_token=verification_token,
        )
        try:
            account = self._store.create(draft)
        except DuplicateEmailError:
            # lost a race with a concurrent registration for the same email
            logger.info("registration rejected on insert: email already registered")
            return Failure(CredentialErrorKind.duplicate_account, "email already registered")

        tokens = self._open_session(account)
        account = self._store.save(account, fields=_SESSION_FIELDS)
        logger.info("account %s registered", account.account_id)
        return Success(
            Registration(
                account=account,
                tokens=tokens,
                email_verification_token=verification_token,
                notification=Notification.verification(account, verification_token),
            )
        )

    def login(self, payload: LoginInput) -> Result[TokenBundle]:
        """Authenticate by email and password, replacing any existing session."""
        account = self._store.get_by_email(payload.email)
        if account is None:
            self._hasher.verify_dummy(payload.password)
            return Failure(CredentialErrorKind.invalid_credentials, _INVALID_CREDENTIALS)
        if not self._hasher.verify(payload.password, account.password_hash):
            logger.info("login rejected for account %s: password mismatch", account.account_id)
            return Failure(CredentialErrorKind.invalid_credentials, _INVALID_CREDENTIALS)
        if not account.is_email_verified:
            logger.info("login rejected for account %s: email not verified", account.account_id)
            return Failure(CredentialErrorKind.email_not_verified, "email not verified")

        tokens = self._open_session(account)
        self._store.save(account, fields=_SESSION_FIELDS)
        logger.info("account %s logged in", account.account_id)
        return Success(tokens)

    def logout(self, account_id: str) -> Result[Acknowledgement]:
        """Drop the stored refresh token for an already-authenticated account."""
        account = self._store.get_by_id(account_id)
        if account is None:
            return Failure(CredentialErrorKind.account_not_found, "account not found")
        account.refresh_token_hash = None
        self._store.save(account, fields=_SESSION_FIELDS)
        logger.info("account %s logged out", account_id)
        return Success(Acknowledgement("Logged out successfully"))

    def verify_email(self, token: str) -> Result[Acknowledgement]:
        """Consume a verification token; replaying it afterwards fails."""
        account = self._store.get_by_verification_token(token) if token else None
        if account is None:
            return Failure(CredentialErrorKind.invalid_or_expired_token, _INVALID_TOKEN)
        account.is_email_verified = True
        account.email_verification_token = None
        self._store.save(account, fields=("is_email_verified", "email_verification_token"))
        logger.info("account %s verified its email", account.account_id)
        return Success(Acknowledgement("Email successfully verified"))

    def request_password_reset(self, email: str) -> Result[PasswordResetRequest]:
        """Issue a reset token, overwriting any previous one.

        Reports ``account_not_found`` precisely; masking it from external
        callers is left to the transport layer.
        """
        account = self._store.get_by_email(email)
        if account is None:
            return Failure(CredentialErrorKind.account_not_found, "account not found")

        token = self._signer.opaque_token()
        expires_at = self._clock() + self._reset_token_ttl
        account.reset_password_token = token
        account.reset_password_expires = expires_at
        account = self._store.save(account, fields=_RESET_FIELDS)
        logger.info("password reset requested for account %s", account.account_id)
        return Success(
            PasswordResetRequest(
                account=account,
                token=token,
                expires_at=expires_at,
                notification=Notification.password_reset(account, token),
            )
        )

    def reset_password(self, payload: PasswordResetInput) -> Result[Acknowledgement]:
        """Replace the password when the reset token exists and has not expired."""
        account = self._store.get_by_reset_token(payload.token) if payload.token else None
        if account is None or not account.has_valid_reset_token(self._clock()):
            return Failure(CredentialErrorKind.invalid_or_expired_token, _INVALID_TOKEN)

        account.password_hash = self._hasher.hash(payload.new_password)
        account.clear_reset_token()
        changed = ("password_hash", *_RESET_FIELDS)
        if self._revoke_on_reset:
            account.refresh_token_hash = None
            changed += _SESSION_FIELDS
        self._store.save(account, fields=changed)
        logger.info("password reset completed for account %s", account.account_id)
        return Success(Acknowledgement("Password reset successfully"))

    def refresh_session(self, refresh_token: str) -> Result[TokenBundle]:
        """Exchange the account's current refresh token for a rotated pair."""
        try:
            claims = self._signer.decode(refresh_token, token_type=REFRESH_TOKEN_TYPE)
        except InvalidTokenError as exc:
            logger.info("refresh rejected: %s", exc)
            return Failure(CredentialErrorKind.invalid_or_expired_token, _INVALID_TOKEN)

        account = self._store.get_by_id(str(claims["sub"]))
        if account is None or account.refresh_token_hash is None:
            return Failure(CredentialErrorKind.invalid_or_expired_token, _INVALID_TOKEN)
        if not hmac.compare_digest(account.refresh_token_hash, hash_refresh_token(refresh_token)):
            logger.info("refresh rejected for account %s: superseded token", account.account_id)
            return Failure(CredentialErrorKind.invalid_or_expired_token, _INVALID_TOKEN)

        tokens = self._open_session(account)
        self._store.save(account, fields=_SESSION_FIELDS)
        return Success(tokens)

    def _open_session(self, account: Account) -> TokenBundle:
        """Mint a token pair and record its refresh fingerprint on ``account``."""
        tokens = self._signer.issue_session(subject=account.account_id, email=account.email)
        account.refresh_token_hash = hash_refresh_token(tokens.refresh_token)
        return tokens
