"""HTTP route definitions for the credential service."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from prometheus_client import Counter
from pydantic import BaseModel, EmailStr, Field

from ..domain.contracts import LoginInput, PasswordResetInput, RegisterInput
from ..domain.errors import CredentialErrorKind, Failure, InvalidTokenError
from ..domain.service import CredentialManager
from ..messaging import NotificationPublisher
from ..security.tokens import ACCESS_TOKEN_TYPE, JwtTokenSigner, TokenBundle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/auth", tags=["auth"])

OPERATIONS = Counter(
    "credential_operations_total",
    "Credential manager operations by outcome.",
    ["operation", "outcome"],
)

_STATUS_BY_KIND = {
    CredentialErrorKind.duplicate_account: status.HTTP_409_CONFLICT,
    CredentialErrorKind.invalid_credentials: status.HTTP_401_UNAUTHORIZED,
    CredentialErrorKind.email_not_verified: status.HTTP_403_FORBIDDEN,
    CredentialErrorKind.account_not_found: status.HTTP_404_NOT_FOUND,
    CredentialErrorKind.invalid_or_expired_token: status.HTTP_400_BAD_REQUEST,
}

_RESET_REQUESTED_MESSAGE = "If the account exists, a password reset email has been sent"


class RegisterRequest(BaseModel):
    """Payload accepted when registering a new account."""

    email: EmailStr
    password: str = Field(..., min_length=8)
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class VerifyEmailRequest(BaseModel):
    token: str


class PasswordResetRequestBody(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str
    new_password: str = Field(..., min_length=8)


class RefreshTokenRequest(BaseModel):
    """Request body for exchanging refresh tokens for new access credentials."""

    refresh_token: str


class TokenResponse(BaseModel):
    """Token issuance response containing the bearer token and metadata."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_token: str
    refresh_expires_in: int

    @classmethod
    def from_bundle(cls, bundle: TokenBundle) -> "TokenResponse":
        return cls(
            access_token=bundle.access_token,
            expires_in=bundle.access_expires_in,
            refresh_token=bundle.refresh_token,
            refresh_expires_in=bundle.refresh_expires_in,
        )


class MessageResponse(BaseModel):
    message: str


def get_manager(request: Request) -> CredentialManager:
    """Resolve the `CredentialManager` stored on the FastAPI application state."""
    manager: CredentialManager = request.app.state.credential_manager
    return manager


def get_publisher(request: Request) -> NotificationPublisher:
    publisher: NotificationPublisher = request.app.state.notification_publisher
    return publisher


def get_current_account_id(
    request: Request,
    authorization: str | None = Header(default=None),
) -> str:
    """Return the ``sub`` claim of a valid bearer access token."""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing bearer token")
    signer: JwtTokenSigner = request.app.state.token_signer
    try:
        claims = signer.decode(token, token_type=ACCESS_TOKEN_TYPE)
    except InvalidTokenError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid access token") from exc
    return str(claims["sub"])


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterRequest,
    manager: CredentialManager = Depends(get_manager),
    publisher: NotificationPublisher = Depends(get_publisher),
) -> TokenResponse:
    """Register an account and send its verification email."""
    result = manager.register(
        RegisterInput(
            email=payload.email,
            password=payload.password,
            first_name=payload.first_name,
            last_name=payload.last_name,
        )
    )
    if isinstance(result, Failure):
        raise _http_error("register", result)
    _record("register", "success")
    publisher.publish(result.value.notification)
    return TokenResponse.from_bundle(result.value.tokens)


@router.post("/login", response_model=TokenResponse)
def login(
    payload: LoginRequest,
    manager: CredentialManager = Depends(get_manager),
) -> TokenResponse:
    result = manager.login(LoginInput(email=payload.email, password=payload.password))
    if isinstance(result, Failure):
        raise _http_error("login", result)
    _record("login", "success")
    return TokenResponse.from_bundle(result.value)


@router.post("/logout", response_model=MessageResponse)
def logout(
    account_id: str = Depends(get_current_account_id),
    manager: CredentialManager = Depends(get_manager),
) -> MessageResponse:
    """Revoke the caller's refresh token."""
    result = manager.logout(account_id)
    if isinstance(result, Failure):
        raise _http_error("logout", result)
    _record("logout", "success")
    return MessageResponse(message=result.value.message)


@router.post("/verify-email", response_model=MessageResponse)
def verify_email(
    payload: VerifyEmailRequest,
    manager: CredentialManager = Depends(get_manager),
) -> MessageResponse:
    result = manager.verify_email(payload.token)
    if isinstance(result, Failure):
        raise _http_error("verify_email", result)
    _record("verify_email", "success")
    return MessageResponse(message=result.value.message)


@router.post(
    "/request-password-reset",
    response_model=MessageResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def request_password_reset(
    payload: PasswordResetRequestBody,
    manager: CredentialManager = Depends(get_manager),
    publisher: NotificationPublisher = Depends(get_publisher),
) -> MessageResponse:
    """Send a reset email; unknown addresses get the same response."""
    result = manager.request_password_reset(payload.email)
    if isinstance(result, Failure):
        if result.kind is not CredentialErrorKind.account_not_found:
            raise _http_error("request_password_reset", result)
        _record("request_password_reset", result.kind.value)
    else:
        _record("request_password_reset", "success")
        publisher.publish(result.value.notification)
    return MessageResponse(message=_RESET_REQUESTED_MESSAGE)


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(
    payload: ResetPasswordRequest,
    manager: CredentialManager = Depends(get_manager),
) -> MessageResponse:
    result = manager.reset_password(
        PasswordResetInput(token=payload.token, new_password=payload.new_password)
    )
    if isinstance(result, Failure):
        raise _http_error("reset_password", result)
    _record("reset_password", "success")
    return MessageResponse(message=result.value.message)


@router.post("/token/refresh", response_model=TokenResponse)
def refresh_token(
    payload: RefreshTokenRequest,
    manager: CredentialManager = Depends(get_manager),
) -> TokenResponse:
    """Rotate the session using the current refresh token."""
    result = manager.refresh_session(payload.refresh_token)
    if isinstance(result, Failure):
        raise _http_error("refresh", result, status_code=status.HTTP_401_UNAUTHORIZED)
    _record("refresh", "success")
    return TokenResponse.from_bundle(result.value)


def _record(operation: str, outcome: str) -> None:
    OPERATIONS.labels(operation=operation, outcome=outcome).inc()


def _http_error(operation: str, failure: Failure, status_code: int | None = None) -> HTTPException:
    _record(operation, failure.kind.value)
    return HTTPException(
        status_code=status_code or _STATUS_BY_KIND[failure.kind],
        detail={"kind": failure.kind.value, "message": failure.message},
    )
