"""Utilities for issuing and validating session JWTs and opaque one-shot tokens."""

from __future__ import annotations

import hashlib
import secrets
import time
from dataclasses import dataclass
from typing import Any

import jwt

from ..config import Settings
from ..domain.errors import InvalidTokenError

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


@dataclass(slots=True)
class TokenBundle:
    """Encapsulates the access/refresh token pair returned to API consumers."""

    access_token: str
    access_expires_in: int
    refresh_token: str
    refresh_expires_in: int


class JwtTokenSigner:
    """Issues HS256 session tokens and random opaque tokens."""

    _ALGORITHM = "HS256"

    def __init__(
        self,
        *,
        secret: str,
        issuer: str,
        access_ttl_seconds: int = 3600,
        refresh_ttl_seconds: int = 7 * 24 * 3600,
        opaque_token_bytes: int = 32,
    ) -> None:
        if opaque_token_bytes < 16:
            raise ValueError("opaque tokens need at least 128 bits of entropy")
        self._secret = secret
        self._issuer = issuer
        self._access_ttl = access_ttl_seconds
        self._refresh_ttl = refresh_ttl_seconds
        self._opaque_bytes = opaque_token_bytes

    @classmethod
    def from_settings(cls, settings: Settings) -> "JwtTokenSigner":
        return cls(
            secret=settings.jwt_secret,
            issuer=settings.jwt_issuer,
            access_ttl_seconds=settings.access_ttl_seconds,
            refresh_ttl_seconds=settings.refresh_ttl_seconds,
            opaque_token_bytes=settings.opaque_token_bytes,
        )

    def opaque_token(self) -> str:
        """Return a hex-encoded random token for email verification or password reset."""
        return generate_opaque_token(self._opaque_bytes)

    def issue_session(self, *, subject: str, email: str) -> TokenBundle:
        """Create a signed access/refresh pair bound to ``{sub, email}``.

        Parameters
        ----------
        subject:
            Account identifier to embed in the token `sub` claim.
        email:
            Account email copied into the claims for downstream consumers.

        Returns
        -------
        TokenBundle
            Both encoded tokens with their TTLs in seconds.
        """
        access_token = self._encode(subject, email, ACCESS_TOKEN_TYPE, self._access_ttl)
        refresh_token = self._encode(subject, email, REFRESH_TOKEN_TYPE, self._refresh_ttl)
        return TokenBundle(
            access_token=access_token,
            access_expires_in=self._access_ttl,
            refresh_token=refresh_token,
            refresh_expires_in=self._refresh_ttl,
        )

    def decode(self, token: str, *, token_type: str = ACCESS_TOKEN_TYPE) -> dict[str, Any]:
        """Decode and verify a token issued by this signer.

        Raises
        ------
        InvalidTokenError
            When the token is malformed, expired, signed by another issuer,
            or of the wrong type. The PyJWT error is chained as the cause.
        """
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self._ALGORITHM],
                issuer=self._issuer,
                options={"require": ["exp", "iat", "sub", "typ"]},
            )
        except jwt.PyJWTError as exc:
            raise InvalidTokenError(str(exc)) from exc
        if claims.get("typ") != token_type:
            raise InvalidTokenError(f"expected {token_type} token")
        return claims

    def _encode(self, subject: str, email: str, token_type: str, ttl: int) -> str:
        now = int(time.time())
        payload: dict[str, Any] = {
            "iss": self._issuer,
            "sub": subject,
            "email": email,
            "typ": token_type,
            # unique per issuance so two logins within one second never collide
            "jti": secrets.token_hex(16),
            "iat": now,
            "exp": now + ttl,
        }
        return jwt.encode(payload, self._secret, algorithm=self._ALGORITHM)


def generate_opaque_token(num_bytes: int = 32) -> str:
    """Return ``num_bytes`` of CSPRNG output, hex encoded."""
    return secrets.token_hex(num_bytes)


def hash_refresh_token(token: str) -> str:
    """Return the SHA-256 hex digest for a refresh token string."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
