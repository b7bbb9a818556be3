"""Password hashing and token signing adapters."""

from .hashing import BcryptSecretHasher
from .tokens import JwtTokenSigner, TokenBundle

__all__ = ["BcryptSecretHasher", "JwtTokenSigner", "TokenBundle"]
