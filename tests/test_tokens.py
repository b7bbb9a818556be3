from __future__ import annotations

import jwt
import pytest

from credential_service.config import Settings
from credential_service.domain.errors import InvalidTokenError
from credential_service.security.hashing import BcryptSecretHasher
from credential_service.security.tokens import (
    ACCESS_TOKEN_TYPE,
    REFRESH_TOKEN_TYPE,
    JwtTokenSigner,
    generate_opaque_token,
    hash_refresh_token,
)


@pytest.fixture
def signer() -> JwtTokenSigner:
    return JwtTokenSigner(
        secret="test-secret",
        issuer="test-issuer",
        access_ttl_seconds=3600,
        refresh_ttl_seconds=7 * 24 * 3600,
    )


@pytest.fixture(scope="module")
def hasher() -> BcryptSecretHasher:
    return BcryptSecretHasher(rounds=4)


def test_issue_session_binds_subject_and_email(signer):
    bundle = signer.issue_session(subject="acct-1", email="a@x.com")

    access = signer.decode(bundle.access_token, token_type=ACCESS_TOKEN_TYPE)
    refresh = signer.decode(bundle.refresh_token, token_type=REFRESH_TOKEN_TYPE)

    assert access["sub"] == refresh["sub"] == "acct-1"
    assert access["email"] == "a@x.com"
    assert access["iss"] == "test-issuer"
    assert access["exp"] - access["iat"] == 3600
    assert refresh["exp"] - refresh["iat"] == 7 * 24 * 3600
    assert bundle.access_expires_in == 3600
    assert bundle.refresh_expires_in == 7 * 24 * 3600


def test_each_issuance_is_unique(signer):
    first = signer.issue_session(subject="acct-1", email="a@x.com")
    second = signer.issue_session(subject="acct-1", email="a@x.com")
    assert first.refresh_token != second.refresh_token
    assert first.access_token != second.access_token


def test_decode_enforces_token_type(signer):
    bundle = signer.issue_session(subject="acct-1", email="a@x.com")
    with pytest.raises(InvalidTokenError):
        signer.decode(bundle.refresh_token, token_type=ACCESS_TOKEN_TYPE)
    with pytest.raises(InvalidTokenError):
        signer.decode(bundle.access_token, token_type=REFRESH_TOKEN_TYPE)


def test_decode_rejects_foreign_and_expired_tokens(signer):
    foreign = JwtTokenSigner(secret="other-secret", issuer="test-issuer")
    with pytest.raises(InvalidTokenError) as forged:
        signer.decode(foreign.issue_session(subject="x", email="x@x.com").access_token)
    assert isinstance(forged.value.__cause__, jwt.InvalidSignatureError)

    expired = JwtTokenSigner(secret="test-secret", issuer="test-issuer", access_ttl_seconds=-10)
    with pytest.raises(InvalidTokenError) as stale:
        signer.decode(expired.issue_session(subject="x", email="x@x.com").access_token)
    assert isinstance(stale.value.__cause__, jwt.ExpiredSignatureError)


def test_decode_wraps_malformed_tokens(signer):
    with pytest.raises(InvalidTokenError) as malformed:
        signer.decode("not-a-jwt")
    assert isinstance(malformed.value.__cause__, jwt.DecodeError)


def test_opaque_tokens_carry_at_least_128_bits(signer):
    tokens = {signer.opaque_token() for _ in range(50)}
    assert len(tokens) == 50
    assert all(len(token) == 64 for token in tokens)
    assert len(generate_opaque_token(16)) == 32

    with pytest.raises(ValueError):
        JwtTokenSigner(secret="s", issuer="i", opaque_token_bytes=8)


def test_signer_from_settings_uses_configured_ttls():
    settings = Settings(jwt_secret="s", jwt_issuer="i", access_ttl_seconds=60, refresh_ttl_seconds=120)
    bundle = JwtTokenSigner.from_settings(settings).issue_session(subject="a", email="a@x.com")
    assert (bundle.access_expires_in, bundle.refresh_expires_in) == (60, 120)


def test_hash_refresh_token_is_stable_sha256():
    assert hash_refresh_token("abc") == hash_refresh_token("abc")
    assert len(hash_refresh_token("abc")) == 64
    assert hash_refresh_token("abc") != hash_refresh_token("abd")


def test_hasher_round_trip(hasher):
    digest = hasher.hash("correct horse")

    assert digest != "correct horse"
    assert digest.startswith("$2")
    assert hasher.verify("correct horse", digest)
    assert not hasher.verify("wrong horse", digest)


def test_hasher_salts_every_call(hasher):
    assert hasher.hash("same") != hasher.hash("same")


def test_hasher_distinguishes_long_passwords_sharing_a_prefix(hasher):
    prefix = "x" * 80
    digest = hasher.hash(prefix + "a")
    assert hasher.verify(prefix + "a", digest)
    assert not hasher.verify(prefix + "b", digest)


def test_hasher_treats_malformed_hash_as_mismatch(hasher):
    assert hasher.verify("anything", "not-a-bcrypt-hash") is False
    assert hasher.verify_dummy("anything") is False
