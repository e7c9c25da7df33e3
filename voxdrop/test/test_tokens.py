"""
Test issuing and checking session tokens, and loading the signing secret.
"""

# System imports
#
import secrets
import stat
from datetime import timedelta

# 3rd party imports
#
import jwt
import pytest

# Project imports
#
from ..exceptions import AccountNotFound, ConfigurationError, InvalidToken
from ..tokens import (
    MIN_SECRET_LENGTH,
    TOKEN_ALGORITHM,
    TokenAuthority,
    generate_secret,
    load_secret,
)


####################################################################
#
def test_issue_and_decode(tokens) -> None:
    token = tokens.issue("alice")
    assert isinstance(token, str)
    assert tokens.decode(token) == "alice"


####################################################################
#
def test_token_expires_in_seven_days(tokens, secret) -> None:
    token = tokens.issue("alice")
    payload = jwt.decode(token, secret, algorithms=[TOKEN_ALGORITHM])
    assert payload["exp"] - payload["iat"] == int(
        timedelta(days=7).total_seconds()
    )


####################################################################
#
def test_expired_token(secret) -> None:
    expired = TokenAuthority(secret, lifetime=timedelta(seconds=-10))
    token = expired.issue("alice")
    with pytest.raises(InvalidToken):
        expired.decode(token)


####################################################################
#
def test_bad_signature(tokens) -> None:
    other = TokenAuthority(secrets.token_hex(32))
    token = other.issue("alice")
    with pytest.raises(InvalidToken):
        tokens.decode(token)


####################################################################
#
@pytest.mark.parametrize(
    "token", ["", "garbage", "a.b.c", "eyJhbGciOiJub25lIn0.e30."]
)
def test_malformed_token(tokens, token: str) -> None:
    with pytest.raises(InvalidToken):
        tokens.decode(token)


####################################################################
#
def test_token_missing_subject(tokens, secret) -> None:
    token = jwt.encode({"exp": 9999999999}, secret, algorithm=TOKEN_ALGORITHM)
    with pytest.raises(InvalidToken):
        tokens.decode(token)


####################################################################
#
def test_unsigned_token_rejected(tokens) -> None:
    token = jwt.encode(
        {"sub": "alice", "exp": 9999999999}, None, algorithm="none"
    )
    with pytest.raises(InvalidToken):
        tokens.decode(token)


####################################################################
#
@pytest.mark.asyncio
async def test_verify_checks_account_exists(tokens, account_store) -> None:
    await account_store.create_account("alice", "!nopw")
    assert tokens.verify(tokens.issue("alice"), account_store) == "alice"

    with pytest.raises(AccountNotFound):
        tokens.verify(tokens.issue("bob123"), account_store)


####################################################################
#
def test_load_secret(tmp_path, secret) -> None:
    assert load_secret(secret) == secret

    secret_file = tmp_path / "secret"
    secret_file.write_text(f"{secret}\n")
    assert load_secret(secret_file=secret_file) == secret

    # An explicit secret wins over the file.
    #
    other = secrets.token_hex(32)
    assert load_secret(other, secret_file) == other


####################################################################
#
def test_load_secret_missing(tmp_path) -> None:
    with pytest.raises(ConfigurationError):
        load_secret()
    with pytest.raises(ConfigurationError):
        load_secret(secret_file=tmp_path / "does-not-exist")
    with pytest.raises(ConfigurationError):
        load_secret("x" * (MIN_SECRET_LENGTH - 1))

    empty = tmp_path / "empty"
    empty.write_text("\n")
    with pytest.raises(ConfigurationError):
        load_secret(secret_file=empty)


####################################################################
#
def test_authority_requires_secret() -> None:
    with pytest.raises(ConfigurationError):
        TokenAuthority("")
    with pytest.raises(ConfigurationError):
        TokenAuthority("tooshort")


####################################################################
#
def test_generate_secret(tmp_path) -> None:
    secret_file = tmp_path / "secret"
    secret = generate_secret(secret_file)
    assert len(secret) >= MIN_SECRET_LENGTH
    assert load_secret(secret_file=secret_file) == secret
    assert stat.S_IMODE(secret_file.stat().st_mode) == 0o600

    # Never overwrite an existing secret.
    #
    with pytest.raises(ConfigurationError):
        generate_secret(secret_file)
    assert load_secret(secret_file=secret_file) == secret
