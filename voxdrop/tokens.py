"""
Session tokens.

After someone registers or logs in we hand them a bearer token: a JWT
signed (HS256) with a secret that is loaded once when the process starts.
The token carries the account's canonical username (`sub`) and when it
expires (`exp`). We keep no record of issued tokens; expiry is the only way
a token stops working.
"""

# system imports
#
import logging
import os
import secrets
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Optional

# 3rd party imports
#
import jwt

# voxdrop imports
#
from voxdrop.exceptions import AccountNotFound, ConfigurationError, InvalidToken
from voxdrop.records import utcnow

if TYPE_CHECKING:
    from _typeshed import StrPath

    from voxdrop.store import AccountStore

logger = logging.getLogger("voxdrop.tokens")

TOKEN_ALGORITHM = "HS256"
TOKEN_LIFETIME = timedelta(days=7)

# HS256 keys shorter than the hash output are weak (and PyJWT warns about
# them.)
#
MIN_SECRET_LENGTH = 32


####################################################################
#
def load_secret(
    secret: Optional[str] = None, secret_file: Optional["StrPath"] = None
) -> str:
    """
    Figure out the token signing secret. An explicitly supplied `secret`
    wins, otherwise it is read from `secret_file`.

    Raises `ConfigurationError` if there is no secret or it is too short.
    We do not start without one.
    """
    if not secret and secret_file:
        secret_file = Path(secret_file)
        try:
            secret = secret_file.read_text().strip()
        except FileNotFoundError:
            raise ConfigurationError(
                f"secret file '{secret_file}' does not exist"
            ) from None
        except OSError as exc:
            raise ConfigurationError(
                f"unable to read secret file '{secret_file}': {exc}"
            ) from exc

    if not secret:
        raise ConfigurationError("no token signing secret configured")
    if len(secret) < MIN_SECRET_LENGTH:
        raise ConfigurationError(
            f"token signing secret must be at least {MIN_SECRET_LENGTH} "
            "characters"
        )
    return secret


####################################################################
#
def generate_secret(secret_file: "StrPath") -> str:
    """
    Create a new random secret and write it to `secret_file`, readable only
    by its owner. Refuses to overwrite an existing file.
    """
    secret_file = Path(secret_file)
    secret = secrets.token_hex(32)
    try:
        fd = os.open(
            str(secret_file), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600
        )
    except FileExistsError:
        raise ConfigurationError(
            f"secret file '{secret_file}' already exists"
        ) from None
    with os.fdopen(fd, "w") as f:
        f.write(secret + "\n")
    logger.info("Wrote new token signing secret to '%s'", secret_file)
    return secret


##################################################################
##################################################################
#
class TokenAuthority:
    """
    Issues and checks session tokens. The secret is fixed for the life of
    the object.
    """

    ##################################################################
    #
    def __init__(self, secret: str, lifetime: timedelta = TOKEN_LIFETIME):
        self._secret = load_secret(secret)
        self.lifetime = lifetime

    ##################################################################
    #
    def issue(self, username: str) -> str:
        """
        Return a new token for the given canonical username.
        """
        now = utcnow()
        payload = {
            "sub": username,
            "iat": now,
            "exp": now + self.lifetime,
        }
        return jwt.encode(payload, self._secret, algorithm=TOKEN_ALGORITHM)

    ##################################################################
    #
    def decode(self, token: str) -> str:
        """
        Return the username the token was issued for.

        Raises `InvalidToken` if the token is malformed, expired, or not
        signed with our secret.
        """
        if not token:
            raise InvalidToken("no token")
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[TOKEN_ALGORITHM],
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            raise InvalidToken("token has expired") from None
        except jwt.InvalidTokenError as exc:
            raise InvalidToken(f"invalid token: {exc}") from None

        username = payload["sub"]
        if not isinstance(username, str) or not username:
            raise InvalidToken("invalid token: bad subject")
        return username

    ##################################################################
    #
    def verify(self, token: str, store: "AccountStore") -> str:
        """
        `decode()` the token and make sure the account it refers to still
        exists in the store.

        Raises `InvalidToken` or `AccountNotFound`.
        """
        username = self.decode(token)
        if not store.exists(username):
            raise AccountNotFound(f"no account for token subject '{username}'")
        return username
