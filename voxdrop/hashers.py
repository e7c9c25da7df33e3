"""
Password hashing and checking.

Password hashes are stored in the form:

    '<algorithm>$<iterations>$<salt>$<base64 digest>'

The only algorithm we produce is 'pbkdf2_sha256'. The iteration count is
stored with the hash so that raising `PBKDF2_ITERATIONS` does not invalidate
existing hashes.

A hash that begins with `UNUSABLE_PASSWORD_PREFIX` never matches any
password. Accounts that were created by a delivery (instead of someone
registering) get one of these.
"""

# system imports
#
import asyncio
import base64
import hashlib
import hmac
import logging
import secrets
from typing import Dict, Optional

# voxdrop imports
#
from voxdrop.exceptions import InvalidInput

logger = logging.getLogger("voxdrop.hashers")

PBKDF2_ALGORITHM = "pbkdf2_sha256"
PBKDF2_ITERATIONS = 600_000

UNUSABLE_PASSWORD_PREFIX = "!"
UNUSABLE_PASSWORD_SUFFIX_LENGTH = 40

SALT_LENGTH = 22


####################################################################
#
def _pbkdf2(password: str, salt: str, iterations: int) -> str:
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode("ascii"), iterations
    )
    return base64.b64encode(digest).decode("ascii").strip()


####################################################################
#
def make_password(password: str, salt: Optional[str] = None) -> str:
    """
    Turn a plain-text password in to a hash suitable for storing.

    Raises `InvalidInput` if the password is empty.
    """
    if not password:
        raise InvalidInput("password is required")
    if salt is None:
        salt = secrets.token_urlsafe(SALT_LENGTH)[:SALT_LENGTH]
    if "$" in salt:
        raise ValueError("salt may not contain '$'")
    iterations = PBKDF2_ITERATIONS
    digest = _pbkdf2(password, salt, iterations)
    return f"{PBKDF2_ALGORITHM}${iterations}${salt}${digest}"


####################################################################
#
def make_unusable_password() -> str:
    """
    Return a value that can be stored as a password hash but that no
    password will ever match.
    """
    return UNUSABLE_PASSWORD_PREFIX + secrets.token_urlsafe(
        UNUSABLE_PASSWORD_SUFFIX_LENGTH
    )


####################################################################
#
def is_password_usable(encoded: Optional[str]) -> bool:
    return encoded is not None and not encoded.startswith(
        UNUSABLE_PASSWORD_PREFIX
    )


####################################################################
#
def check_password(password: str, encoded: str) -> bool:
    """
    Returns True if the plain-text password matches the encoded hash.

    Raises `InvalidInput` if the password is empty. A hash in a format we
    do not understand never matches.
    """
    if not password:
        raise InvalidInput("password is required")
    if not is_password_usable(encoded):
        return False

    try:
        algorithm, iterations_str, salt, digest = encoded.split("$", 3)
        iterations = int(iterations_str)
    except ValueError:
        logger.warning("Password hash is not in a recognized format")
        return False

    if algorithm != PBKDF2_ALGORITHM:
        logger.warning("Unsupported password hash algorithm '%s'", algorithm)
        return False

    candidate = _pbkdf2(password, salt, iterations)
    return hmac.compare_digest(candidate.encode(), digest.encode())


####################################################################
#
async def acheck_password(password: str, encoded: str) -> bool:
    """
    `check_password` run in a worker thread. PBKDF2 is slow on purpose and
    we do not want it stalling the event loop.
    """
    return await asyncio.to_thread(check_password, password, encoded)


####################################################################
#
async def amake_password(password: str) -> str:
    """
    `make_password` run in a worker thread.
    """
    return await asyncio.to_thread(make_password, password)


# Hashes of a random password, one per iteration count, so a login for an
# account with no usable password takes as long as one with a wrong
# password.
#
_DUMMY_HASHES: Dict[int, str] = {}


####################################################################
#
async def adummy_password_hash() -> str:
    """
    A usable hash, at the current iteration count, that no password a user
    will ever type matches.
    """
    iterations = PBKDF2_ITERATIONS
    if iterations not in _DUMMY_HASHES:
        _DUMMY_HASHES[iterations] = await amake_password(
            secrets.token_urlsafe(32)
        )
    return _DUMMY_HASHES[iterations]
