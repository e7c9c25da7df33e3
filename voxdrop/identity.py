"""
Turn the username someone typed in to the key we store their account
under.

Usernames are case-insensitive and surrounding whitespace is ignored, so
"Alice ", "alice" and "ALICE" are all the same account. Every operation that
takes a username runs it through `normalize()` first.
"""

# system imports
#
import re

# voxdrop imports
#
from voxdrop.exceptions import InvalidIdentity

MIN_USERNAME_LENGTH = 3
MAX_USERNAME_LENGTH = 64

# Usernames end up in urls (`/@<username>`) and as keys in the snapshot file,
# so no whitespace, path separators, colons, or control characters.
#
BAD_USERNAME_CHARS_RE = re.compile(r"[\s/\\:\x00-\x1f\x7f]")


####################################################################
#
def normalize(raw: str) -> str:
    """
    Return the canonical key for the given raw username.

    Raises `InvalidIdentity` if the result is not a usable username.
    """
    if not isinstance(raw, str):
        raise InvalidIdentity("username must be a string")

    key = raw.strip().lower()
    if not key:
        raise InvalidIdentity("username is empty")
    if len(key) < MIN_USERNAME_LENGTH:
        raise InvalidIdentity(
            f"username must be at least {MIN_USERNAME_LENGTH} characters"
        )
    if len(key) > MAX_USERNAME_LENGTH:
        raise InvalidIdentity(
            f"username must be at most {MAX_USERNAME_LENGTH} characters"
        )
    if BAD_USERNAME_CHARS_RE.search(key):
        raise InvalidIdentity(f"username '{key}' has invalid characters")
    return key


####################################################################
#
def is_canonical(key: str) -> bool:
    """
    True if `key` is already a canonical username (normalizing it would
    give back the same string.)
    """
    try:
        return normalize(key) == key
    except InvalidIdentity:
        return False
