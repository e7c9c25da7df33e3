"""
Test turning raw usernames in to canonical keys.
"""

# 3rd party imports
#
import pytest

# Project imports
#
from ..exceptions import InvalidIdentity
from ..identity import MAX_USERNAME_LENGTH, is_canonical, normalize


####################################################################
#
@pytest.mark.parametrize(
    "raw,expected",
    [
        ("alice", "alice"),
        ("Alice ", "alice"),
        ("  ALICE\t", "alice"),
        ("Bob.Smith_99", "bob.smith_99"),
        ("abc", "abc"),
    ],
)
def test_normalize(raw: str, expected: str) -> None:
    assert normalize(raw) == expected
    # Normalizing is idempotent.
    #
    assert normalize(normalize(raw)) == expected


####################################################################
#
@pytest.mark.parametrize(
    "raw",
    [
        "",
        "   ",
        "ab",
        " Ab ",
        "a" * (MAX_USERNAME_LENGTH + 1),
        "alice smith",
        "alice/../bob",
        "alice:secret",
        "ali\x00ce",
        None,
        42,
    ],
)
def test_normalize_invalid(raw) -> None:
    with pytest.raises(InvalidIdentity):
        normalize(raw)


####################################################################
#
def test_same_key_for_all_spellings(faker) -> None:
    username = faker.user_name()
    spellings = [
        username,
        username.upper(),
        username.title(),
        f"  {username}  ",
        f"{username.upper()}\n",
    ]
    assert len({normalize(x) for x in spellings}) == 1


####################################################################
#
def test_is_canonical() -> None:
    assert is_canonical("alice")
    assert not is_canonical("Alice")
    assert not is_canonical(" alice")
    assert not is_canonical("al")
