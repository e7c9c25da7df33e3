"""
pytest fixtures for testing `voxdrop`
"""
# System imports
#
import secrets

# 3rd party imports
#
import pytest
import pytest_asyncio

# project imports
#
import voxdrop.hashers

from ..service import InboxService
from ..store import AccountStore
from ..throttle import LoginThrottle
from ..tokens import TokenAuthority
from .factories import AccountRecordFactory, MessageRecordFactory


####################################################################
#
@pytest.fixture(autouse=True)
def fast_hashers(monkeypatch):
    """
    The real iteration count makes every hash take a good fraction of a
    second. The iteration count is stored in the hash so lowering it for the
    tests does not change any behaviour we care about.
    """
    monkeypatch.setattr(voxdrop.hashers, "PBKDF2_ITERATIONS", 1_000)


####################################################################
#
@pytest.fixture
def store_file(tmp_path):
    """
    The snapshot file for the account store. It does not exist until the
    store writes it.
    """
    store_dir = tmp_path / "store"
    store_dir.mkdir(parents=True, exist_ok=True)
    yield store_dir / "accounts.json"


####################################################################
#
@pytest.fixture
def secret():
    return secrets.token_hex(32)


####################################################################
#
@pytest_asyncio.fixture
async def account_store(store_file):
    store = await AccountStore.new(store_file)
    yield store


####################################################################
#
@pytest.fixture
def tokens(secret):
    return TokenAuthority(secret)


####################################################################
#
@pytest.fixture
def login_throttle():
    return LoginThrottle()


####################################################################
#
@pytest.fixture
def inbox_service(account_store, tokens, login_throttle):
    return InboxService(account_store, tokens, throttle=login_throttle)


####################################################################
#
@pytest.fixture
def message_factory():
    def make_message(*args, **kwargs):
        return MessageRecordFactory(*args, **kwargs)

    yield make_message


####################################################################
#
@pytest.fixture
def account_factory():
    def make_account(*args, **kwargs):
        return AccountRecordFactory(*args, **kwargs)

    yield make_account


####################################################################
#
@pytest.fixture
def mock_time(mocker):
    """
    in the throttle module mock out `time.time()` to return the values we
    want it to.

    This fixture is intended to let the user define the values that are
    returned whenver `time()` is called in the throttle module.
    """
    mck_time = mocker.Mock("voxdrop.throttle.time.time")
    mocker.patch("voxdrop.throttle.time.time", new=mck_time)
    return mck_time
