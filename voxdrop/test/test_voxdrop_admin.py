"""
Test the admin command line: settings, and running commands against a
store.
"""

# System imports
#
import json

# 3rd party imports
#
import pytest
from docopt import docopt

# Project imports
#
from .. import voxdrop_admin
from ..exceptions import (
    ConfigurationError,
    InvalidCredentials,
    NoSuchAccount,
    StoreCorrupt,
)
from ..store import DEFAULT_LOCK_TIMEOUT, AccountStore
from ..voxdrop_admin import (
    DEFAULT_SECRET_FILE,
    DEFAULT_STORE_FILE,
    EXIT_ERROR,
    EXIT_FATAL,
    EXIT_OK,
    Settings,
    main,
    run_command,
)


####################################################################
#
def parse(argv):
    return docopt(voxdrop_admin.__doc__, argv=argv)


####################################################################
#
@pytest.fixture
def admin(store_file, secret, capsys):
    """
    Returns a function that runs an admin command against the test store
    and returns what it printed, parsed as JSON when it is JSON.
    """

    async def run(*argv, environ=None):
        args = parse(["--store", str(store_file), *argv])
        env = {"SECRET": secret} if environ is None else environ
        settings = Settings(args, config={}, environ=env)
        status = await run_command(args, settings)
        out = capsys.readouterr().out.strip()
        try:
            return status, json.loads(out)
        except ValueError:
            return status, out

    return run


####################################################################
#
def test_settings_defaults() -> None:
    settings = Settings(parse(["verify-store"]), config={}, environ={})
    assert settings.store_file == DEFAULT_STORE_FILE
    assert settings.secret is None
    assert settings.secret_file == DEFAULT_SECRET_FILE
    assert settings.auto_provision is True
    assert settings.lock_timeout == DEFAULT_LOCK_TIMEOUT
    assert settings.debug is False
    assert settings.log_config is None
    assert settings.sentry_dsn is None


####################################################################
#
def test_settings_precedence() -> None:
    environ = {
        "STORE_FILE": "/env/accounts.json",
        "SECRET_FILE": "/env/secret",
        "AUTO_PROVISION": "yes",
        "WRITE_TIMEOUT": "3",
        "DEBUG": "true",
    }
    config = {"SECRET_FILE": "/dotenv/secret", "AUTO_PROVISION": "no"}
    args = parse(["--store", "/cmdline/accounts.json", "verify-store"])
    settings = Settings(args, config=config, environ=environ)

    assert settings.store_file == "/cmdline/accounts.json"
    assert settings.secret_file == "/dotenv/secret"
    assert settings.auto_provision is False
    assert settings.write_timeout == 3.0
    assert settings.debug is True


####################################################################
#
@pytest.mark.parametrize(
    "environ",
    [
        {"AUTO_PROVISION": "maybe"},
        {"LOCK_TIMEOUT": "soon"},
        {"WRITE_TIMEOUT": "0"},
    ],
)
def test_settings_bad_values(environ) -> None:
    with pytest.raises(ConfigurationError):
        Settings(parse(["verify-store"]), config={}, environ=environ)


####################################################################
#
@pytest.mark.asyncio
async def test_register_login_inbox(admin, store_file) -> None:
    status, result = await admin(
        "register", "Alice ", "secret123", "--email", "alice@example.com"
    )
    assert status == EXIT_OK
    assert result["username"] == "alice"

    status, result = await admin("login", "ALICE", "secret123")
    assert status == EXIT_OK
    token = result["token"]

    status, result = await admin(
        "deliver", "alice", "v1.webm", "--transcript", "hi", "--size", "2048"
    )
    assert status == EXIT_OK
    assert result["attachment_ref"] == "v1.webm"
    assert result["sender_meta"] == {"size": 2048}

    status, inbox = await admin("inbox", token)
    assert status == EXIT_OK
    assert len(inbox) == 1
    assert inbox[0]["attachment_ref"] == "v1.webm"
    assert inbox[0]["transcript"] == "hi"

    store = await AccountStore.new(store_file)
    assert store.usernames() == ["alice"]
    assert store.get_account("alice").email == "alice@example.com"


####################################################################
#
@pytest.mark.asyncio
async def test_login_bad_password(admin) -> None:
    await admin("register", "alice", "secret123")
    with pytest.raises(InvalidCredentials):
        await admin("login", "alice", "nope-nope")


####################################################################
#
@pytest.mark.asyncio
async def test_check_and_verify_store(admin) -> None:
    status, result = await admin("check", "bob")
    assert result == {"available": True}

    await admin("deliver", "bob", "v2.webm")
    await admin("deliver", "bob", "v3.webm")
    status, result = await admin("check", "Bob")
    assert result == {"available": False}

    # verify-store does not need the secret.
    #
    status, out = await admin("verify-store", environ={})
    assert status == EXIT_OK
    assert out.endswith("1 accounts, 2 messages")


####################################################################
#
@pytest.mark.asyncio
async def test_auto_provision_off(admin) -> None:
    with pytest.raises(NoSuchAccount):
        await admin("--auto-provision", "no", "deliver", "bob", "v2.webm")


####################################################################
#
@pytest.mark.asyncio
async def test_secret_required(admin) -> None:
    with pytest.raises(ConfigurationError):
        await admin("check", "alice", environ={})


####################################################################
#
@pytest.mark.asyncio
async def test_generate_secret(admin, tmp_path) -> None:
    secret_file = tmp_path / "secret"
    status, _ = await admin(
        "--secret-file", str(secret_file), "generate-secret", environ={}
    )
    assert status == EXIT_OK
    assert secret_file.exists()

    # Now that the secret exists the rest of the commands work.
    #
    status, result = await admin(
        "--secret-file", str(secret_file), "check", "alice", environ={}
    )
    assert result == {"available": True}


####################################################################
#
@pytest.mark.asyncio
async def test_corrupt_store(admin, store_file) -> None:
    store_file.write_text("{this is not json")
    with pytest.raises(StoreCorrupt):
        await admin("verify-store")


####################################################################
#
def test_main_exit_status(store_file, secret, mocker, capsys) -> None:
    mocker.patch("voxdrop.voxdrop_admin.setup_logging")
    mocker.patch("voxdrop.voxdrop_admin.setup_asyncio_logging")
    mocker.patch("voxdrop.voxdrop_admin.dotenv_values", return_value={})
    mocker.patch.dict("os.environ", {"SECRET": secret})

    argv = ["--store", str(store_file)]
    assert main(argv + ["register", "alice", "secret123"]) == EXIT_OK
    assert main(argv + ["register", "alice", "secret123"]) == EXIT_ERROR
    assert "taken" in capsys.readouterr().err

    store_file.write_text("{this is not json")
    assert main(argv + ["verify-store"]) == EXIT_FATAL
    assert "Error:" in capsys.readouterr().err

    assert main(argv + ["--lock-timeout", "never", "verify-store"]) == (
        EXIT_FATAL
    )
