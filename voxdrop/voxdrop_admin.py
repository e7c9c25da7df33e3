#!/usr/bin/env python
#
"""
Administer a VoxDrop account store from the command line.

This opens the account store the same way the service does (same snapshot
file, same token secret) and runs one operation against it. It is handy for
setting up a development environment, checking a snapshot file after a
crash, and poking at an inbox.

If `<password>` is not supplied for `register` or `login` you will be
prompted for it.

NOTE: The service must be the only writer of its snapshot file. Stop it
      before running `register` or `deliver` against the same file. The
      service refuses to write over a snapshot it did not write, and every
      command here removes snapshot temp files when it opens the store,
      including any the service is in the middle of writing.

NOTE: For all command line options that can also be specified via an env.
      var (or in a `.env` file): the command line option will override the
      `.env` file, which overrides the env. var.

Usage:
  voxdrop_admin [options] register <username> [<password>]
  voxdrop_admin [options] login <username> [<password>]
  voxdrop_admin [options] deliver <username> <attachment_ref>
  voxdrop_admin [options] inbox <token>
  voxdrop_admin [options] check <username>
  voxdrop_admin [options] verify-store
  voxdrop_admin [options] generate-secret
  voxdrop_admin (-h | --help)
  voxdrop_admin --version

Options:
  --version
  -h, --help                 Show this text and exit
  --store=<store>            The account snapshot file. The env. var is
                             `STORE_FILE`. Defaults to
                             `/opt/voxdrop/accounts.json`
  --secret-file=<sf>         File holding the token signing secret. The env.
                             var is `SECRET_FILE`. Defaults to
                             `/opt/voxdrop/secret`. If the env. var `SECRET`
                             is set it is used instead of the file.
  --auto-provision=<ap>      'yes' or 'no': create accounts on delivery to an
                             unknown username. The env. var is
                             `AUTO_PROVISION`. Defaults to 'yes'.
  --lock-timeout=<lt>        Seconds to wait for the store's write lock. The
                             env. var is `LOCK_TIMEOUT`. Defaults to 10.
  --write-timeout=<wt>       Seconds to wait for a snapshot write. The env.
                             var is `WRITE_TIMEOUT`. Defaults to 10.
  --email=<email>            Email address to record for `register`.
  --transcript=<t>           Transcript for `deliver`.
  --size=<bytes>             Size of the attachment for `deliver`.
  --remote-addr=<addr>       Remote address to record for `login`.
  --debug                    Set the default logging level to `DEBUG`. The
                             env. var is `DEBUG`.
  --log-config=<lc>          The log config file. Either a JSON logging dict
                             config or a logging config file. The env. var is
                             `LOG_CONFIG`.
  --audit-dir=<ad>           Directory to write the JSON account event log
                             to. The env. var is `AUDIT_DIR`.
"""

# system imports
#
import asyncio
import getpass
import json
import logging
import os
import sys
from typing import Any, List, Mapping, Optional

# 3rd party imports
#
import sentry_sdk
from docopt import docopt
from dotenv import dotenv_values
from sentry_sdk.integrations.asyncio import AsyncioIntegration

# voxdrop imports
#
from voxdrop import __version__ as VERSION
from voxdrop.exceptions import (
    ConfigurationError,
    InvalidInput,
    StoreCorrupt,
    VoxDropException,
)
from voxdrop.service import InboxService
from voxdrop.store import (
    DEFAULT_LOCK_TIMEOUT,
    DEFAULT_WRITE_TIMEOUT,
    AccountStore,
)
from voxdrop.tokens import TokenAuthority, generate_secret, load_secret
from voxdrop.utils import setup_asyncio_logging, setup_logging

logger = logging.getLogger("voxdrop.voxdrop_admin")

DEFAULT_STORE_FILE = "/opt/voxdrop/accounts.json"
DEFAULT_SECRET_FILE = "/opt/voxdrop/secret"

TRUE_VALUES = ("1", "y", "yes", "true", "on")
FALSE_VALUES = ("0", "n", "no", "false", "off")

# Exit statuses
#
EXIT_OK = 0
EXIT_ERROR = 1
EXIT_FATAL = 2


####################################################################
#
def parse_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    value = str(value).strip().lower()
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name}: '{value}' is not a yes/no value")


####################################################################
#
def parse_float(value: Any, name: str) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name}: '{value}' is not a number") from None
    if result <= 0:
        raise ConfigurationError(f"{name}: must be greater than zero")
    return result


##################################################################
##################################################################
#
class Settings:
    """
    The configuration for a run, pulled together from the command line, the
    `.env` file, the environment, and the defaults (in that order.)
    """

    ##################################################################
    #
    def __init__(
        self,
        args: Mapping[str, Any],
        config: Optional[Mapping[str, Optional[str]]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self._config = config if config is not None else {}
        self._environ = environ if environ is not None else os.environ

        self.store_file = self._get(
            args["--store"], "STORE_FILE", DEFAULT_STORE_FILE
        )
        self.secret = self._get(None, "SECRET", None)
        self.secret_file = self._get(
            args["--secret-file"], "SECRET_FILE", DEFAULT_SECRET_FILE
        )
        self.auto_provision = parse_bool(
            self._get(args["--auto-provision"], "AUTO_PROVISION", True),
            "AUTO_PROVISION",
        )
        self.lock_timeout = parse_float(
            self._get(
                args["--lock-timeout"], "LOCK_TIMEOUT", DEFAULT_LOCK_TIMEOUT
            ),
            "LOCK_TIMEOUT",
        )
        self.write_timeout = parse_float(
            self._get(
                args["--write-timeout"], "WRITE_TIMEOUT", DEFAULT_WRITE_TIMEOUT
            ),
            "WRITE_TIMEOUT",
        )
        self.debug = args["--debug"] or parse_bool(
            self._get(None, "DEBUG", False), "DEBUG"
        )
        self.log_config = self._get(args["--log-config"], "LOG_CONFIG", None)
        self.audit_dir = self._get(args["--audit-dir"], "AUDIT_DIR", None)
        self.sentry_dsn = self._get(None, "SENTRY_DSN", None)

    ##################################################################
    #
    def _get(self, cmdline: Any, key: str, default: Any) -> Any:
        if cmdline is not None:
            return cmdline
        if self._config.get(key) is not None:
            return self._config[key]
        if key in self._environ:
            return self._environ[key]
        return default


####################################################################
#
def setup_sentry(settings: Settings) -> None:
    if not settings.sentry_dsn:
        logger.debug("Not initializing sentry_sdk: SENTRY_DSN not set")
        return
    logger.debug("Initializing sentry_sdk")
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        traces_sample_rate=0.1,
        integrations=[
            AsyncioIntegration(),
        ],
        environment="devel" if settings.debug else "production",
    )


####################################################################
#
def get_password(password: Optional[str], verify: bool) -> str:
    if password:
        return password
    while True:
        pw1 = getpass.getpass("Password: ")
        if not verify:
            return pw1
        pw2 = getpass.getpass("Enter password again to verify: ")
        if pw1 == pw2:
            return pw1
        print("Passwords do NOT match! Re-enter please.")


####################################################################
#
def message_to_json(messages: List) -> str:
    return json.dumps([m.to_dict() for m in messages], indent=2)


####################################################################
#
async def open_store(settings: Settings) -> AccountStore:
    return await AccountStore.new(
        settings.store_file,
        auto_provision=settings.auto_provision,
        lock_timeout=settings.lock_timeout,
        write_timeout=settings.write_timeout,
    )


####################################################################
#
async def run_command(args: Mapping[str, Any], settings: Settings) -> int:
    """
    Open the store and run the command given in `args`. Returns the exit
    status. `VoxDropException`s are left to our caller.
    """
    if args["generate-secret"]:
        generate_secret(settings.secret_file)
        print(f"Wrote new secret to {settings.secret_file}")
        return EXIT_OK

    # Load the secret before touching the store. We do not start without
    # one.
    #
    if not args["verify-store"]:
        secret = load_secret(settings.secret, settings.secret_file)

    store = await open_store(settings)

    if args["verify-store"]:
        messages = sum(len(store.list_inbox(u)) for u in store.usernames())
        print(
            f"{settings.store_file}: {len(store)} accounts, {messages} messages"
        )
        return EXIT_OK

    service = InboxService(store, TokenAuthority(secret))

    if args["register"]:
        password = get_password(args["<password>"], verify=True)
        username, token = await service.register(
            args["<username>"], password, email=args["--email"]
        )
        print(json.dumps({"username": username, "token": token}))
    elif args["login"]:
        password = get_password(args["<password>"], verify=False)
        token = await service.login(
            args["<username>"], password, remote_addr=args["--remote-addr"]
        )
        print(json.dumps({"token": token}))
    elif args["deliver"]:
        try:
            size = int(args["--size"]) if args["--size"] else None
        except ValueError:
            raise InvalidInput(
                f"--size: '{args['--size']}' is not an integer"
            ) from None
        message = await service.deliver(
            args["<username>"],
            args["<attachment_ref>"],
            transcript=args["--transcript"],
            size_bytes=size,
        )
        print(json.dumps(message.to_dict()))
    elif args["inbox"]:
        print(message_to_json(service.read_inbox_with_token(args["<token>"])))
    elif args["check"]:
        available = service.check_available(args["<username>"])
        print(json.dumps({"available": available}))
    return EXIT_OK


#############################################################################
#
def main(argv: Optional[List[str]] = None) -> int:
    """
    Parse the options, set up logging, and run the requested command.
    """
    args = docopt(__doc__, argv=argv, version=VERSION)
    try:
        settings = Settings(args, dotenv_values())
    except ConfigurationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_FATAL

    setup_logging(settings.log_config, settings.debug, settings.audit_dir)
    setup_asyncio_logging()
    setup_sentry(settings)

    try:
        return asyncio.run(run_command(args, settings))
    except (StoreCorrupt, ConfigurationError) as exc:
        logger.error("Unable to start: %s", exc)
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_FATAL
    except VoxDropException as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_ERROR
    except KeyboardInterrupt:
        logger.warning("Keyboard interrupt, exiting")
        return EXIT_ERROR


############################################################################
############################################################################
#
# Here is where it all starts
#
if __name__ == "__main__":
    sys.exit(main())
#
############################################################################
############################################################################
