"""
The account store.

All accounts live in memory in a dict mapping the canonical username to its
`AccountRecord`. The file on disk is a snapshot we recover from when we
start up; it is never read again after that.

Every change goes through one `asyncio.Lock`, so changes happen one at a
time. A change is made by:

  1. getting the lock (giving up after `lock_timeout` seconds),
  2. building a new dict that is the current one plus the change,
  3. writing that whole dict to a temp file next to the snapshot, fsync'ing
     it, and renaming it over the snapshot (giving up after `write_timeout`
     seconds),
  4. only then making the new dict the current one, and releasing the lock.

If step 3 fails the current dict is untouched and the caller gets
`StoreUnavailable`. Nothing is acknowledged until it is on disk.

A write that times out is not cancelled. Its file operations are running
in worker threads and can not be stopped, so it is left to finish on its
own and the next change waits for it before writing anything. Otherwise its
rename could land after, and on top of, a later acknowledged write.

The store assumes it is the only writer of the snapshot. If the snapshot
on disk is not the one we last wrote (someone else replaced it) we refuse
to write over it and raise `StoreUnavailable`.

Readers do not take the lock. Records are immutable and the current dict is
swapped in with a single assignment, so a reader sees the state from before
or after a change, never part of one.

NOTE: This is meant for "small" numbers of accounts. The whole map is
      rewritten on every change.
"""

# system imports
#
import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from itertools import count
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

# 3rd party imports
#
import aiofiles
import aiofiles.os

# voxdrop imports
#
from voxdrop.exceptions import (
    AlreadyExists,
    InvalidIdentity,
    NoSuchAccount,
    StoreCorrupt,
    StoreUnavailable,
)
from voxdrop.hashers import make_unusable_password
from voxdrop.identity import is_canonical
from voxdrop.records import AccountRecord, MessageRecord, utcnow
from voxdrop.utils import fsync, fsync_dir

if TYPE_CHECKING:
    from _typeshed import StrPath

SNAPSHOT_VERSION = 1

# Seconds to wait for the write lock, and for a snapshot write to complete.
#
DEFAULT_LOCK_TIMEOUT = 10.0
DEFAULT_WRITE_TIMEOUT = 10.0


####################################################################
#
def _reject_duplicate_keys(pairs: List[Tuple[str, Any]]) -> Dict[str, Any]:
    """
    `json.loads` quietly keeps the last of any duplicated keys. In a
    snapshot that would silently drop an account, so refuse instead.
    """
    result: Dict[str, Any] = {}
    for key, value in pairs:
        if key in result:
            raise ValueError(f"duplicate key '{key}' in snapshot")
        result[key] = value
    return result


##################################################################
##################################################################
#
class AccountStore:
    """
    The in-memory map of canonical username to account, backed by a
    snapshot file.

    Every username passed to the store must already be canonical (see
    `voxdrop.identity.normalize`.)
    """

    ##################################################################
    #
    def __init__(
        self,
        path: "StrPath",
        auto_provision: bool = True,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        write_timeout: float = DEFAULT_WRITE_TIMEOUT,
    ):
        """
        Arguments:
        - `path`: the snapshot file.
        - `auto_provision`: if True, delivering a message to an account that
          does not exist creates it. Can be overridden per call to
          `append_message()`.
        - `lock_timeout`: seconds to wait for the write lock.
        - `write_timeout`: seconds to wait for the snapshot to be written.
        """
        self.log = logging.getLogger(
            "%s.%s" % (__name__, self.__class__.__name__)
        )
        self.path = Path(path)
        self.auto_provision = auto_provision
        self.lock_timeout = lock_timeout
        self.write_timeout = write_timeout

        self._accounts: Dict[str, AccountRecord] = {}
        self._lock = asyncio.Lock()

        # Every snapshot write gets its own temp file name so that a write
        # abandoned by a timeout can never collide with the next one.
        #
        self._tmp_counter = count()

        # A snapshot write that timed out but is still running.
        #
        self._pending_write: Optional[asyncio.Task] = None

        # What the snapshot on disk looked like after we last read or wrote
        # it. None if there was no snapshot.
        #
        self._snapshot_ident: Optional[Tuple[int, int, int, int]] = None

    ####################################################################
    #
    @classmethod
    async def new(cls, path: "StrPath", **kwargs) -> "AccountStore":
        """
        Create the store and load the snapshot (if there is one.)

        Raises `StoreCorrupt` if there is a snapshot and we can not load
        it.
        """
        store = cls(path, **kwargs)
        await store.load()
        return store

    ####################################################################
    #
    @property
    def tmp_glob(self) -> str:
        return f".{self.path.name}.*.tmp"

    ####################################################################
    #
    async def load(self) -> None:
        """
        Read the snapshot in to memory. A missing snapshot is an empty
        store. A snapshot we can not read or make sense of is fatal; we
        never throw away data we have already acknowledged.
        """
        await self._remove_stale_tmp_files()
        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                contents = await f.read()
        except FileNotFoundError:
            self.log.info(
                "No snapshot at '%s', starting with an empty store", self.path
            )
            self._accounts = {}
            return
        except (OSError, UnicodeDecodeError) as exc:
            raise StoreCorrupt(
                f"unable to read snapshot: {exc}", self.path
            ) from exc

        self._accounts = self._parse_snapshot(contents)
        self._snapshot_ident = await self._snapshot_on_disk()
        self.log.info(
            "Loaded %d accounts from '%s'", len(self._accounts), self.path
        )

    ####################################################################
    #
    def _parse_snapshot(self, contents: str) -> Dict[str, AccountRecord]:
        try:
            data = json.loads(
                contents, object_pairs_hook=_reject_duplicate_keys
            )
        except ValueError as exc:
            raise StoreCorrupt(
                f"unable to parse snapshot: {exc}", self.path
            ) from exc

        if (
            not isinstance(data, dict)
            or data.get("version") != SNAPSHOT_VERSION
            or not isinstance(data.get("accounts"), dict)
        ):
            raise StoreCorrupt("unrecognized snapshot format", self.path)

        accounts: Dict[str, AccountRecord] = {}
        for username, account_data in data["accounts"].items():
            # A key that is not canonical means the snapshot was written by
            # something that did not normalize usernames. Loading it would
            # either hide the account or merge it with another one.
            #
            if not is_canonical(username):
                raise StoreCorrupt(
                    f"account key '{username}' is not a canonical username",
                    self.path,
                )
            try:
                accounts[username] = AccountRecord.from_dict(
                    username, account_data
                )
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                raise StoreCorrupt(
                    f"bad account record for '{username}': {exc!r}",
                    self.path,
                ) from exc
        return accounts

    ####################################################################
    #
    async def _remove_stale_tmp_files(self) -> None:
        """
        Temp files left behind by a crash in the middle of a snapshot write.
        The snapshot itself is intact (the rename never happened) so these
        are just garbage.
        """
        if not self.path.parent.is_dir():
            return
        for tmp_file in self.path.parent.glob(self.tmp_glob):
            self.log.warning("Removing stale snapshot temp file '%s'", tmp_file)
            await aiofiles.os.remove(tmp_file)

    ####################################################################
    #
    def _serialize(self, accounts: Dict[str, AccountRecord]) -> str:
        snapshot = {
            "version": SNAPSHOT_VERSION,
            "accounts": {
                username: account.to_dict()
                for username, account in accounts.items()
            },
        }
        return json.dumps(snapshot, indent=2, sort_keys=True) + "\n"

    ####################################################################
    #
    async def _write_snapshot(self, accounts: Dict[str, AccountRecord]) -> None:
        """
        Write the given accounts to a temp file, fsync it, and rename it
        over the snapshot.
        """
        contents = self._serialize(accounts)
        tmp_path = self.path.with_name(
            f".{self.path.name}.{os.getpid()}.{next(self._tmp_counter)}.tmp"
        )
        try:
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(contents)
                await f.flush()
                await fsync(f.fileno())
            await aiofiles.os.replace(tmp_path, self.path)
        except OSError:
            if await aiofiles.os.path.exists(tmp_path):
                await aiofiles.os.remove(tmp_path)
            raise
        self._snapshot_ident = await self._snapshot_on_disk()
        await fsync_dir(self.path.parent)

    ####################################################################
    #
    async def _snapshot_on_disk(self) -> Optional[Tuple[int, int, int, int]]:
        """
        Enough of the snapshot's stat to tell if it has been replaced.
        """
        try:
            st = await aiofiles.os.stat(self.path)
        except FileNotFoundError:
            return None
        return (st.st_dev, st.st_ino, st.st_size, st.st_mtime_ns)

    ####################################################################
    #
    def _write_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and task is self._pending_write:
            self.log.error(
                "Timed out snapshot write for '%s' failed: %s", self.path, exc
            )

    ####################################################################
    #
    async def _wait_for_pending_write(self) -> None:
        """
        If an earlier write timed out and is still running, wait (up to
        `write_timeout` seconds) for it to finish.

        NOTE: Must be called while holding the write lock.
        """
        if self._pending_write is None:
            return
        try:
            async with asyncio.timeout(self.write_timeout):
                await asyncio.shield(self._pending_write)
        except TimeoutError as exc:
            self.log.error(
                "Earlier write of snapshot '%s' is still in progress", self.path
            )
            raise StoreUnavailable(
                f"earlier write of snapshot '{self.path}' still in progress"
            ) from exc
        except OSError:
            # Already logged by `_write_done`. The snapshot on disk is the
            # one from before that write.
            #
            pass
        finally:
            if self._pending_write.done():
                self._pending_write = None

    ####################################################################
    #
    async def _commit(self, accounts: Dict[str, AccountRecord]) -> None:
        """
        Make `accounts` durable, then make it the current state. If the
        write does not succeed the current state is left alone.

        NOTE: Must be called while holding the write lock.
        """
        await self._wait_for_pending_write()

        if await self._snapshot_on_disk() != self._snapshot_ident:
            self.log.error(
                "Snapshot '%s' was changed by another process, not "
                "overwriting it",
                self.path,
            )
            raise StoreUnavailable(
                f"snapshot '{self.path}' was changed by another process"
            )

        try:
            write = asyncio.create_task(self._write_snapshot(accounts))
            write.add_done_callback(self._write_done)
            async with asyncio.timeout(self.write_timeout):
                await asyncio.shield(write)
        except TimeoutError as exc:
            self._pending_write = write
            self.log.error(
                "Timed out after %.1f seconds writing snapshot '%s'",
                self.write_timeout,
                self.path,
            )
            raise StoreUnavailable(
                f"timed out writing snapshot '{self.path}'"
            ) from exc
        except OSError as exc:
            self.log.error("Unable to write snapshot '%s': %s", self.path, exc)
            raise StoreUnavailable(
                f"unable to write snapshot '{self.path}': {exc}"
            ) from exc
        self._accounts = accounts

    ####################################################################
    #
    @asynccontextmanager
    async def _write_lock(self):
        try:
            async with asyncio.timeout(self.lock_timeout):
                await self._lock.acquire()
        except TimeoutError as exc:
            self.log.error(
                "Timed out after %.1f seconds waiting for the write lock",
                self.lock_timeout,
            )
            raise StoreUnavailable("timed out waiting for write lock") from exc
        try:
            yield
        finally:
            self._lock.release()

    ####################################################################
    #
    def _check_key(self, username: str) -> None:
        if not is_canonical(username):
            raise InvalidIdentity(f"'{username}' is not a canonical username")

    ####################################################################
    #
    def _next_received_at(self, account: AccountRecord) -> datetime:
        """
        The time stamp for the next message in this account's inbox. Always
        later than the last one, even if the clock has not moved (or moved
        backwards.)
        """
        now = utcnow()
        if account.inbox:
            last = account.inbox[-1].received_at
            if last is not None and now <= last:
                now = last + timedelta(microseconds=1)
        return now

    ####################################################################
    #
    async def create_account(
        self,
        username: str,
        pw_hash: str,
        auto_provisioned: bool = False,
        email: Optional[str] = None,
    ) -> AccountRecord:
        """
        Create a new account. The account is on disk before this returns.

        Raises `AlreadyExists` if there is already an account with this
        username, `StoreUnavailable` if it could not be written.
        """
        self._check_key(username)
        async with self._write_lock():
            if username in self._accounts:
                raise AlreadyExists(f"account '{username}' already exists")
            account = AccountRecord(
                username,
                pw_hash,
                auto_provisioned=auto_provisioned,
                email=email,
            )
            await self._commit({**self._accounts, username: account})
        self.log.info("Created account '%s'", username)
        return account

    ####################################################################
    #
    async def append_message(
        self,
        username: str,
        message: MessageRecord,
        auto_provision: Optional[bool] = None,
    ) -> MessageRecord:
        """
        Append a message to the account's inbox and return the message as
        stored (with `received_at` set by us.) The message is on disk before
        this returns.

        If there is no such account and `auto_provision` (or the store's
        default if it is None) is True, the account is created with an
        unusable password. Otherwise `NoSuchAccount` is raised.
        """
        self._check_key(username)
        if auto_provision is None:
            auto_provision = self.auto_provision

        async with self._write_lock():
            account = self._accounts.get(username)
            provisioned = False
            if account is None:
                if not auto_provision:
                    raise NoSuchAccount(f"no such account '{username}'")
                account = AccountRecord(
                    username, make_unusable_password(), auto_provisioned=True
                )
                provisioned = True

            stored = message.stamped(self._next_received_at(account))
            await self._commit(
                {**self._accounts, username: account.with_message(stored)}
            )

        if provisioned:
            self.log.info("Auto-provisioned account '%s'", username)
        self.log.debug(
            "Appended message to '%s', inbox size: %d",
            username,
            len(self._accounts[username].inbox),
        )
        return stored

    ####################################################################
    #
    def get_account(self, username: str) -> AccountRecord:
        """
        Raises `NoSuchAccount` if there is no such account.
        """
        try:
            return self._accounts[username]
        except KeyError:
            raise NoSuchAccount(f"no such account '{username}'") from None

    ####################################################################
    #
    def list_inbox(self, username: str) -> Tuple[MessageRecord, ...]:
        """
        The account's inbox in the order the messages arrived. An unknown
        account has an empty inbox.
        """
        account = self._accounts.get(username)
        return account.inbox if account is not None else ()

    ####################################################################
    #
    def exists(self, username: str) -> bool:
        return username in self._accounts

    ####################################################################
    #
    def usernames(self) -> List[str]:
        return sorted(self._accounts.keys())

    ####################################################################
    #
    def __contains__(self, username: str) -> bool:
        return self.exists(username)

    ####################################################################
    #
    def __len__(self) -> int:
        return len(self._accounts)
