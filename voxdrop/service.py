"""
The inbox service. This is what whatever is handling requests (a web
front end, the admin command line) talks to. It ties together the identity
normalizer, the password hashers, the account store, and the session tokens.

Usernames come in as whatever the user typed. They are normalized here and
only canonical usernames are passed down to the store.
"""

# system imports
#
import logging
from typing import Any, Dict, List, Optional, Tuple

# voxdrop imports
#
from voxdrop.exceptions import (
    AlreadyExists,
    InvalidCredentials,
    InvalidIdentity,
    InvalidInput,
    LoginThrottled,
    NoSuchAccount,
    UsernameTaken,
)
from voxdrop.hashers import (
    acheck_password,
    adummy_password_hash,
    amake_password,
    is_password_usable,
)
from voxdrop.identity import normalize
from voxdrop.records import MessageRecord
from voxdrop.store import AccountStore
from voxdrop.throttle import LoginThrottle
from voxdrop.tokens import TokenAuthority

logger = logging.getLogger("voxdrop.service")

# Account events (register, login, delivery) go here. `setup_logging` can
# send this logger to its own JSON file.
#
audit = logging.getLogger("voxdrop.audit")


##################################################################
##################################################################
#
class InboxService:
    """
    register / login / deliver / read inbox / check availability.
    """

    ##################################################################
    #
    def __init__(
        self,
        store: AccountStore,
        tokens: TokenAuthority,
        throttle: Optional[LoginThrottle] = None,
    ):
        self.store = store
        self.tokens = tokens
        self.throttle = throttle if throttle is not None else LoginThrottle()

    ####################################################################
    #
    async def register(
        self, raw_username: str, password: str, email: Optional[str] = None
    ) -> Tuple[str, str]:
        """
        Create an account. Returns a tuple of the canonical username and a
        session token for it. `email` is stored with the account as given;
        we do not use it for anything.

        Raises `InvalidIdentity`, `InvalidInput` (no password, or an email
        that is not a string), `UsernameTaken`, or `StoreUnavailable`.
        """
        username = normalize(raw_username)
        if email is not None:
            if not isinstance(email, str):
                raise InvalidInput("email must be a string")
            email = email.strip() or None
        pw_hash = await amake_password(password)
        try:
            await self.store.create_account(username, pw_hash, email=email)
        except AlreadyExists:
            raise UsernameTaken(f"username '{username}' is taken") from None
        audit.info("register", extra={"username": username})
        return username, self.tokens.issue(username)

    ####################################################################
    #
    async def login(
        self, raw_username: str, password: str, remote_addr: Optional[str] = None
    ) -> str:
        """
        Check the password for the account and return a new session token.

        An unknown username and a wrong password both raise
        `InvalidCredentials`. Too many recent failures raise
        `LoginThrottled` (which is an `InvalidCredentials`.)
        """
        username = normalize(raw_username)
        if not self.throttle.check_allow(username, remote_addr):
            raise LoginThrottled("too many failed login attempts")

        try:
            pw_hash = self.store.get_account(username).pw_hash
        except NoSuchAccount:
            pw_hash = None

        # With no usable hash to check against we still check the password
        # against a dummy one so that the failure takes as long as a wrong
        # password does.
        #
        usable = is_password_usable(pw_hash)
        if not usable:
            pw_hash = await adummy_password_hash()
        valid = bool(password) and await acheck_password(password, pw_hash)

        if not (usable and valid):
            self.throttle.login_failed(username, remote_addr)
            audit.info(
                "login failed",
                extra={"username": username, "remote_addr": remote_addr},
            )
            raise InvalidCredentials("invalid credentials")

        self.throttle.login_succeeded(username)
        audit.info(
            "login", extra={"username": username, "remote_addr": remote_addr}
        )
        return self.tokens.issue(username)

    ####################################################################
    #
    async def deliver(
        self,
        raw_username: str,
        attachment_ref: str,
        transcript: Optional[str] = None,
        sender_meta: Optional[Dict[str, Any]] = None,
        size_bytes: Optional[int] = None,
    ) -> MessageRecord:
        """
        Deliver a message to the given username's inbox. `attachment_ref`
        is whatever the upload handler produced for the media (a url or a
        path). If the upload handler told us the size it is recorded in
        `sender_meta` as `size`.

        Returns the message as stored.
        """
        username = normalize(raw_username)
        if not attachment_ref or not isinstance(attachment_ref, str):
            raise InvalidInput("attachment reference is required")

        meta = dict(sender_meta) if sender_meta else {}
        if size_bytes is not None:
            meta["size"] = size_bytes

        message = MessageRecord(
            attachment_ref, transcript=transcript or "", sender_meta=meta
        )
        stored = await self.store.append_message(username, message)
        audit.info(
            "deliver",
            extra={"username": username, "attachment_ref": attachment_ref},
        )
        return stored

    ####################################################################
    #
    def authenticate(self, token: str) -> str:
        """
        Return the canonical username the token belongs to.

        Raises `InvalidToken` or `AccountNotFound`.
        """
        return self.tokens.verify(token, self.store)

    ####################################################################
    #
    def read_inbox(self, username: str) -> List[MessageRecord]:
        """
        The inbox for an already authenticated (canonical) username, most
        recent message first.
        """
        return list(reversed(self.store.list_inbox(username)))

    ####################################################################
    #
    def read_inbox_with_token(self, token: str) -> List[MessageRecord]:
        return self.read_inbox(self.authenticate(token))

    ####################################################################
    #
    def check_available(self, raw_username: str) -> bool:
        """
        True if the username could be registered right now.
        """
        try:
            username = normalize(raw_username)
        except InvalidIdentity:
            return False
        return not self.store.exists(username)
