"""
This module has some simple logic to deal with failed login attempt throttling.

We track how many failed logins there have been against a username and
from a remote address. If a username has a bunch of failures in rapid
succession we fail any further login attempts against it for a short while,
greatly impairing any brute force attempts to guess passwords. Likewise if a
single address fails a lot, trying one username or many, we lock out that
address for a while.

XXX There is a fundamental flaw with this in that a malicious agent that
    knows how our throttling works can essentially conduct a denial of
    service against usernames it knows about. To mitigate this somewhat an
    address is blocked after fewer failures than a username is.
"""

# system imports
#
import logging
import time
from typing import Dict, Optional, Tuple

# How many seconds before we purge an entry.
#
PURGE_TIME = 60

# How many attempts are they allowed within PURGE_TIME before we decide that
# they are trying to brute force something?
#
MAX_USER_ATTEMPTS = 4
MAX_ADDR_ATTEMPTS = 3

log = logging.getLogger(__name__)


##################################################################
##################################################################
#
class LoginThrottle:
    """
    Two dicts, one keyed by username and one by remote address. The value is
    a tuple of the number of failed attempts within PURGE_TIME and the time
    of the last failed attempt.
    """

    ##################################################################
    #
    def __init__(
        self,
        purge_time: float = PURGE_TIME,
        max_user_attempts: int = MAX_USER_ATTEMPTS,
        max_addr_attempts: int = MAX_ADDR_ATTEMPTS,
    ):
        self.purge_time = purge_time
        self.max_user_attempts = max_user_attempts
        self.max_addr_attempts = max_addr_attempts
        self.bad_user_auths: Dict[str, Tuple[int, float]] = {}
        self.bad_addr_auths: Dict[str, Tuple[int, float]] = {}

    ####################################################################
    #
    def _purge_expired(self, now: float) -> None:
        """
        Forget usernames and addresses whose last failure is older than the
        purge time.
        """
        for name, auths in (
            ("user", self.bad_user_auths),
            ("addr", self.bad_addr_auths),
        ):
            expired = [
                key
                for key, (_, last) in auths.items()
                if now - last > self.purge_time
            ]
            for key in expired:
                log.info("clearing '%s' from bad %s auths", key, name)
                del auths[key]

    ####################################################################
    #
    def login_failed(self, user: str, addr: Optional[str] = None) -> None:
        """
        We had a login attempt that failed. Record it against both the
        username and the address it came from (if we know it.)
        """
        now = time.time()
        self._purge_expired(now)
        count, _ = self.bad_user_auths.get(user, (0, now))
        self.bad_user_auths[user] = (count + 1, now)

        if addr is not None:
            count, _ = self.bad_addr_auths.get(addr, (0, now))
            self.bad_addr_auths[addr] = (count + 1, now)

    ####################################################################
    #
    def check_allow(self, user: str, addr: Optional[str] = None) -> bool:
        """
        Return False if either the username or the client address is
        currently being throttled, True otherwise.
        """
        if not self.bad_user_auths and not self.bad_addr_auths:
            return True

        self._purge_expired(time.time())

        if (
            user in self.bad_user_auths
            and self.bad_user_auths[user][0] > self.max_user_attempts
        ):
            log.warning(
                "check_allow: too many attempts for user: '%s', from "
                "address: %s",
                user,
                addr,
            )
            return False

        if (
            addr in self.bad_addr_auths
            and self.bad_addr_auths[addr][0] > self.max_addr_attempts
        ):
            log.warning("check_allow: too many attempts from address: %s", addr)
            return False

        return True

    ####################################################################
    #
    def login_succeeded(self, user: str) -> None:
        """
        A successful login clears the failures against that username (but
        not against the address.)
        """
        self.bad_user_auths.pop(user, None)
