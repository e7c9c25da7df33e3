#!/usr/bin/env python
#
"""
Some exceptions need to be generally available to many modules so they are
kept in this module to avoid circular dependencies.

The store, the token and credential code, and the inbox service all raise
sub-classes of `VoxDropException`. Whatever sits in front of the inbox
service (a web layer, the admin command line) is expected to catch these and
turn them in to an appropriate response.
"""


#######################################################################
#
class VoxDropException(Exception):
    def __init__(self, value="voxdrop exception"):
        self.value = value

    def __str__(self):
        return str(self.value)


############################################################################
#
# Problems with what the caller handed us.
#
class InvalidIdentity(VoxDropException):
    """
    The username is malformed: empty, too short, too long, or contains
    characters we do not allow in a username.
    """

    pass


############################################################################
#
class InvalidInput(VoxDropException):
    """
    A required field (password, attachment reference) is missing or empty.
    """

    pass


############################################################################
#
# Our authentication system has its own set of exceptions.
#
class AuthenticationException(VoxDropException):
    pass


############################################################################
#
class UsernameTaken(AuthenticationException):
    pass


############################################################################
#
class InvalidCredentials(AuthenticationException):
    """
    Raised for both an unknown username and a wrong password. Callers can
    not tell the two apart, which is the point.
    """

    pass


############################################################################
#
class LoginThrottled(InvalidCredentials):
    """
    Too many failed logins for this user or from this address recently.
    """

    pass


############################################################################
#
class InvalidToken(AuthenticationException):
    """
    The session token is malformed, expired, or has a bad signature.
    """

    pass


############################################################################
#
class AccountNotFound(AuthenticationException):
    """
    The session token is valid but the account it refers to does not
    exist. The client needs to authenticate again.
    """

    pass


##################################################################
##################################################################
#
# Exceptions raised by the account store.
#
class StoreException(VoxDropException):
    pass


##################################################################
#
class AlreadyExists(StoreException):
    pass


##################################################################
#
class NoSuchAccount(StoreException):
    pass


##################################################################
#
class StoreUnavailable(StoreException):
    """
    Could not get the store's write lock, or could not write the snapshot
    to disk, within the allotted time (or the write failed outright). The
    in-memory state is unchanged and the caller may retry.
    """

    pass


##################################################################
#
class StoreCorrupt(StoreException):
    """
    The snapshot on disk could not be loaded. This is fatal at startup and
    requires someone to look at the file. We never throw away a snapshot we
    can not read.
    """

    def __init__(self, value="store corrupt", path=None):
        self.value = value
        self.path = path

    def __str__(self):
        if self.path is None:
            return str(self.value)
        return f"{self.value}: '{self.path}'"


##################################################################
#
class ConfigurationError(VoxDropException):
    """
    A required piece of configuration (such as the token signing secret) is
    missing or unusable. Fatal at startup.
    """

    pass
