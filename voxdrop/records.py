"""
The account and message records kept by the account store.

Records are treated as immutable once built. An account's inbox is a tuple
and appending a message produces a new `AccountRecord`. This lets the store
hand records to callers, and lets readers look at the current map while a
writer is building the next one, without either side seeing a half-made
change.
"""

# system imports
#
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple


####################################################################
#
def utcnow() -> datetime:
    return datetime.now(timezone.utc)


####################################################################
#
def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO 8601 timestamp from the snapshot. Naive values are taken
    to be UTC.
    """
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


##################################################################
##################################################################
#
class MessageRecord:
    """
    One delivered message: a reference to the uploaded media, an optional
    transcript, when we received it, and whatever the sender side wanted to
    pass along (`sender_meta`). We never look inside `attachment_ref` or
    `sender_meta`.
    """

    ##################################################################
    #
    def __init__(
        self,
        attachment_ref: str,
        transcript: str = "",
        received_at: Optional[datetime] = None,
        sender_meta: Optional[Dict[str, Any]] = None,
    ):
        self.attachment_ref = attachment_ref
        self.transcript = transcript if transcript else ""
        self.received_at = received_at
        self.sender_meta = dict(sender_meta) if sender_meta else {}

    ##################################################################
    #
    def stamped(self, received_at: datetime) -> "MessageRecord":
        """
        Return a copy of this message with `received_at` set.
        """
        return MessageRecord(
            self.attachment_ref,
            transcript=self.transcript,
            received_at=received_at,
            sender_meta=self.sender_meta,
        )

    ##################################################################
    #
    def to_dict(self) -> Dict[str, Any]:
        return {
            "attachment_ref": self.attachment_ref,
            "transcript": self.transcript,
            "received_at": (
                self.received_at.isoformat() if self.received_at else None
            ),
            "sender_meta": dict(self.sender_meta),
        }

    ##################################################################
    #
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MessageRecord":
        received_at = data.get("received_at")
        return cls(
            data["attachment_ref"],
            transcript=data.get("transcript", ""),
            received_at=parse_timestamp(received_at) if received_at else None,
            sender_meta=data.get("sender_meta"),
        )

    ##################################################################
    #
    def __eq__(self, other):
        if not isinstance(other, MessageRecord):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    ##################################################################
    #
    def __repr__(self):
        return (
            f"<MessageRecord {self.attachment_ref!r} "
            f"received_at={self.received_at}>"
        )


##################################################################
##################################################################
#
class AccountRecord:
    """
    An account: the canonical username, the password hash, the inbox, when
    it was created, whether it was created by a delivery rather than by
    someone registering, and the email given when registering (if any.)
    """

    ##################################################################
    #
    def __init__(
        self,
        username: str,
        pw_hash: str,
        inbox: Tuple[MessageRecord, ...] = (),
        created_at: Optional[datetime] = None,
        auto_provisioned: bool = False,
        email: Optional[str] = None,
    ):
        self.username = username
        self.pw_hash = pw_hash
        self.inbox = tuple(inbox)
        self.created_at = created_at if created_at else utcnow()
        self.auto_provisioned = auto_provisioned
        self.email = email

    ##################################################################
    #
    def with_message(self, message: MessageRecord) -> "AccountRecord":
        """
        Return a new account record that is this one with `message`
        appended to the inbox.
        """
        return AccountRecord(
            self.username,
            self.pw_hash,
            inbox=self.inbox + (message,),
            created_at=self.created_at,
            auto_provisioned=self.auto_provisioned,
            email=self.email,
        )

    ##################################################################
    #
    def to_dict(self) -> Dict[str, Any]:
        """
        The snapshot form of this account. The username is not included;
        it is the key the account is stored under.
        """
        return {
            "pw_hash": self.pw_hash,
            "created_at": self.created_at.isoformat(),
            "auto_provisioned": self.auto_provisioned,
            "email": self.email,
            "inbox": [msg.to_dict() for msg in self.inbox],
        }

    ##################################################################
    #
    @classmethod
    def from_dict(cls, username: str, data: Dict[str, Any]) -> "AccountRecord":
        return cls(
            username,
            data["pw_hash"],
            inbox=tuple(MessageRecord.from_dict(m) for m in data["inbox"]),
            created_at=parse_timestamp(data["created_at"]),
            auto_provisioned=bool(data.get("auto_provisioned", False)),
            email=data.get("email"),
        )

    ##################################################################
    #
    def __str__(self):
        return self.username

    ##################################################################
    #
    def __repr__(self):
        # NOTE: Never include the password hash.
        #
        return (
            f"<AccountRecord {self.username!r} messages={len(self.inbox)} "
            f"auto_provisioned={self.auto_provisioned}>"
        )
