"""
Domain model for case thread messages.

A message belongs to exactly one case. Its sender block and recipient list
are fixed when it is created; afterwards only the per-recipient read state
and the soft-delete flag change.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from disputedesk.app.models.domain.case import DocumentRecord
from disputedesk.app.models.domain.pagination import Pagination
from disputedesk.app.models.domain.user import UserContext
from disputedesk.app.utils.datetime_utils import parse_datetime


class RecipientType(str, Enum):
    PARTY = "party"
    PANELIST = "panelist"
    ADMIN = "admin"
    ALL_PARTIES = "all_parties"


class MessageType(str, Enum):
    GENERAL = "general"
    MEETING_NOTIFICATION = "meeting_notification"
    CASE_UPDATE = "case_update"
    RESOLUTION_REQUEST = "resolution_request"


class MessagePriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


@dataclass(frozen=True)
class MessageSender:
    """Sender identity, taken from the authenticated caller."""

    role: str
    user_id: str
    name: str
    panelist_id: Optional[str] = None

    @classmethod
    def from_user(cls, user: UserContext) -> "MessageSender":
        return cls(
            role=user.role_name,
            user_id=user.user_id,
            name=user.name,
            panelist_id=user.panelist_id,
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "user_id": self.user_id,
            "panelist_id": self.panelist_id,
            "name": self.name,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "MessageSender":
        return cls(
            role=doc["role"],
            user_id=doc["user_id"],
            name=doc.get("name", ""),
            panelist_id=doc.get("panelist_id"),
        )


@dataclass(frozen=True)
class MessageRecipient:
    """One addressee of a message with its own read state."""

    recipient_type: RecipientType
    name: str
    user_id: Optional[str] = None
    panelist_id: Optional[str] = None
    email: Optional[str] = None
    is_read: bool = False
    read_at: Optional[datetime] = None

    def to_document(self) -> Dict[str, Any]:
        return {
            "recipient_type": self.recipient_type.value,
            "user_id": self.user_id,
            "panelist_id": self.panelist_id,
            "name": self.name,
            "email": self.email,
            "is_read": self.is_read,
            "read_at": self.read_at,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "MessageRecipient":
        return cls(
            recipient_type=RecipientType(doc["recipient_type"]),
            name=doc.get("name", ""),
            user_id=doc.get("user_id"),
            panelist_id=doc.get("panelist_id"),
            email=doc.get("email"),
            is_read=bool(doc.get("is_read", False)),
            read_at=parse_datetime(doc.get("read_at")),
        )


@dataclass(frozen=True)
class Message:
    """Immutable snapshot of a message document."""

    message_id: str
    case_id: str
    sender: MessageSender
    content: str
    created_at: datetime
    updated_at: datetime
    recipients: Tuple[MessageRecipient, ...] = ()
    subject: Optional[str] = None
    message_type: MessageType = MessageType.GENERAL
    priority: MessagePriority = MessagePriority.NORMAL
    attachments: Tuple[DocumentRecord, ...] = ()
    is_deleted: bool = False

    def recipient_for(self, user_id: str) -> Optional[MessageRecipient]:
        for recipient in self.recipients:
            if recipient.user_id == user_id:
                return recipient
        return None

    def is_unread_for(self, user_id: str) -> bool:
        return any(r.user_id == user_id and not r.is_read for r in self.recipients)

    def is_sent_by(self, user_id: str) -> bool:
        return self.sender.user_id == user_id

    def to_document(self) -> Dict[str, Any]:
        return {
            "message_id": self.message_id,
            "case_id": self.case_id,
            "sender": self.sender.to_document(),
            "recipients": [r.to_document() for r in self.recipients],
            "subject": self.subject,
            "content": self.content,
            "message_type": self.message_type.value,
            "priority": self.priority.value,
            "attachments": [a.to_document() for a in self.attachments],
            "is_deleted": self.is_deleted,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Message":
        return cls(
            message_id=doc["message_id"],
            case_id=doc["case_id"],
            sender=MessageSender.from_document(doc["sender"]),
            recipients=tuple(MessageRecipient.from_document(r) for r in doc.get("recipients", [])),
            subject=doc.get("subject"),
            content=doc.get("content", ""),
            message_type=MessageType(doc.get("message_type", MessageType.GENERAL.value)),
            priority=MessagePriority(doc.get("priority", MessagePriority.NORMAL.value)),
            attachments=tuple(DocumentRecord.from_document(a) for a in doc.get("attachments", [])),
            is_deleted=bool(doc.get("is_deleted", False)),
            created_at=parse_datetime(doc["created_at"]),
            updated_at=parse_datetime(doc.get("updated_at", doc["created_at"])),
        )


@dataclass(frozen=True)
class MessageListResult:
    messages: Tuple[Message, ...]
    pagination: Pagination
    unread_count: Optional[int] = None


@dataclass(frozen=True)
class BulkReadResult:
    """Outcome of marking several messages read for one recipient."""

    matched: int
    modified: int


@dataclass(frozen=True)
class CaseMessageStats:
    case_id: str
    total_messages: int
    by_type: Dict[str, int]
