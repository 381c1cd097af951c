"""
Pydantic schemas for message payloads.

The sender block is deliberately absent: it is always composed from the
authenticated caller, so a ``sender`` key in the payload is ignored.
"""

from typing import List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)

from disputedesk.app.models.api.case_schemas import DocumentMetadataRequest
from disputedesk.app.models.domain.message import MessagePriority, MessageType, RecipientType
from disputedesk.config.settings import MessageSettings, get_settings


def _message_limits(info: ValidationInfo) -> MessageSettings:
    """Limits passed by the caller as validation context, else the global settings."""
    context = info.context or {}
    return context.get("messages") or get_settings().messages


class RecipientSchema(BaseModel):
    """One addressee. Read state is not accepted from callers."""

    model_config = ConfigDict(extra="ignore")

    recipient_type: RecipientType
    name: str = Field(..., min_length=1, max_length=200)
    user_id: Optional[str] = None
    panelist_id: Optional[str] = None
    email: Optional[str] = Field(None, max_length=320)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v else v


class MessageCreateRequest(BaseModel):
    """Payload for posting a message into a case thread."""

    model_config = ConfigDict(extra="ignore")

    case_id: str = Field(..., min_length=1)
    recipients: List[RecipientSchema] = Field(..., min_length=1)
    subject: Optional[str] = None
    content: str
    message_type: MessageType = MessageType.GENERAL
    priority: MessagePriority = MessagePriority.NORMAL
    attachments: List[DocumentMetadataRequest] = Field(default_factory=list)

    @field_validator("subject")
    @classmethod
    def validate_subject(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        limit = _message_limits(info).max_subject_length
        if len(v) > limit:
            raise ValueError(f"Subject cannot exceed {limit} characters")
        return v or None

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str, info: ValidationInfo) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Message content is required")
        limit = _message_limits(info).max_content_length
        if len(v) > limit:
            raise ValueError(f"Message content cannot exceed {limit} characters")
        return v

    @model_validator(mode="after")
    def validate_recipient_ids(self) -> "MessageCreateRequest":
        for recipient in self.recipients:
            if recipient.recipient_type == RecipientType.PANELIST and not (
                recipient.panelist_id or recipient.user_id
            ):
                raise ValueError("Panelist recipients need a panelist_id or user_id")
        return self
