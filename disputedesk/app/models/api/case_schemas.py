"""
Pydantic schemas for case payloads.

These models validate what callers send before anything reaches the store:
- Case creation (intake form)
- Partial updates (validated again by the repository before persisting)
- Listing filters and sort options
- Note and document metadata appends
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from disputedesk.app.models.domain.case import CasePriority, CaseStatus, CaseType, NoteType


def _strip_required(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("cannot be empty or whitespace only")
    return value


class PartySchema(BaseModel):
    """A party to the dispute."""

    model_config = ConfigDict(extra="ignore")

    name: str = Field(..., min_length=1, max_length=200)
    contact: str = Field(..., min_length=1, max_length=200)
    role: str = Field(..., min_length=1, max_length=100)


class CaseCreateRequest(BaseModel):
    """
    Intake payload for a new case.

    Ownership and status are never read from the payload: unknown keys such
    as ``created_by`` or ``status`` are ignored.
    """

    model_config = ConfigDict(extra="ignore")

    title: str = Field(..., min_length=1, max_length=200, description="Short case title")
    description: str = Field(..., min_length=1, max_length=5000, description="Dispute summary")
    type: CaseType = Field(..., description="Kind of dispute")
    priority: CasePriority = Field(CasePriority.MEDIUM, description="Workflow priority")
    parties: List[PartySchema] = Field(default_factory=list, max_length=50)

    @field_validator("title", "description")
    @classmethod
    def validate_text(cls, v: str) -> str:
        return _strip_required(v)


class CaseUpdateRequest(BaseModel):
    """
    Partial case update.

    Only the fields below can be patched; append-only lists, ownership and
    resolution tracking have their own operations. Unknown keys are rejected,
    and so is an explicit null for anything but ``assigned_to``.
    """

    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, min_length=1, max_length=5000)
    type: Optional[CaseType] = None
    priority: Optional[CasePriority] = None
    status: Optional[CaseStatus] = None
    assigned_to: Optional[str] = None
    parties: Optional[List[PartySchema]] = Field(None, max_length=50)

    @field_validator("title", "description", "type", "priority", "status", "parties",
                     mode="before")
    @classmethod
    def reject_null(cls, v):
        # only assigned_to may be cleared
        if v is None:
            raise ValueError("cannot be null")
        return v

    @field_validator("title", "description")
    @classmethod
    def validate_text(cls, v: str) -> str:
        return _strip_required(v)


# Fields only an administrator may change through update_case
RESTRICTED_UPDATE_FIELDS = ("status", "assigned_to", "assigned_panelists", "priority")


class CaseListFilters(BaseModel):
    """Explicit listing filters applied after the role filter."""

    model_config = ConfigDict(extra="ignore")

    status: Optional[CaseStatus] = None
    type: Optional[CaseType] = None
    priority: Optional[CasePriority] = None
    sort_by: Literal["created_at", "updated_at", "status", "title"] = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"


class DocumentMetadataRequest(BaseModel):
    """Object-storage metadata for an uploaded file."""

    model_config = ConfigDict(extra="ignore")

    name: str = Field(..., min_length=1, max_length=255)
    url: str = Field(..., min_length=1)
    key: str = Field(..., min_length=1)
    size: int = Field(..., ge=0)
    mimetype: str = Field("application/octet-stream", min_length=1, max_length=255)


class NoteCreateRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    content: str = Field(..., min_length=1, max_length=5000)
    note_type: NoteType = NoteType.GENERAL

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        return _strip_required(v)
