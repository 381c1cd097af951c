"""
Domain model for dispute-resolution cases.

This module defines the immutable case record returned by the repository
layer together with its value objects:
- Case lifecycle status and the allowed transition graph
- Append-only panelist assignments with per-entry status
- Resolution progress tracking across the assigned panel
- Document/note metadata lists
- Dashboard aggregates and list results

Records are frozen; changes go through explicit repository operations.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from disputedesk.app.models.domain.pagination import Pagination
from disputedesk.app.models.domain.user import PanelistSummary, UserSummary
from disputedesk.app.utils.datetime_utils import parse_datetime


class CaseType(str, Enum):
    """Kinds of dispute handled by the desk."""

    MARRIAGE = "marriage"
    LAND = "land"
    PROPERTY = "property"
    FAMILY = "family"


class CaseStatus(str, Enum):
    """Case lifecycle status."""

    OPEN = "open"                        # Submitted by a client, nobody assigned
    ASSIGNED = "assigned"                # A caseworker owns the case
    PANEL_ASSIGNED = "panel_assigned"    # Reviewers appointed
    IN_PROGRESS = "in_progress"          # At least one resolution submitted
    RESOLVED = "resolved"                # Every active panelist submitted
    CLOSED = "closed"                    # Terminal; record is kept

    def can_transition_to(self, new_status: "CaseStatus") -> bool:
        """Check the transition graph; administrative overrides bypass this."""
        return new_status in _STATUS_TRANSITIONS[self]


_STATUS_TRANSITIONS: Dict[CaseStatus, FrozenSet[CaseStatus]] = {
    CaseStatus.OPEN: frozenset({CaseStatus.ASSIGNED}),
    CaseStatus.ASSIGNED: frozenset({CaseStatus.ASSIGNED, CaseStatus.PANEL_ASSIGNED}),
    CaseStatus.PANEL_ASSIGNED: frozenset({CaseStatus.PANEL_ASSIGNED, CaseStatus.IN_PROGRESS}),
    CaseStatus.IN_PROGRESS: frozenset({CaseStatus.IN_PROGRESS, CaseStatus.RESOLVED}),
    CaseStatus.RESOLVED: frozenset({CaseStatus.CLOSED}),
    CaseStatus.CLOSED: frozenset(),
}


def statuses_leading_to(target: CaseStatus) -> List[CaseStatus]:
    """All statuses from which ``target`` is reachable in one step."""
    return [status for status in CaseStatus if status.can_transition_to(target)]


class CasePriority(str, Enum):
    """Case priority levels for workflow management."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class AssignmentStatus(str, Enum):
    """Status of one panelist assignment entry."""

    ACTIVE = "active"
    REMOVED = "removed"
    COMPLETED = "completed"


class NoteType(str, Enum):
    GENERAL = "general"
    PROGRESS = "progress"
    INTERNAL = "internal"


class ResolutionStatus(str, Enum):
    """Summary of panel submissions derived from resolution progress."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    PARTIAL = "partial"
    COMPLETE = "complete"


@dataclass(frozen=True)
class PanelistAssignment:
    """One entry of the append-only panel assignment list."""

    panelist_id: str
    assigned_by: str
    assigned_at: datetime
    status: AssignmentStatus = AssignmentStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == AssignmentStatus.ACTIVE

    def to_document(self) -> Dict[str, Any]:
        return {
            "panelist_id": self.panelist_id,
            "assigned_by": self.assigned_by,
            "assigned_at": self.assigned_at,
            "status": self.status.value,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "PanelistAssignment":
        return cls(
            panelist_id=doc["panelist_id"],
            assigned_by=doc["assigned_by"],
            assigned_at=parse_datetime(doc["assigned_at"]),
            status=AssignmentStatus(doc.get("status", AssignmentStatus.ACTIVE.value)),
        )


@dataclass(frozen=True)
class Party:
    """A party to the dispute as entered on the intake form."""

    name: str
    contact: str
    role: str

    def to_document(self) -> Dict[str, Any]:
        return {"name": self.name, "contact": self.contact, "role": self.role}

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Party":
        return cls(name=doc["name"], contact=doc["contact"], role=doc["role"])


@dataclass(frozen=True)
class DocumentRecord:
    """
    Metadata of a file held in object storage.

    The bytes never pass through this layer; ``key`` identifies the object.
    """

    name: str
    url: str
    key: str
    size: int
    mimetype: str
    uploaded_at: datetime

    def to_document(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "url": self.url,
            "key": self.key,
            "size": self.size,
            "mimetype": self.mimetype,
            "uploaded_at": self.uploaded_at,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "DocumentRecord":
        return cls(
            name=doc.get("name", ""),
            url=doc.get("url", ""),
            key=doc.get("key", ""),
            size=int(doc.get("size", 0)),
            mimetype=doc.get("mimetype", "application/octet-stream"),
            uploaded_at=parse_datetime(doc.get("uploaded_at")),
        )


@dataclass(frozen=True)
class CaseNote:
    """Append-only note attached to a case."""

    content: str
    created_by: str
    created_by_role: str
    created_at: datetime
    note_type: NoteType = NoteType.GENERAL
    panelist_id: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "created_by": self.created_by,
            "created_by_role": self.created_by_role,
            "panelist_id": self.panelist_id,
            "note_type": self.note_type.value,
            "created_at": self.created_at,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "CaseNote":
        return cls(
            content=doc.get("content", ""),
            created_by=doc.get("created_by", ""),
            created_by_role=doc.get("created_by_role", "admin"),
            created_at=parse_datetime(doc.get("created_at")),
            note_type=NoteType(doc.get("note_type", NoteType.GENERAL.value)),
            panelist_id=doc.get("panelist_id"),
        )


@dataclass(frozen=True)
class ResolutionProgress:
    """
    Count of panelists who submitted a resolution versus the panel size.

    Invariant: ``0 <= submitted <= total``.
    """

    total: int = 0
    submitted: int = 0
    last_updated: Optional[datetime] = None

    def __post_init__(self):
        if self.total < 0 or self.submitted < 0:
            raise ValueError("Resolution progress counters cannot be negative")
        if self.submitted > self.total:
            raise ValueError(
                f"Submitted resolutions ({self.submitted}) exceed panel size ({self.total})"
            )

    @property
    def is_complete(self) -> bool:
        return self.total > 0 and self.submitted == self.total

    @property
    def status(self) -> ResolutionStatus:
        if self.submitted == 0:
            return ResolutionStatus.NOT_STARTED
        if self.is_complete:
            return ResolutionStatus.COMPLETE
        if self.submitted == 1:
            return ResolutionStatus.IN_PROGRESS
        return ResolutionStatus.PARTIAL

    def to_document(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "submitted": self.submitted,
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_document(cls, doc: Optional[Dict[str, Any]]) -> "ResolutionProgress":
        doc = doc or {}
        return cls(
            total=int(doc.get("total", 0)),
            submitted=int(doc.get("submitted", 0)),
            last_updated=parse_datetime(doc.get("last_updated")),
        )


@dataclass(frozen=True)
class Case:
    """
    Immutable snapshot of a case document.

    ``created_by`` never changes after creation, and ``assigned_panelists``,
    ``documents`` and ``notes`` only ever grow.
    """

    case_id: str
    title: str
    description: str
    type: CaseType
    created_by: str
    created_at: datetime
    updated_at: datetime
    status: CaseStatus = CaseStatus.OPEN
    priority: CasePriority = CasePriority.MEDIUM
    assigned_to: Optional[str] = None
    assigned_at: Optional[datetime] = None
    assigned_panelists: Tuple[PanelistAssignment, ...] = ()
    panel_assigned_at: Optional[datetime] = None
    parties: Tuple[Party, ...] = ()
    documents: Tuple[DocumentRecord, ...] = ()
    notes: Tuple[CaseNote, ...] = ()
    resolution_progress: ResolutionProgress = field(default_factory=ResolutionProgress)
    finalized_by: Tuple[str, ...] = ()
    finalized_at: Optional[datetime] = None

    @property
    def active_panelist_ids(self) -> List[str]:
        return [entry.panelist_id for entry in self.assigned_panelists if entry.is_active]

    def has_active_panelist(self, panelist_id: Optional[str]) -> bool:
        if not panelist_id:
            return False
        return any(
            entry.panelist_id == panelist_id and entry.is_active
            for entry in self.assigned_panelists
        )

    @property
    def resolution_status(self) -> ResolutionStatus:
        return self.resolution_progress.status

    @property
    def is_closed(self) -> bool:
        return self.status == CaseStatus.CLOSED

    def to_document(self) -> Dict[str, Any]:
        """Convert the record into its stored document form."""
        return {
            "case_id": self.case_id,
            "title": self.title,
            "description": self.description,
            "type": self.type.value,
            "status": self.status.value,
            "priority": self.priority.value,
            "created_by": self.created_by,
            "assigned_to": self.assigned_to,
            "assigned_at": self.assigned_at,
            "assigned_panelists": [entry.to_document() for entry in self.assigned_panelists],
            "panel_assigned_at": self.panel_assigned_at,
            "parties": [party.to_document() for party in self.parties],
            "documents": [doc.to_document() for doc in self.documents],
            "notes": [note.to_document() for note in self.notes],
            "resolution_progress": self.resolution_progress.to_document(),
            "finalized_by": list(self.finalized_by),
            "finalized_at": self.finalized_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Case":
        """
        Build a record from a stored (possibly projected) document.

        Fields absent from a projection fall back to their defaults.
        """
        return cls(
            case_id=doc["case_id"],
            title=doc.get("title", ""),
            description=doc.get("description", ""),
            type=CaseType(doc["type"]),
            status=CaseStatus(doc.get("status", CaseStatus.OPEN.value)),
            priority=CasePriority(doc.get("priority", CasePriority.MEDIUM.value)),
            created_by=doc["created_by"],
            assigned_to=doc.get("assigned_to"),
            assigned_at=parse_datetime(doc.get("assigned_at")),
            assigned_panelists=tuple(
                PanelistAssignment.from_document(entry)
                for entry in doc.get("assigned_panelists", [])
            ),
            panel_assigned_at=parse_datetime(doc.get("panel_assigned_at")),
            parties=tuple(Party.from_document(p) for p in doc.get("parties", [])),
            documents=tuple(DocumentRecord.from_document(d) for d in doc.get("documents", [])),
            notes=tuple(CaseNote.from_document(n) for n in doc.get("notes", [])),
            resolution_progress=ResolutionProgress.from_document(doc.get("resolution_progress")),
            finalized_by=tuple(doc.get("finalized_by", [])),
            finalized_at=parse_datetime(doc.get("finalized_at")),
            created_at=parse_datetime(doc["created_at"]),
            updated_at=parse_datetime(doc.get("updated_at", doc["created_at"])),
        )

    def __str__(self) -> str:
        return f"Case({self.case_id}, '{self.title}', {self.status.value})"


@dataclass(frozen=True)
class PanelistAssignmentDetails:
    """Assignment entry with the panelist reference resolved."""

    assignment: PanelistAssignment
    panelist: Optional[PanelistSummary] = None
    assigned_by: Optional[UserSummary] = None


@dataclass(frozen=True)
class CaseDetails:
    """Case together with display records for its references."""

    case: Case
    owner: Optional[UserSummary] = None
    assignee: Optional[UserSummary] = None
    panelists: Tuple[PanelistAssignmentDetails, ...] = ()


@dataclass(frozen=True)
class FieldCount:
    """One bucket of a grouped count."""

    value: str
    count: int


@dataclass(frozen=True)
class DashboardStats:
    """Case counts grouped by status and by type."""

    by_status: Tuple[FieldCount, ...] = ()
    by_type: Tuple[FieldCount, ...] = ()

    @property
    def total_cases(self) -> int:
        return sum(bucket.count for bucket in self.by_status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "by_status": [{"status": b.value, "count": b.count} for b in self.by_status],
            "by_type": [{"type": b.value, "count": b.count} for b in self.by_type],
            "total_cases": self.total_cases,
        }


@dataclass(frozen=True)
class CaseListResult:
    cases: Tuple[Case, ...]
    pagination: Pagination
