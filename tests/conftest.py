"""
Shared fixtures for the Dispute Desk test suite.

Services are exercised against in-memory repositories that honour the same
contract as the MongoDB repositories, including the conditional update
semantics (a rejected precondition returns ``None``/``False`` and changes
nothing).
"""

from collections import Counter
from dataclasses import replace
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import pytest

from disputedesk.app.core.exceptions import ErrorCode, raise_case_error
from disputedesk.app.models.api.case_schemas import CaseUpdateRequest
from disputedesk.app.models.domain.case import (
    AssignmentStatus,
    Case,
    CaseDetails,
    CaseNote,
    CaseStatus,
    CaseType,
    DocumentRecord,
    FieldCount,
    PanelistAssignment,
    PanelistAssignmentDetails,
    Party,
    ResolutionProgress,
)
from disputedesk.app.models.domain.message import BulkReadResult, Message
from disputedesk.app.models.domain.user import PanelistSummary, UserContext, UserRole, UserSummary
from disputedesk.app.services.case_service import CaseService
from disputedesk.app.services.message_service import MessageService
from disputedesk.app.utils.datetime_utils import utcnow
from disputedesk.app.utils.validators import parse_payload
from disputedesk.config.settings import Settings, clear_settings_cache


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _case_matches(case: Case, query_filter: Dict[str, Any]) -> bool:
    for key, expected in query_filter.items():
        if key == "assigned_panelists":
            condition = expected["$elemMatch"]
            if not any(
                entry.panelist_id == condition["panelist_id"]
                and entry.status.value == condition["status"]
                for entry in case.assigned_panelists
            ):
                return False
            continue
        if _plain(getattr(case, key)) != expected:
            return False
    return True


class InMemoryCaseRepository:
    """Dictionary-backed stand-in for ``CaseRepository``."""

    def __init__(self):
        self.cases: Dict[str, Case] = {}
        self.users: Dict[str, UserSummary] = {}
        self.panelists: Dict[str, PanelistSummary] = {}

    def add(self, case: Case) -> Case:
        self.cases[case.case_id] = case
        return case

    async def ensure_indexes(self) -> None:
        return None

    async def create(self, case: Case) -> Case:
        if case.case_id in self.cases:
            raise_case_error(
                f"Case with ID {case.case_id} already exists",
                case_id=case.case_id,
                error_code=ErrorCode.CASE_DUPLICATE_ID
            )
        return self.add(case)

    async def find_by_id(self, case_id: str) -> Optional[Case]:
        return self.cases.get(case_id)

    async def find_by_id_with_relations(self, case_id: str) -> Optional[CaseDetails]:
        case = self.cases.get(case_id)
        if case is None:
            return None
        return CaseDetails(
            case=case,
            owner=self.users.get(case.created_by),
            assignee=self.users.get(case.assigned_to) if case.assigned_to else None,
            panelists=tuple(
                PanelistAssignmentDetails(
                    assignment=entry,
                    panelist=self.panelists.get(entry.panelist_id),
                    assigned_by=self.users.get(entry.assigned_by),
                )
                for entry in case.assigned_panelists
            ),
        )

    async def find_many(
        self,
        query_filter: Dict[str, Any],
        page: int = 1,
        limit: int = 10,
        sort: Optional[Sequence[Tuple[str, int]]] = None,
        projection: Optional[Dict[str, int]] = None
    ) -> Tuple[List[Case], int]:
        matches = [case for case in self.cases.values() if _case_matches(case, query_filter)]
        field, direction = (sort or [("created_at", -1)])[0]
        matches.sort(key=lambda case: _plain(getattr(case, field)), reverse=direction < 0)
        start = (page - 1) * limit
        return matches[start:start + limit], len(matches)

    async def count(self, query_filter: Optional[Dict[str, Any]] = None) -> int:
        return sum(1 for case in self.cases.values() if _case_matches(case, query_filter or {}))

    async def update_by_id(self, case_id: str, patch: Dict[str, Any]) -> Optional[Case]:
        changes = parse_payload(CaseUpdateRequest, patch).model_dump(exclude_unset=True)
        case = self.cases.get(case_id)
        if case is None:
            return None
        if not changes:
            return case
        if "parties" in changes:
            changes["parties"] = tuple(Party(**party) for party in changes["parties"] or [])
        return self.add(replace(case, updated_at=utcnow(), **changes))

    async def aggregate_by_field(self, field: str) -> List[FieldCount]:
        counts = Counter(_plain(getattr(case, field)) for case in self.cases.values())
        return [
            FieldCount(value=value, count=count)
            for value, count in sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        ]

    async def transition_status(
        self,
        case_id: str,
        allowed_from: Iterable[CaseStatus],
        to_status: CaseStatus,
        extra_set: Optional[Dict[str, Any]] = None,
        extra_filter: Optional[Dict[str, Any]] = None
    ) -> Optional[Case]:
        case = self.cases.get(case_id)
        if case is None or case.status not in list(allowed_from):
            return None
        return self.add(replace(case, status=to_status, updated_at=utcnow(), **(extra_set or {})))

    async def assign_caseworker(self, case_id, assignee_id, allowed_from):
        return await self.transition_status(
            case_id, allowed_from, CaseStatus.ASSIGNED,
            extra_set={"assigned_to": assignee_id, "assigned_at": utcnow()}
        )

    async def mark_panel_assigned(self, case_id, allowed_from):
        return await self.transition_status(
            case_id, allowed_from, CaseStatus.PANEL_ASSIGNED,
            extra_set={"panel_assigned_at": utcnow()}
        )

    async def mark_resolved(self, case_id: str) -> Optional[Case]:
        case = self.cases.get(case_id)
        if case is None or case.status != CaseStatus.IN_PROGRESS or not case.resolution_progress.is_complete:
            return None
        return self.add(replace(
            case, status=CaseStatus.RESOLVED, finalized_at=utcnow(), updated_at=utcnow()
        ))

    async def push_panelist_assignment(self, case_id, assignment, allowed_from) -> bool:
        case = self.cases.get(case_id)
        if case is None or case.status not in list(allowed_from):
            return False
        if case.has_active_panelist(assignment.panelist_id):
            return False
        progress = case.resolution_progress
        self.add(replace(
            case,
            assigned_panelists=case.assigned_panelists + (assignment,),
            resolution_progress=replace(progress, total=progress.total + 1),
            updated_at=utcnow(),
        ))
        return True

    async def remove_panelist_assignment(self, case_id: str, panelist_id: str) -> Optional[Case]:
        case = self.cases.get(case_id)
        if (
            case is None
            or case.status not in (CaseStatus.PANEL_ASSIGNED, CaseStatus.IN_PROGRESS)
            or panelist_id in case.finalized_by
            or not case.has_active_panelist(panelist_id)
        ):
            return None
        entries = tuple(
            replace(entry, status=AssignmentStatus.REMOVED)
            if entry.panelist_id == panelist_id and entry.is_active
            else entry
            for entry in case.assigned_panelists
        )
        progress = case.resolution_progress
        return self.add(replace(
            case,
            assigned_panelists=entries,
            resolution_progress=replace(progress, total=progress.total - 1),
            updated_at=utcnow(),
        ))

    async def record_resolution_submission(self, case_id: str, panelist_id: str) -> Optional[Case]:
        case = self.cases.get(case_id)
        progress = case.resolution_progress if case else None
        if (
            case is None
            or case.status not in (CaseStatus.PANEL_ASSIGNED, CaseStatus.IN_PROGRESS)
            or not case.has_active_panelist(panelist_id)
            or panelist_id in case.finalized_by
            or progress.submitted >= progress.total
        ):
            return None
        now = utcnow()
        return self.add(replace(
            case,
            status=CaseStatus.IN_PROGRESS,
            finalized_by=case.finalized_by + (panelist_id,),
            resolution_progress=replace(progress, submitted=progress.submitted + 1, last_updated=now),
            updated_at=now,
        ))

    async def push_note(self, case_id: str, note: CaseNote) -> Optional[Case]:
        case = self.cases.get(case_id)
        if case is None:
            return None
        return self.add(replace(case, notes=case.notes + (note,), updated_at=utcnow()))

    async def push_document(self, case_id: str, document: DocumentRecord) -> Optional[Case]:
        case = self.cases.get(case_id)
        if case is None:
            return None
        return self.add(replace(case, documents=case.documents + (document,), updated_at=utcnow()))


class InMemoryMessageRepository:
    """Dictionary-backed stand-in for ``MessageRepository``."""

    def __init__(self):
        self.messages: Dict[str, Message] = {}

    def _live(self) -> List[Message]:
        return [m for m in self.messages.values() if not m.is_deleted]

    @staticmethod
    def _page(messages: List[Message], page: int, limit: int, newest_first: bool) -> List[Message]:
        ordered = sorted(messages, key=lambda m: m.created_at, reverse=newest_first)
        start = (page - 1) * limit
        return ordered[start:start + limit]

    async def ensure_indexes(self) -> None:
        return None

    async def create(self, message: Message) -> Message:
        self.messages[message.message_id] = message
        return message

    async def find_by_id(self, message_id: str, include_deleted: bool = False) -> Optional[Message]:
        message = self.messages.get(message_id)
        if message is None or (message.is_deleted and not include_deleted):
            return None
        return message

    async def find_by_case(self, case_id: str, page: int = 1, limit: int = 20) -> List[Message]:
        return self._page([m for m in self._live() if m.case_id == case_id], page, limit, False)

    async def count_by_case(self, case_id: str) -> int:
        return sum(1 for m in self._live() if m.case_id == case_id)

    async def find_unread_by_user(self, user_id: str, page: int = 1, limit: int = 20) -> List[Message]:
        return self._page([m for m in self._live() if m.is_unread_for(user_id)], page, limit, True)

    async def count_unread_by_user(self, user_id: str) -> int:
        return sum(1 for m in self._live() if m.is_unread_for(user_id))

    async def find_by_recipient(self, user_id: str, page: int = 1, limit: int = 20):
        matches = [m for m in self._live() if m.recipient_for(user_id) is not None]
        return self._page(matches, page, limit, True), len(matches)

    async def find_by_sender(self, user_id: str, page: int = 1, limit: int = 20):
        matches = [m for m in self._live() if m.is_sent_by(user_id)]
        return self._page(matches, page, limit, True), len(matches)

    async def find_recent(self, limit: int = 10) -> List[Message]:
        return self._page(self._live(), 1, limit, True)

    def _mark_read(self, message: Message, user_id: str) -> Message:
        now = utcnow()
        recipients = tuple(
            replace(r, is_read=True, read_at=now) if r.user_id == user_id and not r.is_read else r
            for r in message.recipients
        )
        updated = replace(message, recipients=recipients)
        self.messages[message.message_id] = updated
        return updated

    async def mark_as_read(self, message_id: str, user_id: str) -> Optional[Message]:
        message = await self.find_by_id(message_id)
        if message is None:
            return None
        return self._mark_read(message, user_id)

    async def bulk_mark_as_read(self, message_ids: Sequence[str], user_id: str) -> BulkReadResult:
        matched = [
            m for m in self._live()
            if m.message_id in set(message_ids) and m.is_unread_for(user_id)
        ]
        for message in matched:
            self._mark_read(message, user_id)
        return BulkReadResult(matched=len(matched), modified=len(matched))

    async def soft_delete(self, message_id: str) -> Optional[Message]:
        message = self.messages.get(message_id)
        if message is None:
            return None
        updated = replace(message, is_deleted=True, updated_at=utcnow())
        self.messages[message_id] = updated
        return updated

    async def case_message_stats(self, case_id: str) -> Dict[str, int]:
        counts = Counter(m.message_type.value for m in self._live() if m.case_id == case_id)
        return dict(counts)


def build_case(**overrides: Any) -> Case:
    """Case record with sensible defaults for tests."""
    now = utcnow()
    fields: Dict[str, Any] = {
        "case_id": "case-1",
        "title": "Boundary wall dispute",
        "description": "Neighbours disagree over a shared wall",
        "type": CaseType.LAND,
        "created_by": "client-a",
        "created_at": now,
        "updated_at": now,
    }
    fields.update(overrides)
    return Case(**fields)


def build_assignment(panelist_id: str, status: AssignmentStatus = AssignmentStatus.ACTIVE,
                     minutes_ago: int = 5) -> PanelistAssignment:
    return PanelistAssignment(
        panelist_id=panelist_id,
        assigned_by="admin-1",
        assigned_at=utcnow() - timedelta(minutes=minutes_ago),
        status=status,
    )


def build_panel_case(panelist_ids: Sequence[str], **overrides: Any) -> Case:
    """Case with an active panel of ``panelist_ids`` in ``panel_assigned``."""
    fields: Dict[str, Any] = {
        "status": CaseStatus.PANEL_ASSIGNED,
        "assigned_to": "admin-1",
        "assigned_panelists": tuple(build_assignment(pid) for pid in panelist_ids),
        "resolution_progress": ResolutionProgress(total=len(panelist_ids)),
    }
    fields.update(overrides)
    return build_case(**fields)


@pytest.fixture
def settings():
    clear_settings_cache()
    yield Settings()
    clear_settings_cache()


@pytest.fixture
def admin():
    return UserContext(user_id="admin-1", role=UserRole.ADMIN, name="Ada Admin")


@pytest.fixture
def client_a():
    return UserContext(user_id="client-a", role=UserRole.CLIENT, name="Alice Client")


@pytest.fixture
def client_b():
    return UserContext(user_id="client-b", role=UserRole.CLIENT, name="Bob Client")


@pytest.fixture
def panelist_one():
    return UserContext(user_id="user-p1", role=UserRole.PANELIST, panelist_id="p1", name="Pat One")


@pytest.fixture
def panelist_two():
    return UserContext(user_id="user-p2", role=UserRole.PANELIST, panelist_id="p2", name="Pam Two")


@pytest.fixture
def case_repository():
    return InMemoryCaseRepository()


@pytest.fixture
def message_repository():
    return InMemoryMessageRepository()


@pytest.fixture
def case_service(case_repository, settings):
    return CaseService(case_repository, settings)


@pytest.fixture
def message_service(message_repository, case_repository, settings):
    return MessageService(message_repository, case_repository, settings)
