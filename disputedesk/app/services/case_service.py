"""
Case Lifecycle Service - Business Logic Layer

This module orchestrates case operations on top of the case repository:
- Intake of new cases by clients
- Access-checked reads, listings and partial updates
- Caseworker and panel assignment
- Resolution submissions and finalization
- Dashboard aggregates

Business Rules:
- Status only advances along the transition graph of ``CaseStatus``; an
  administrator's ``update_case`` with a status is the only override
- Non-administrators cannot change status, assignment or priority through
  ``update_case``; those keys are dropped from their patches
- A panelist holds at most one active assignment per case
- A case resolves once every active panelist has submitted

Every mutation is one conditional document update. When the condition does
not hold the case is read again to report either "not found" or the status
that blocked the action.
"""

import asyncio
import uuid
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING

from disputedesk.app.core.access_policy import case_visibility_filter, ensure_case_access
from disputedesk.app.core.exceptions import (
    ErrorCode,
    raise_access_error,
    raise_case_not_found,
    raise_invalid_case_state,
    raise_validation_error,
)
from disputedesk.app.models.api.case_schemas import (
    RESTRICTED_UPDATE_FIELDS,
    CaseCreateRequest,
    CaseListFilters,
    DocumentMetadataRequest,
    NoteCreateRequest,
)
from disputedesk.app.models.domain.case import (
    Case,
    CaseDetails,
    CaseListResult,
    CaseNote,
    CaseStatus,
    DashboardStats,
    DocumentRecord,
    NoteType,
    PanelistAssignment,
    Party,
    statuses_leading_to,
)
from disputedesk.app.models.domain.pagination import Pagination, validate_page_request
from disputedesk.app.models.domain.user import UserContext, UserRole
from disputedesk.app.repositories.mongodb.case_repository import CaseRepository
from disputedesk.app.utils.datetime_utils import utcnow
from disputedesk.app.utils.logging import get_logger, log_business_event, performance_context
from disputedesk.app.utils.validators import parse_payload, require_identifier, strip_fields
from disputedesk.config.settings import Settings, get_settings

logger = get_logger(__name__)


class CaseService:
    """
    Business logic service for dispute case management.

    Provides high-level case operations with access control and state
    machine enforcement. Every method raises a typed exception on failure.
    """

    def __init__(self, case_repository: CaseRepository, settings: Optional[Settings] = None):
        """
        Initialize case service with dependencies.

        Args:
            case_repository: MongoDB case repository
            settings: Application settings, defaults to the cached settings
        """
        self.case_repository = case_repository
        self.settings = settings or get_settings()

        logger.info("CaseService initialized")

    async def create_case(self, data: Union[Dict[str, Any], CaseCreateRequest], client_id: str) -> Case:
        """
        Create a new case owned by ``client_id``.

        Args:
            data: Intake payload
            client_id: Identifier of the submitting client

        Returns:
            The stored case, status ``open``

        Raises:
            ValidationError: If the payload is invalid
        """
        client_id = require_identifier(client_id, "client_id")
        request = parse_payload(CaseCreateRequest, data, context="case")

        with performance_context("case_service_create", user_id=client_id):
            now = utcnow()
            case = Case(
                case_id=uuid.uuid4().hex,
                title=request.title,
                description=request.description,
                type=request.type,
                priority=request.priority,
                created_by=client_id,
                parties=tuple(
                    Party(name=p.name, contact=p.contact, role=p.role) for p in request.parties
                ),
                created_at=now,
                updated_at=now,
            )

            try:
                stored = await self.case_repository.create(case)
            except Exception as e:
                logger.error(f"Failed to create case: {e}", exc_info=True)
                raise

        log_business_event("case_created", user_id=client_id, case_id=stored.case_id, type=stored.type.value)
        return stored

    async def get_case_by_id(self, case_id: str, user: UserContext) -> CaseDetails:
        """
        Retrieve a case with its references populated.

        Raises:
            CaseManagementError: If the case does not exist
            AccessError: If the caller may not see the case
        """
        with performance_context("case_service_get", case_id=case_id):
            details = await self.case_repository.find_by_id_with_relations(case_id)
            if details is None:
                raise_case_not_found(case_id, user_id=user.user_id)

            ensure_case_access(details.case, user)
            return details

    async def update_case(
        self,
        case_id: str,
        patch: Union[Dict[str, Any], BaseModel],
        user: UserContext
    ) -> Case:
        """
        Apply a partial update to a case.

        For callers other than administrators ``status``, ``assigned_to``,
        ``assigned_panelists`` and ``priority`` are removed from the patch
        without an error. The rest is validated by the repository, so an
        unknown key raises ``ValidationError``.

        Returns:
            The updated case, or the unchanged case when nothing is left to apply
        """
        if isinstance(patch, BaseModel):
            patch = patch.model_dump(exclude_unset=True)
        if not isinstance(patch, dict):
            raise_validation_error(
                "Case update must be an object",
                field_errors=[{"field": "patch", "message": "expected a mapping", "type": "type_error"}]
            )

        with performance_context("case_service_update", case_id=case_id):
            case = await self._load_accessible(case_id, user)

            if not user.is_admin:
                dropped = [key for key in RESTRICTED_UPDATE_FIELDS if key in patch]
                if dropped:
                    logger.warning(
                        "Restricted fields dropped from case update",
                        case_id=case_id,
                        user_id=user.user_id,
                        role=user.role_name,
                        fields=dropped
                    )
                patch = strip_fields(patch, RESTRICTED_UPDATE_FIELDS)

            if not patch:
                return case

            updated = await self.case_repository.update_by_id(case_id, patch)
            if updated is None:
                raise_case_not_found(case_id, user_id=user.user_id)

        logger.info(
            "Case updated",
            case_id=case_id,
            user_id=user.user_id,
            fields=sorted(patch)
        )
        if "status" in patch and updated.status != case.status:
            log_business_event(
                "case_status_overridden",
                user_id=user.user_id,
                case_id=case_id,
                from_status=case.status.value,
                to_status=updated.status.value
            )
        return updated

    async def assign_case(self, case_id: str, admin_id: str, assigned_by: str) -> Case:
        """
        Assign a caseworker and move the case to ``assigned``.

        Reassignment is allowed while the case is still ``assigned``.

        Raises:
            CaseManagementError: Not found, or the case is past assignment
        """
        admin_id = require_identifier(admin_id, "admin_id")
        assigned_by = require_identifier(assigned_by, "assigned_by")

        with performance_context("case_service_assign", case_id=case_id):
            updated = await self.case_repository.assign_caseworker(
                case_id,
                admin_id,
                statuses_leading_to(CaseStatus.ASSIGNED)
            )
            if updated is None:
                await self._raise_for_rejected_update(case_id, "assign")

        log_business_event(
            "case_assigned",
            user_id=assigned_by,
            case_id=case_id,
            assigned_to=admin_id
        )
        return updated

    async def assign_panelists(
        self,
        case_id: str,
        panelist_ids: Sequence[str],
        assigned_by: str
    ) -> Case:
        """
        Appoint reviewers to a case and move it to ``panel_assigned``.

        Each distinct panelist gets one conditional append, applied only when
        they hold no active entry yet, so repeated or concurrent calls never
        create a second active entry. Panelists already on the panel are
        skipped.

        Raises:
            ValidationError: If no panelist ids are given
            CaseManagementError: Not found, or the case does not accept a panel
        """
        if not panelist_ids:
            raise_validation_error(
                "At least one panelist is required",
                field_errors=[{"field": "panelist_ids", "message": "must not be empty", "type": "missing"}]
            )
        assigned_by = require_identifier(assigned_by, "assigned_by")
        distinct_ids: List[str] = list(
            dict.fromkeys(require_identifier(pid, "panelist_id") for pid in panelist_ids)
        )
        allowed_from = statuses_leading_to(CaseStatus.PANEL_ASSIGNED)

        with performance_context("case_service_assign_panelists", case_id=case_id,
                                 panelist_count=len(distinct_ids)):
            added: List[str] = []
            for panelist_id in distinct_ids:
                assignment = PanelistAssignment(
                    panelist_id=panelist_id,
                    assigned_by=assigned_by,
                    assigned_at=utcnow(),
                )
                if await self.case_repository.push_panelist_assignment(case_id, assignment, allowed_from):
                    added.append(panelist_id)

            updated = await self.case_repository.mark_panel_assigned(case_id, allowed_from)
            if updated is None:
                await self._raise_for_rejected_update(case_id, "assign panelists to")

        skipped = [pid for pid in distinct_ids if pid not in added]
        if skipped:
            logger.info("Panelists already on the panel", case_id=case_id, panelist_ids=skipped)

        log_business_event(
            "panel_assigned",
            user_id=assigned_by,
            case_id=case_id,
            added=added,
            panel_size=updated.resolution_progress.total
        )
        return updated

    async def remove_panelist(self, case_id: str, panelist_id: str, removed_by: str) -> Case:
        """
        Take a panelist off a case.

        The assignment entry stays in the history with status ``removed``.
        A panelist who already submitted a resolution cannot be removed. If
        the remaining panel has all submitted, the case resolves.
        """
        panelist_id = require_identifier(panelist_id, "panelist_id")
        removed_by = require_identifier(removed_by, "removed_by")

        with performance_context("case_service_remove_panelist", case_id=case_id):
            updated = await self.case_repository.remove_panelist_assignment(case_id, panelist_id)
            if updated is None:
                await self._raise_for_rejected_update(case_id, "remove panelist from")

            if updated.status == CaseStatus.IN_PROGRESS and updated.resolution_progress.is_complete:
                updated = await self.case_repository.mark_resolved(case_id) or updated

        log_business_event(
            "panelist_removed",
            user_id=removed_by,
            case_id=case_id,
            panelist_id=panelist_id,
            status=updated.status.value
        )
        return updated

    async def record_resolution_submission(self, case_id: str, panelist_id: str) -> Case:
        """
        Count a panelist's resolution submission.

        The first submission moves the case to ``in_progress``; the last one
        resolves it and stamps ``finalized_at``. Submitting twice is a no-op
        that returns the current case.

        Raises:
            CaseManagementError: Not found, or the case is not collecting resolutions
            AccessError: If the panelist holds no active assignment
        """
        panelist_id = require_identifier(panelist_id, "panelist_id")

        with performance_context("case_service_record_resolution", case_id=case_id):
            updated = await self.case_repository.record_resolution_submission(case_id, panelist_id)

            if updated is None:
                current = await self.case_repository.find_by_id(case_id)
                if current is None:
                    raise_case_not_found(case_id)
                if panelist_id in current.finalized_by:
                    logger.info(
                        "Resolution already recorded",
                        case_id=case_id,
                        panelist_id=panelist_id
                    )
                    return current
                if not current.has_active_panelist(panelist_id):
                    raise_access_error(
                        "Panelist is not assigned to this case",
                        user_id=panelist_id,
                        role=UserRole.PANELIST.value,
                        resource_type="case",
                        resource_id=case_id,
                        required_permission="active_panelist",
                        error_code=ErrorCode.CASE_ACCESS_DENIED
                    )
                raise_invalid_case_state(case_id, current.status.value, "record a resolution for")

            if updated.resolution_progress.is_complete:
                # Another submitter may have resolved it first
                updated = (
                    await self.case_repository.mark_resolved(case_id)
                    or await self.case_repository.find_by_id(case_id)
                    or updated
                )

        log_business_event(
            "resolution_submitted",
            case_id=case_id,
            panelist_id=panelist_id,
            submitted=updated.resolution_progress.submitted,
            total=updated.resolution_progress.total,
            status=updated.status.value
        )
        return updated

    async def close_case(self, case_id: str, closed_by: str) -> Case:
        """Close a resolved case. The record is kept."""
        closed_by = require_identifier(closed_by, "closed_by")

        with performance_context("case_service_close", case_id=case_id):
            updated = await self.case_repository.transition_status(
                case_id,
                statuses_leading_to(CaseStatus.CLOSED),
                CaseStatus.CLOSED
            )
            if updated is None:
                await self._raise_for_rejected_update(case_id, "close")

        log_business_event("case_closed", user_id=closed_by, case_id=case_id)
        return updated

    async def add_note(
        self,
        case_id: str,
        content: str,
        user: UserContext,
        note_type: NoteType = NoteType.GENERAL
    ) -> Case:
        request = parse_payload(
            NoteCreateRequest, {"content": content, "note_type": note_type}, context="note"
        )

        with performance_context("case_service_add_note", case_id=case_id):
            await self._load_accessible(case_id, user)

            note = CaseNote(
                content=request.content,
                created_by=user.user_id,
                created_by_role=user.role_name,
                created_at=utcnow(),
                note_type=request.note_type,
                panelist_id=user.panelist_id if user.role == UserRole.PANELIST else None,
            )
            updated = await self.case_repository.push_note(case_id, note)
            if updated is None:
                raise_case_not_found(case_id, user_id=user.user_id)

        logger.info("Note added to case", case_id=case_id, user_id=user.user_id)
        return updated

    async def add_document(
        self,
        case_id: str,
        document: Union[Dict[str, Any], DocumentMetadataRequest],
        user: UserContext
    ) -> Case:
        """Attach metadata of an already uploaded file to a case."""
        request = parse_payload(DocumentMetadataRequest, document, context="document")

        with performance_context("case_service_add_document", case_id=case_id):
            await self._load_accessible(case_id, user)

            record = DocumentRecord(
                name=request.name,
                url=request.url,
                key=request.key,
                size=request.size,
                mimetype=request.mimetype,
                uploaded_at=utcnow(),
            )
            updated = await self.case_repository.push_document(case_id, record)
            if updated is None:
                raise_case_not_found(case_id, user_id=user.user_id)

        logger.info(
            "Document added to case",
            case_id=case_id,
            user_id=user.user_id,
            key=record.key,
            size=record.size
        )
        return updated

    async def get_dashboard_stats(self, user: UserContext) -> DashboardStats:
        """
        Case counts by status and by type across the whole store.

        Callers are expected to gate this to administrators.
        """
        with performance_context("case_service_dashboard", user_id=user.user_id):
            by_status, by_type = await asyncio.gather(
                self.case_repository.aggregate_by_field("status"),
                self.case_repository.aggregate_by_field("type"),
            )

        return DashboardStats(by_status=tuple(by_status), by_type=tuple(by_type))

    async def list_cases(
        self,
        user: UserContext,
        filters: Optional[Union[Dict[str, Any], CaseListFilters]] = None,
        page: int = 1,
        limit: Optional[int] = None
    ) -> CaseListResult:
        """
        List the cases visible to ``user``.

        The role filter is applied first; explicit filters can only narrow it.
        """
        limit = limit if limit is not None else self.settings.pagination.default_case_limit
        validate_page_request(page, limit, self.settings.pagination.max_limit)
        request = parse_payload(CaseListFilters, filters or {}, context="case filters")

        query_filter = case_visibility_filter(user)
        for field in ("status", "type", "priority"):
            value = getattr(request, field)
            if value is not None:
                query_filter[field] = value.value

        direction = DESCENDING if request.sort_order == "desc" else ASCENDING

        with performance_context("case_service_list", user_id=user.user_id, page=page):
            cases, total = await self.case_repository.find_many(
                query_filter,
                page=page,
                limit=limit,
                sort=[(request.sort_by, direction)]
            )

        return CaseListResult(
            cases=tuple(cases),
            pagination=Pagination(total=total, page=page, limit=limit)
        )

    async def _load_accessible(self, case_id: str, user: UserContext) -> Case:
        case = await self.case_repository.find_by_id(case_id)
        if case is None:
            raise_case_not_found(case_id, user_id=user.user_id)
        ensure_case_access(case, user)
        return case

    async def _raise_for_rejected_update(self, case_id: str, action: str) -> None:
        """Report why a conditional update matched nothing."""
        current = await self.case_repository.find_by_id(case_id)
        if current is None:
            raise_case_not_found(case_id)

        logger.warning(
            "Case update rejected by status",
            case_id=case_id,
            action=action,
            status=current.status.value
        )
        raise_invalid_case_state(case_id, current.status.value, action)
