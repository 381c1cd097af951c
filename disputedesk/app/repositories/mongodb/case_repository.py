"""
MongoDB repository for dispute-resolution cases.

This module provides the data access layer for cases:
- CRUD operations returning immutable ``Case`` records
- Paginated, projected listings
- Reference population (owner, caseworker, panelists) in one aggregation
- Grouped counts for dashboards
- Single-document atomic updates for every multi-field mutation

No business rules live here. Status preconditions are passed in by the
service and encoded in the update filter so each write is atomic.
"""

from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from disputedesk.app.core.exceptions import ErrorCode, raise_case_error, raise_database_error
from disputedesk.app.models.api.case_schemas import CaseUpdateRequest
from disputedesk.app.models.domain.case import (
    AssignmentStatus,
    Case,
    CaseDetails,
    CaseNote,
    CaseStatus,
    DocumentRecord,
    FieldCount,
    PanelistAssignment,
    PanelistAssignmentDetails,
)
from disputedesk.app.models.domain.pagination import skip_for
from disputedesk.app.models.domain.user import PanelistSummary, UserSummary
from disputedesk.app.utils.datetime_utils import utcnow
from disputedesk.app.utils.logging import database_logger, get_logger, performance_context
from disputedesk.app.utils.validators import parse_payload
from disputedesk.config.settings import DatabaseSettings, get_settings

logger = get_logger(__name__)

# Fields returned by listings; notes, documents and parties stay behind
LIST_PROJECTION = {
    "_id": 0,
    "case_id": 1,
    "title": 1,
    "type": 1,
    "status": 1,
    "priority": 1,
    "created_by": 1,
    "assigned_to": 1,
    "assigned_at": 1,
    "assigned_panelists": 1,
    "panel_assigned_at": 1,
    "resolution_progress": 1,
    "created_at": 1,
    "updated_at": 1,
}

USER_DISPLAY_FIELDS = {"_id": 0, "user_id": 1, "name": 1, "email": 1, "role": 1, "phone": 1}
PANELIST_DISPLAY_FIELDS = {"_id": 0, "panelist_id": 1, "name": 1, "email": 1, "specialization": 1}

DEFAULT_SORT: List[Tuple[str, int]] = [("created_at", DESCENDING)]


class CaseRepository:
    """
    MongoDB repository for case data operations.

    The database handle is injected; the repository owns query shape,
    projection and pagination arithmetic only.
    """

    def __init__(
        self,
        database: AsyncIOMotorDatabase,
        database_settings: Optional[DatabaseSettings] = None
    ):
        settings = database_settings or get_settings().database
        self._collection_name = settings.cases_collection
        self._users_collection = settings.users_collection
        self._panelists_collection = settings.panelists_collection
        self._collection: AsyncIOMotorCollection = database[self._collection_name]

    @contextmanager
    def _operation(self, operation: str, **context: Any):
        """Time an operation and wrap driver failures into DatabaseError."""
        try:
            with performance_context(f"mongodb_{operation}", **context):
                yield
        except PyMongoError as e:
            raise_database_error(
                f"Failed to {operation.replace('_', ' ')}: {e}",
                collection_name=self._collection_name,
                operation=operation,
                original_error=e
            )

    def _log_query(self, operation: str, result_count: Optional[int]) -> None:
        database_logger.query_executed(
            database_type="mongodb",
            operation=operation,
            collection=self._collection_name,
            result_count=result_count
        )

    async def ensure_indexes(self) -> None:
        """Create the indexes backing the hot query paths."""
        with self._operation("ensure_case_indexes"):
            await self._collection.create_index(
                [("case_id", ASCENDING)], unique=True, name="case_id_unique"
            )
            await self._collection.create_index(
                [("created_by", ASCENDING), ("created_at", DESCENDING)],
                name="owner_created"
            )
            await self._collection.create_index(
                [("status", ASCENDING), ("created_at", DESCENDING)],
                name="status_created"
            )
            await self._collection.create_index(
                [("type", ASCENDING), ("created_at", DESCENDING)],
                name="type_created"
            )
            await self._collection.create_index(
                [("assigned_to", ASCENDING), ("status", ASCENDING)],
                name="assignee_status"
            )
            await self._collection.create_index(
                [
                    ("assigned_panelists.panelist_id", ASCENDING),
                    ("assigned_panelists.status", ASCENDING),
                ],
                name="panelist_assignments"
            )
            logger.debug("Case collection indexes ensured")

    async def create(self, case: Case) -> Case:
        """
        Insert a new case document.

        Raises:
            CaseManagementError: If the case id already exists
            DatabaseError: If the insert fails
        """
        with self._operation("create_case", case_id=case.case_id):
            try:
                await self._collection.insert_one(case.to_document())
            except DuplicateKeyError:
                raise_case_error(
                    f"Case with ID {case.case_id} already exists",
                    case_id=case.case_id,
                    user_id=case.created_by,
                    error_code=ErrorCode.CASE_DUPLICATE_ID
                )
            self._log_query("insert_one", 1)

        logger.info(
            "Case stored",
            case_id=case.case_id,
            created_by=case.created_by,
            type=case.type.value
        )
        return case

    async def find_by_id(self, case_id: str) -> Optional[Case]:
        """Get a case by its identifier, or None."""
        with self._operation("find_case", case_id=case_id):
            doc = await self._collection.find_one({"case_id": case_id}, {"_id": 0})
            self._log_query("find_one", 1 if doc else 0)

        return Case.from_document(doc) if doc else None

    async def find_by_id_with_relations(self, case_id: str) -> Optional[CaseDetails]:
        """
        Get a case with owner, caseworker and panelist references resolved.

        Uses a single aggregation with ``$lookup`` sub-pipelines so only the
        display fields of the referenced documents are fetched.
        """
        pipeline = [
            {"$match": {"case_id": case_id}},
            {"$project": {"_id": 0}},
            self._lookup_users("$created_by", "_owner", single=True),
            self._lookup_users("$assigned_to", "_assignee", single=True),
            self._lookup_users("$assigned_panelists.assigned_by", "_assigners"),
            {
                "$lookup": {
                    "from": self._panelists_collection,
                    "let": {"ids": {"$ifNull": ["$assigned_panelists.panelist_id", []]}},
                    "pipeline": [
                        {"$match": {"$expr": {"$in": ["$panelist_id", "$$ids"]}}},
                        {"$project": PANELIST_DISPLAY_FIELDS},
                    ],
                    "as": "_panelists",
                }
            },
        ]

        with self._operation("find_case_with_relations", case_id=case_id):
            docs = await self._collection.aggregate(pipeline).to_list(length=1)
            self._log_query("aggregate_lookup", len(docs))

        if not docs:
            return None

        doc = docs[0]
        owners = doc.pop("_owner", [])
        assignees = doc.pop("_assignee", [])
        assigners = {u["user_id"]: UserSummary.from_document(u) for u in doc.pop("_assigners", [])}
        panelists = {
            p["panelist_id"]: PanelistSummary.from_document(p) for p in doc.pop("_panelists", [])
        }

        case = Case.from_document(doc)
        return CaseDetails(
            case=case,
            owner=UserSummary.from_document(owners[0]) if owners else None,
            assignee=UserSummary.from_document(assignees[0]) if assignees else None,
            panelists=tuple(
                PanelistAssignmentDetails(
                    assignment=entry,
                    panelist=panelists.get(entry.panelist_id),
                    assigned_by=assigners.get(entry.assigned_by),
                )
                for entry in case.assigned_panelists
            ),
        )

    def _lookup_users(self, reference: str, alias: str, single: bool = False) -> Dict[str, Any]:
        match = (
            {"$eq": ["$user_id", "$$ref"]}
            if single
            else {"$in": ["$user_id", {"$ifNull": ["$$ref", []]}]}
        )
        return {
            "$lookup": {
                "from": self._users_collection,
                "let": {"ref": reference},
                "pipeline": [
                    {"$match": {"$expr": match}},
                    {"$project": USER_DISPLAY_FIELDS},
                ],
                "as": alias,
            }
        }

    async def find_many(
        self,
        query_filter: Dict[str, Any],
        page: int = 1,
        limit: int = 10,
        sort: Optional[Sequence[Tuple[str, int]]] = None,
        projection: Optional[Dict[str, int]] = None
    ) -> Tuple[List[Case], int]:
        """
        List cases matching ``query_filter`` with offset pagination.

        Returns:
            Tuple of (cases for the page, total matching count)
        """
        sort_spec = list(sort or DEFAULT_SORT)

        with self._operation("list_cases", page=page, limit=limit):
            total_count = await self._collection.count_documents(query_filter)

            cursor = (
                self._collection.find(query_filter, projection or LIST_PROJECTION)
                .sort(sort_spec)
                .skip(skip_for(page, limit))
                .limit(limit)
            )
            docs = await cursor.to_list(length=limit)
            self._log_query("find_with_pagination", len(docs))

        logger.debug(
            "Cases listed",
            total_count=total_count,
            returned_count=len(docs),
            page=page,
            limit=limit
        )
        return [Case.from_document(doc) for doc in docs], total_count

    async def count(self, query_filter: Optional[Dict[str, Any]] = None) -> int:
        with self._operation("count_cases"):
            return await self._collection.count_documents(query_filter or {})

    async def update_by_id(self, case_id: str, patch: Dict[str, Any]) -> Optional[Case]:
        """
        Apply a partial update after validating it against the case schema.

        Returns:
            The updated case, or None if it does not exist

        Raises:
            ValidationError: If the patch does not satisfy ``CaseUpdateRequest``
        """
        validated = parse_payload(CaseUpdateRequest, patch, context="case update")
        set_doc = validated.model_dump(mode="json", exclude_unset=True)

        if not set_doc:
            return await self.find_by_id(case_id)

        set_doc["updated_at"] = utcnow()
        return await self._find_one_and_update(
            "update_case",
            {"case_id": case_id},
            {"$set": set_doc},
            case_id=case_id
        )

    async def aggregate_by_field(self, field: str) -> List[FieldCount]:
        """Count cases grouped by ``field``, largest group first."""
        pipeline = [
            {"$group": {"_id": f"${field}", "count": {"$sum": 1}}},
            {"$sort": {"count": -1, "_id": 1}},
        ]

        with self._operation("aggregate_cases", field=field):
            buckets = await self._collection.aggregate(pipeline).to_list(length=None)
            self._log_query("aggregate_group", len(buckets))

        return [
            FieldCount(value=str(bucket["_id"]), count=int(bucket["count"]))
            for bucket in buckets
        ]

    async def transition_status(
        self,
        case_id: str,
        allowed_from: Iterable[CaseStatus],
        to_status: CaseStatus,
        extra_set: Optional[Dict[str, Any]] = None,
        extra_filter: Optional[Dict[str, Any]] = None
    ) -> Optional[Case]:
        """
        Atomically move a case to ``to_status`` if it is in ``allowed_from``.

        Returns:
            The updated case, or None when the case is missing or the
            precondition did not hold
        """
        query_filter = {
            "case_id": case_id,
            "status": {"$in": [status.value for status in allowed_from]},
            **(extra_filter or {}),
        }
        set_doc = {"status": to_status.value, "updated_at": utcnow(), **(extra_set or {})}

        return await self._find_one_and_update(
            "transition_case_status",
            query_filter,
            {"$set": set_doc},
            case_id=case_id,
            to_status=to_status.value
        )

    async def assign_caseworker(
        self,
        case_id: str,
        assignee_id: str,
        allowed_from: Iterable[CaseStatus]
    ) -> Optional[Case]:
        """Set the caseworker and move the case to ``assigned`` in one write."""
        return await self.transition_status(
            case_id,
            allowed_from,
            CaseStatus.ASSIGNED,
            extra_set={"assigned_to": assignee_id, "assigned_at": utcnow()}
        )

    async def mark_panel_assigned(
        self,
        case_id: str,
        allowed_from: Iterable[CaseStatus]
    ) -> Optional[Case]:
        return await self.transition_status(
            case_id,
            allowed_from,
            CaseStatus.PANEL_ASSIGNED,
            extra_set={"panel_assigned_at": utcnow()}
        )

    async def mark_resolved(self, case_id: str) -> Optional[Case]:
        """Resolve an in-progress case once every counted panelist has submitted."""
        return await self.transition_status(
            case_id,
            [CaseStatus.IN_PROGRESS],
            CaseStatus.RESOLVED,
            extra_set={"finalized_at": utcnow()},
            extra_filter={
                "resolution_progress.total": {"$gt": 0},
                "$expr": {
                    "$eq": ["$resolution_progress.submitted", "$resolution_progress.total"]
                },
            }
        )

    async def push_panelist_assignment(
        self,
        case_id: str,
        assignment: PanelistAssignment,
        allowed_from: Iterable[CaseStatus]
    ) -> bool:
        """
        Append an active assignment unless the panelist already holds one.

        The "no active entry" condition is part of the update filter, so
        concurrent assignments of the same panelist cannot both succeed.

        Returns:
            True if the entry was appended
        """
        query_filter = {
            "case_id": case_id,
            "status": {"$in": [status.value for status in allowed_from]},
            "assigned_panelists": {
                "$not": {
                    "$elemMatch": {
                        "panelist_id": assignment.panelist_id,
                        "status": AssignmentStatus.ACTIVE.value,
                    }
                }
            },
        }
        update = {
            "$push": {"assigned_panelists": assignment.to_document()},
            "$inc": {"resolution_progress.total": 1},
            "$set": {"updated_at": utcnow()},
        }

        with self._operation("push_panelist_assignment", case_id=case_id,
                             panelist_id=assignment.panelist_id):
            result = await self._collection.update_one(query_filter, update)
            self._log_query("update_one_push", result.modified_count)

        return result.modified_count > 0

    async def remove_panelist_assignment(self, case_id: str, panelist_id: str) -> Optional[Case]:
        """
        Flip a panelist's active entry to ``removed``; the entry itself stays.

        Only applies while the panelist has not submitted a resolution.
        """
        query_filter = {
            "case_id": case_id,
            "status": {"$in": [CaseStatus.PANEL_ASSIGNED.value, CaseStatus.IN_PROGRESS.value]},
            "finalized_by": {"$ne": panelist_id},
            "assigned_panelists": {
                "$elemMatch": {"panelist_id": panelist_id, "status": AssignmentStatus.ACTIVE.value}
            },
        }
        update = {
            "$set": {
                "assigned_panelists.$[entry].status": AssignmentStatus.REMOVED.value,
                "updated_at": utcnow(),
            },
            "$inc": {"resolution_progress.total": -1},
        }

        return await self._find_one_and_update(
            "remove_panelist_assignment",
            query_filter,
            update,
            array_filters=[
                {"entry.panelist_id": panelist_id, "entry.status": AssignmentStatus.ACTIVE.value}
            ],
            case_id=case_id,
            panelist_id=panelist_id
        )

    async def record_resolution_submission(self, case_id: str, panelist_id: str) -> Optional[Case]:
        """
        Count one panelist's resolution submission.

        The filter requires an active assignment, no earlier submission by the
        same panelist and ``submitted < total``, so the counter can only grow
        and never passes the panel size.
        """
        now = utcnow()
        query_filter = {
            "case_id": case_id,
            "status": {"$in": [CaseStatus.PANEL_ASSIGNED.value, CaseStatus.IN_PROGRESS.value]},
            "assigned_panelists": {
                "$elemMatch": {"panelist_id": panelist_id, "status": AssignmentStatus.ACTIVE.value}
            },
            "finalized_by": {"$ne": panelist_id},
            "$expr": {"$lt": ["$resolution_progress.submitted", "$resolution_progress.total"]},
        }
        update = {
            "$inc": {"resolution_progress.submitted": 1},
            "$addToSet": {"finalized_by": panelist_id},
            "$set": {
                "resolution_progress.last_updated": now,
                "status": CaseStatus.IN_PROGRESS.value,
                "updated_at": now,
            },
        }

        return await self._find_one_and_update(
            "record_resolution_submission",
            query_filter,
            update,
            case_id=case_id,
            panelist_id=panelist_id
        )

    async def push_note(self, case_id: str, note: CaseNote) -> Optional[Case]:
        return await self._find_one_and_update(
            "push_case_note",
            {"case_id": case_id},
            {"$push": {"notes": note.to_document()}, "$set": {"updated_at": utcnow()}},
            case_id=case_id
        )

    async def push_document(self, case_id: str, document: DocumentRecord) -> Optional[Case]:
        return await self._find_one_and_update(
            "push_case_document",
            {"case_id": case_id},
            {"$push": {"documents": document.to_document()}, "$set": {"updated_at": utcnow()}},
            case_id=case_id
        )

    async def _find_one_and_update(
        self,
        operation: str,
        query_filter: Dict[str, Any],
        update: Dict[str, Any],
        array_filters: Optional[List[Dict[str, Any]]] = None,
        **context: Any
    ) -> Optional[Case]:
        kwargs: Dict[str, Any] = {
            "projection": {"_id": 0},
            "return_document": ReturnDocument.AFTER,
        }
        if array_filters:
            kwargs["array_filters"] = array_filters

        with self._operation(operation, **context):
            doc = await self._collection.find_one_and_update(query_filter, update, **kwargs)
            self._log_query("find_one_and_update", 1 if doc else 0)

        return Case.from_document(doc) if doc else None
