"""
MongoDB repository for case thread messages.

Read state lives on each recipient entry, so marking a message read is a
single ``$set`` scoped by ``array_filters`` to the caller's entry. Soft
deleted messages stay in the collection and are excluded from every read.
"""

from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Sequence, Tuple

from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from disputedesk.app.core.exceptions import ErrorCode, raise_database_error
from disputedesk.app.models.domain.message import BulkReadResult, Message
from disputedesk.app.models.domain.pagination import skip_for
from disputedesk.app.utils.datetime_utils import utcnow
from disputedesk.app.utils.logging import database_logger, get_logger, performance_context
from disputedesk.config.settings import DatabaseSettings, get_settings

logger = get_logger(__name__)

NOT_DELETED = {"is_deleted": {"$ne": True}}

NEWEST_FIRST: List[Tuple[str, int]] = [("created_at", DESCENDING)]
OLDEST_FIRST: List[Tuple[str, int]] = [("created_at", ASCENDING)]


def _unread_for(user_id: str) -> Dict[str, Any]:
    # $elemMatch keeps both conditions on the same recipient entry
    return {"recipients": {"$elemMatch": {"user_id": user_id, "is_read": False}}}


class MessageRepository:
    """MongoDB repository for message data operations."""

    def __init__(
        self,
        database: AsyncIOMotorDatabase,
        database_settings: Optional[DatabaseSettings] = None
    ):
        settings = database_settings or get_settings().database
        self._collection_name = settings.messages_collection
        self._collection: AsyncIOMotorCollection = database[self._collection_name]

    @contextmanager
    def _operation(self, operation: str, **context: Any):
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
        with self._operation("ensure_message_indexes"):
            await self._collection.create_index(
                [("message_id", ASCENDING)], unique=True, name="message_id_unique"
            )
            await self._collection.create_index(
                [("case_id", ASCENDING), ("created_at", ASCENDING)],
                name="case_thread"
            )
            await self._collection.create_index(
                [("recipients.user_id", ASCENDING), ("recipients.is_read", ASCENDING)],
                name="recipient_read_state"
            )
            await self._collection.create_index(
                [("sender.user_id", ASCENDING), ("created_at", DESCENDING)],
                name="sender_created"
            )
            await self._collection.create_index(
                [("created_at", DESCENDING)], name="created_desc"
            )
            logger.debug("Message collection indexes ensured")

    async def create(self, message: Message) -> Message:
        """
        Insert a new message document.

        Raises:
            DatabaseError: If the insert fails or the id already exists
        """
        with self._operation("create_message", message_id=message.message_id):
            try:
                await self._collection.insert_one(message.to_document())
            except DuplicateKeyError as e:
                raise_database_error(
                    f"Message with ID {message.message_id} already exists",
                    collection_name=self._collection_name,
                    operation="create_message",
                    original_error=e,
                    error_code=ErrorCode.DATABASE_CONSTRAINT_VIOLATION
                )
            self._log_query("insert_one", 1)

        logger.info(
            "Message stored",
            message_id=message.message_id,
            case_id=message.case_id,
            recipient_count=len(message.recipients)
        )
        return message

    async def find_by_id(self, message_id: str, include_deleted: bool = False) -> Optional[Message]:
        query_filter: Dict[str, Any] = {"message_id": message_id}
        if not include_deleted:
            query_filter.update(NOT_DELETED)

        with self._operation("find_message", message_id=message_id):
            doc = await self._collection.find_one(query_filter, {"_id": 0})
            self._log_query("find_one", 1 if doc else 0)

        return Message.from_document(doc) if doc else None

    async def _find_page(
        self,
        operation: str,
        query_filter: Dict[str, Any],
        page: int,
        limit: int,
        sort: Sequence[Tuple[str, int]]
    ) -> List[Message]:
        with self._operation(operation, page=page, limit=limit):
            cursor = (
                self._collection.find({**query_filter, **NOT_DELETED}, {"_id": 0})
                .sort(list(sort))
                .skip(skip_for(page, limit))
                .limit(limit)
            )
            docs = await cursor.to_list(length=limit)
            self._log_query("find_with_pagination", len(docs))

        return [Message.from_document(doc) for doc in docs]

    async def _count(self, operation: str, query_filter: Dict[str, Any]) -> int:
        with self._operation(operation):
            total = await self._collection.count_documents({**query_filter, **NOT_DELETED})
            self._log_query("count_documents", total)
        return total

    async def find_by_case(self, case_id: str, page: int = 1, limit: int = 20) -> List[Message]:
        """Thread messages for a case, oldest first."""
        return await self._find_page(
            "find_case_messages", {"case_id": case_id}, page, limit, OLDEST_FIRST
        )

    async def count_by_case(self, case_id: str) -> int:
        return await self._count("count_case_messages", {"case_id": case_id})

    async def find_unread_by_user(self, user_id: str, page: int = 1, limit: int = 20) -> List[Message]:
        return await self._find_page(
            "find_unread_messages", _unread_for(user_id), page, limit, NEWEST_FIRST
        )

    async def count_unread_by_user(self, user_id: str) -> int:
        return await self._count("count_unread_messages", _unread_for(user_id))

    async def find_by_recipient(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 20
    ) -> Tuple[List[Message], int]:
        query_filter = {"recipients.user_id": user_id}
        messages = await self._find_page("find_inbox", query_filter, page, limit, NEWEST_FIRST)
        total = await self._count("count_inbox", query_filter)
        return messages, total

    async def find_by_sender(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 20
    ) -> Tuple[List[Message], int]:
        query_filter = {"sender.user_id": user_id}
        messages = await self._find_page("find_sent", query_filter, page, limit, NEWEST_FIRST)
        total = await self._count("count_sent", query_filter)
        return messages, total

    async def find_recent(self, limit: int = 10) -> List[Message]:
        return await self._find_page("find_recent_messages", {}, 1, limit, NEWEST_FIRST)

    async def mark_as_read(self, message_id: str, user_id: str) -> Optional[Message]:
        """
        Mark the caller's recipient entry read.

        Entries that are already read keep their original ``read_at``; a
        caller with no recipient entry gets the document back unchanged.

        Returns:
            The message after the update, or None if it does not exist
        """
        with self._operation("mark_message_read", message_id=message_id, user_id=user_id):
            doc = await self._collection.find_one_and_update(
                {"message_id": message_id, **NOT_DELETED},
                {"$set": {"recipients.$[entry].is_read": True, "recipients.$[entry].read_at": utcnow()}},
                projection={"_id": 0},
                array_filters=[{"entry.user_id": user_id, "entry.is_read": False}],
                return_document=ReturnDocument.AFTER
            )
            self._log_query("find_one_and_update", 1 if doc else 0)

        return Message.from_document(doc) if doc else None

    async def bulk_mark_as_read(self, message_ids: Sequence[str], user_id: str) -> BulkReadResult:
        """Mark the caller's entries read across several messages in one write."""
        query_filter = {
            "message_id": {"$in": list(message_ids)},
            **NOT_DELETED,
            **_unread_for(user_id),
        }

        with self._operation("bulk_mark_messages_read", user_id=user_id, count=len(message_ids)):
            result = await self._collection.update_many(
                query_filter,
                {"$set": {"recipients.$[entry].is_read": True, "recipients.$[entry].read_at": utcnow()}},
                array_filters=[{"entry.user_id": user_id, "entry.is_read": False}]
            )
            self._log_query("update_many", result.modified_count)

        return BulkReadResult(matched=result.matched_count, modified=result.modified_count)

    async def soft_delete(self, message_id: str) -> Optional[Message]:
        with self._operation("soft_delete_message", message_id=message_id):
            doc = await self._collection.find_one_and_update(
                {"message_id": message_id},
                {"$set": {"is_deleted": True, "updated_at": utcnow()}},
                projection={"_id": 0},
                return_document=ReturnDocument.AFTER
            )
            self._log_query("find_one_and_update", 1 if doc else 0)

        return Message.from_document(doc) if doc else None

    async def case_message_stats(self, case_id: str) -> Dict[str, int]:
        """Count a case's messages grouped by message type."""
        pipeline = [
            {"$match": {"case_id": case_id, **NOT_DELETED}},
            {"$group": {"_id": "$message_type", "count": {"$sum": 1}}},
            {"$sort": {"count": -1, "_id": 1}},
        ]

        with self._operation("aggregate_case_messages", case_id=case_id):
            buckets = await self._collection.aggregate(pipeline).to_list(length=None)
            self._log_query("aggregate_group", len(buckets))

        return {str(bucket["_id"]): int(bucket["count"]) for bucket in buckets}
