"""
Unit tests for the MongoDB message repository.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import DuplicateKeyError, PyMongoError

from disputedesk.app.core.exceptions import DatabaseError, ErrorCode
from disputedesk.app.models.domain.message import Message, MessageRecipient, MessageSender, RecipientType
from disputedesk.app.repositories.mongodb.message_repository import MessageRepository
from disputedesk.app.utils.datetime_utils import utcnow


def build_message(**overrides):
    now = utcnow()
    fields = {
        "message_id": "msg-1",
        "case_id": "case-1",
        "sender": MessageSender(role="admin", user_id="admin-1", name="Ada"),
        "content": "Hearing moved to Tuesday",
        "created_at": now,
        "updated_at": now,
        "recipients": (
            MessageRecipient(recipient_type=RecipientType.PARTY, name="Alice", user_id="client-a"),
        ),
    }
    fields.update(overrides)
    return Message(**fields)


def make_cursor(docs):
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.skip.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=docs)
    return cursor


class TestMessageRepository:
    """Test suite for MessageRepository query construction."""

    def setup_method(self):
        self.collection = MagicMock()
        self.collection.insert_one = AsyncMock()
        self.collection.find_one = AsyncMock(return_value=None)
        self.collection.find_one_and_update = AsyncMock(return_value=None)
        self.collection.update_many = AsyncMock()
        self.collection.count_documents = AsyncMock(return_value=0)
        self.collection.create_index = AsyncMock()

        database = MagicMock()
        database.__getitem__.return_value = self.collection
        self.repository = MessageRepository(database)

    async def test_create(self):
        message = build_message()

        await self.repository.create(message)

        self.collection.insert_one.assert_awaited_once_with(message.to_document())

    async def test_create_duplicate_is_constraint_violation(self):
        self.collection.insert_one.side_effect = DuplicateKeyError("E11000")

        with pytest.raises(DatabaseError) as exc_info:
            await self.repository.create(build_message())

        assert exc_info.value.error_code == ErrorCode.DATABASE_CONSTRAINT_VIOLATION
        assert exc_info.value.http_status_code == 409

    async def test_find_by_id_excludes_deleted(self):
        await self.repository.find_by_id("msg-1")

        self.collection.find_one.assert_awaited_once_with(
            {"message_id": "msg-1", "is_deleted": {"$ne": True}}, {"_id": 0}
        )

    async def test_find_by_case_is_oldest_first(self):
        cursor = make_cursor([build_message().to_document()])
        self.collection.find.return_value = cursor

        messages = await self.repository.find_by_case("case-1", page=2, limit=20)

        assert messages[0].message_id == "msg-1"
        self.collection.find.assert_called_once_with(
            {"case_id": "case-1", "is_deleted": {"$ne": True}}, {"_id": 0}
        )
        cursor.sort.assert_called_once_with([("created_at", 1)])
        cursor.skip.assert_called_once_with(20)

    async def test_unread_count_matches_single_recipient_entry(self):
        self.collection.count_documents.return_value = 4

        count = await self.repository.count_unread_by_user("client-a")

        assert count == 4
        self.collection.count_documents.assert_awaited_once_with({
            "recipients": {"$elemMatch": {"user_id": "client-a", "is_read": False}},
            "is_deleted": {"$ne": True},
        })

    async def test_mark_as_read_targets_caller_entry(self):
        read = build_message(recipients=(
            MessageRecipient(recipient_type=RecipientType.PARTY, name="Alice", user_id="client-a",
                             is_read=True, read_at=utcnow()),
        ))
        self.collection.find_one_and_update.return_value = read.to_document()

        message = await self.repository.mark_as_read("msg-1", "client-a")

        assert message.recipient_for("client-a").is_read
        call = self.collection.find_one_and_update.await_args
        query_filter, update = call.args
        assert query_filter == {"message_id": "msg-1", "is_deleted": {"$ne": True}}
        assert update["$set"]["recipients.$[entry].is_read"] is True
        assert "recipients.$[entry].read_at" in update["$set"]
        assert call.kwargs["array_filters"] == [{"entry.user_id": "client-a", "entry.is_read": False}]

    async def test_mark_as_read_missing_message(self):
        assert await self.repository.mark_as_read("nope", "client-a") is None

    async def test_bulk_mark_as_read(self):
        self.collection.update_many.return_value = SimpleNamespace(matched_count=2, modified_count=2)

        result = await self.repository.bulk_mark_as_read(["m1", "m2"], "client-a")

        assert (result.matched, result.modified) == (2, 2)
        query_filter = self.collection.update_many.await_args.args[0]
        assert query_filter["message_id"] == {"$in": ["m1", "m2"]}
        assert query_filter["recipients"] == {"$elemMatch": {"user_id": "client-a", "is_read": False}}

    async def test_soft_delete_sets_flag(self):
        self.collection.find_one_and_update.return_value = build_message(is_deleted=True).to_document()

        message = await self.repository.soft_delete("msg-1")

        assert message.is_deleted
        update = self.collection.find_one_and_update.await_args.args[1]
        assert update["$set"]["is_deleted"] is True

    async def test_find_by_sender_returns_total(self):
        self.collection.find.return_value = make_cursor([])
        self.collection.count_documents.return_value = 7

        messages, total = await self.repository.find_by_sender("admin-1", page=1, limit=5)

        assert messages == []
        assert total == 7

    async def test_case_message_stats(self):
        self.collection.aggregate.return_value = make_cursor([
            {"_id": "general", "count": 3},
            {"_id": "case_update", "count": 1},
        ])

        stats = await self.repository.case_message_stats("case-1")

        assert stats == {"general": 3, "case_update": 1}

    async def test_driver_error_is_wrapped(self):
        self.collection.update_many.side_effect = PyMongoError("timeout")

        with pytest.raises(DatabaseError) as exc_info:
            await self.repository.bulk_mark_as_read(["m1"], "client-a")

        assert exc_info.value.details["collection_name"] == "messages"
        assert exc_info.value.details["original_error"] == "timeout"
