"""
Unit tests for the message delivery service.

Test Coverage:
- Posting messages with caller-derived sender identity
- Per-recipient read tracking and unread counts
- Case thread, inbox, sent and recent listings
- Soft deletion rules
"""

import pytest

from conftest import build_case, build_panel_case
from disputedesk.app.core.exceptions import (
    AccessError,
    CaseManagementError,
    ErrorCode,
    MessageError,
    ValidationError,
)
from disputedesk.app.models.api.message_schemas import MessageCreateRequest
from disputedesk.app.models.domain.message import MessagePriority, MessageType, RecipientType
from disputedesk.app.services.message_service import MessageService
from disputedesk.config.settings import MessageSettings, Settings


def message_payload(**overrides):
    payload = {
        "case_id": "case-1",
        "subject": "Hearing date",
        "content": "  The hearing is set for Monday.  ",
        "recipients": [
            {"recipient_type": "party", "name": "Alice", "user_id": "client-a"},
            {"recipient_type": "panelist", "name": "Pat", "user_id": "user-p1", "panelist_id": "p1"},
            {"recipient_type": "panelist", "name": "Pam", "user_id": "user-p2", "panelist_id": "p2"},
        ],
    }
    payload.update(overrides)
    return payload


class TestCreateMessage:
    """Test suite for posting messages."""

    def setup_method(self):
        self.case = build_panel_case(["p1", "p2"])

    async def test_create_message(self, message_service, case_repository, admin):
        case_repository.add(self.case)

        message = await message_service.create_message(message_payload(), admin)

        assert message.case_id == "case-1"
        assert message.content == "The hearing is set for Monday."
        assert message.sender.user_id == "admin-1"
        assert message.sender.role == "admin"
        assert message.sender.name == "Ada Admin"
        assert len(message.recipients) == 3
        assert all(not r.is_read and r.read_at is None for r in message.recipients)
        assert message.message_type == MessageType.GENERAL
        assert message.priority == MessagePriority.NORMAL

    async def test_sender_cannot_be_forged(self, message_service, case_repository, client_a):
        case_repository.add(self.case)
        payload = message_payload(sender={"role": "admin", "user_id": "admin-1", "name": "Fake"})

        message = await message_service.create_message(payload, client_a)

        assert message.sender.user_id == "client-a"
        assert message.sender.role == "client"

    async def test_read_state_cannot_be_forged(self, message_service, case_repository, admin):
        case_repository.add(self.case)
        payload = message_payload(recipients=[
            {"recipient_type": "party", "name": "Alice", "user_id": "client-a", "is_read": True},
        ])

        message = await message_service.create_message(payload, admin)

        assert message.is_unread_for("client-a")

    async def test_panelist_sender_carries_panelist_id(self, message_service, case_repository, panelist_one):
        case_repository.add(self.case)

        message = await message_service.create_message(message_payload(), panelist_one)

        assert message.sender.panelist_id == "p1"

    async def test_missing_case_is_not_found(self, message_service, admin):
        with pytest.raises(CaseManagementError) as exc_info:
            await message_service.create_message(message_payload(), admin)

        assert exc_info.value.error_code == ErrorCode.CASE_NOT_FOUND

    async def test_outsider_cannot_post(self, message_service, case_repository, client_b):
        case_repository.add(self.case)

        with pytest.raises(AccessError):
            await message_service.create_message(message_payload(), client_b)

    @pytest.mark.parametrize("override", [
        {"content": "   "},
        {"content": "x" * 5001},
        {"subject": "s" * 201},
        {"recipients": []},
        {"recipients": [{"recipient_type": "panelist", "name": "Nobody"}]},
        {"message_type": "gossip"},
    ])
    async def test_invalid_payload(self, message_service, case_repository, admin, override):
        case_repository.add(self.case)

        with pytest.raises(ValidationError):
            await message_service.create_message(message_payload(**override), admin)

    async def test_limits_come_from_injected_settings(self, message_repository, case_repository, admin):
        case_repository.add(self.case)
        settings = Settings(messages=MessageSettings(max_content_length=10, max_subject_length=5))
        service = MessageService(message_repository, case_repository, settings)

        with pytest.raises(ValidationError) as exc_info:
            await service.create_message(message_payload(content="x" * 500), admin)
        assert exc_info.value.field_errors[0]["field"] == "content"

        # default subject is longer than 5
        with pytest.raises(ValidationError):
            await service.create_message(message_payload(content="short"), admin)

        message = await service.create_message(message_payload(content="short", subject="Hi"), admin)
        assert message.content == "short"
        assert message_repository.messages[message.message_id] == message

    async def test_request_instance_is_checked_against_injected_limits(
        self, message_repository, case_repository, admin
    ):
        case_repository.add(self.case)
        service = MessageService(
            message_repository, case_repository, Settings(messages=MessageSettings(max_content_length=10))
        )
        request = MessageCreateRequest.model_validate(message_payload(content="y" * 50))

        with pytest.raises(ValidationError):
            await service.create_message(request, admin)

    async def test_attachments_are_stamped(self, message_service, case_repository, admin):
        case_repository.add(self.case)
        payload = message_payload(attachments=[
            {"name": "minutes.pdf", "url": "https://files/m.pdf", "key": "m.pdf", "size": 10},
        ])

        message = await message_service.create_message(payload, admin)

        assert message.attachments[0].key == "m.pdf"
        assert message.attachments[0].uploaded_at == message.created_at


class TestReadTracking:
    """Test suite for per-recipient read state."""

    async def _post(self, message_service, case_repository, admin):
        case_repository.add(build_panel_case(["p1", "p2"]))
        return await message_service.create_message(message_payload(), admin)

    async def test_one_recipient_reads(self, message_service, case_repository, admin):
        message = await self._post(message_service, case_repository, admin)
        before = await message_service.get_unread_count("user-p1")

        updated = await message_service.mark_as_read(message.message_id, "user-p1")

        assert updated.recipient_for("user-p1").is_read
        assert updated.recipient_for("user-p1").read_at is not None
        assert not updated.recipient_for("client-a").is_read
        assert not updated.recipient_for("user-p2").is_read
        assert await message_service.get_unread_count("user-p1") == before - 1
        assert await message_service.get_unread_count("client-a") == 1
        assert await message_service.get_unread_count("user-p2") == 1

    async def test_mark_as_read_is_idempotent(self, message_service, case_repository, admin):
        message = await self._post(message_service, case_repository, admin)

        first = await message_service.mark_as_read(message.message_id, "client-a")
        second = await message_service.mark_as_read(message.message_id, "client-a")

        assert first == second
        assert await message_service.get_unread_count("client-a") == 0

    async def test_non_recipient_gets_message_unchanged(self, message_service, case_repository, admin):
        message = await self._post(message_service, case_repository, admin)

        result = await message_service.mark_as_read(message.message_id, "stranger")

        assert result.recipients == message.recipients

    async def test_missing_message_is_not_found(self, message_service):
        with pytest.raises(MessageError) as exc_info:
            await message_service.mark_as_read("nope", "client-a")

        assert exc_info.value.http_status_code == 404

    async def test_bulk_mark_as_read(self, message_service, case_repository, admin):
        first = await self._post(message_service, case_repository, admin)
        second = await message_service.create_message(message_payload(), admin)

        result = await message_service.bulk_mark_as_read(
            [first.message_id, second.message_id, first.message_id], "client-a"
        )

        assert result.modified == 2
        assert await message_service.get_unread_count("client-a") == 0
        assert await message_service.get_unread_count("user-p2") == 2

    async def test_bulk_mark_with_no_ids(self, message_service):
        result = await message_service.bulk_mark_as_read([], "client-a")

        assert (result.matched, result.modified) == (0, 0)

    async def test_unread_listing(self, message_service, case_repository, admin):
        message = await self._post(message_service, case_repository, admin)

        unread = await message_service.get_unread_messages("user-p2")

        assert unread.unread_count == 1
        assert unread.messages[0].message_id == message.message_id
        assert unread.pagination.total == 1


class TestListingsAndDeletion:
    """Test suite for message listings and soft deletion."""

    async def test_case_thread_is_chronological(self, message_service, case_repository, admin, client_a):
        case_repository.add(build_panel_case(["p1"]))
        first = await message_service.create_message(message_payload(content="first"), admin)
        second = await message_service.create_message(message_payload(content="second"), client_a)

        thread = await message_service.get_messages_by_case("case-1", client_a)

        assert [m.message_id for m in thread.messages] == [first.message_id, second.message_id]
        assert thread.pagination.total == 2

    async def test_case_thread_requires_access(self, message_service, case_repository, client_b):
        case_repository.add(build_case())

        with pytest.raises(AccessError):
            await message_service.get_messages_by_case("case-1", client_b)

    async def test_inbox_and_sent(self, message_service, case_repository, admin):
        case_repository.add(build_case())
        await message_service.create_message(message_payload(), admin)

        inbox = await message_service.get_inbox("client-a")
        sent = await message_service.get_sent_messages("admin-1")

        assert inbox.pagination.total == 1
        assert inbox.unread_count == 1
        assert sent.pagination.total == 1
        assert sent.messages[0].sender.user_id == "admin-1"

    async def test_recent_messages_respects_limit(self, message_service, case_repository, admin):
        case_repository.add(build_case())
        for _ in range(3):
            await message_service.create_message(message_payload(), admin)

        recent = await message_service.get_recent_messages(limit=2)

        assert len(recent) == 2
        assert recent[0].created_at >= recent[1].created_at

    async def test_case_message_stats(self, message_service, case_repository, admin):
        case_repository.add(build_case())
        await message_service.create_message(message_payload(), admin)
        await message_service.create_message(message_payload(message_type="case_update"), admin)
        await message_service.create_message(message_payload(message_type="case_update"), admin)

        stats = await message_service.get_case_message_stats("case-1", admin)

        assert stats.total_messages == 3
        assert stats.by_type == {"case_update": 2, "general": 1}

    async def test_sender_soft_deletes(self, message_service, message_repository, case_repository, client_a):
        case_repository.add(build_case())
        message = await message_service.create_message(message_payload(), client_a)

        deleted = await message_service.delete_message(message.message_id, client_a)

        assert deleted.is_deleted
        assert message.message_id in message_repository.messages
        assert await message_service.get_unread_count("user-p1") == 0
        with pytest.raises(MessageError):
            await message_service.mark_as_read(message.message_id, "user-p1")

    async def test_admin_deletes_any_message(self, message_service, case_repository, client_a, admin):
        case_repository.add(build_case())
        message = await message_service.create_message(message_payload(), client_a)

        deleted = await message_service.delete_message(message.message_id, admin)

        assert deleted.is_deleted

    async def test_recipient_cannot_delete(self, message_service, case_repository, admin, panelist_one):
        case_repository.add(build_panel_case(["p1"]))
        message = await message_service.create_message(message_payload(), admin)

        with pytest.raises(AccessError) as exc_info:
            await message_service.delete_message(message.message_id, panelist_one)

        assert exc_info.value.error_code == ErrorCode.PERMISSION_INSUFFICIENT
        assert exc_info.value.http_status_code == 403

    async def test_delete_missing_message(self, message_service, admin):
        with pytest.raises(MessageError):
            await message_service.delete_message("nope", admin)


def test_recipient_type_values():
    assert {t.value for t in RecipientType} == {"party", "panelist", "admin", "all_parties"}
