"""
Message Delivery Service - Business Logic Layer

Posts messages into case threads and tracks per-recipient read state.
The sender block always comes from the caller's identity and the recipient
list is fixed once stored; only read flags and the soft-delete flag change
afterwards.
"""

import uuid
from typing import Any, Dict, List, Optional, Sequence, Union

from disputedesk.app.core.access_policy import ensure_case_access, ensure_message_delete
from disputedesk.app.core.exceptions import raise_case_not_found, raise_message_not_found
from disputedesk.app.models.api.message_schemas import MessageCreateRequest
from disputedesk.app.models.domain.case import Case, DocumentRecord
from disputedesk.app.models.domain.message import (
    BulkReadResult,
    CaseMessageStats,
    Message,
    MessageListResult,
    MessageRecipient,
    MessageSender,
)
from disputedesk.app.models.domain.pagination import Pagination, validate_page_request
from disputedesk.app.models.domain.user import UserContext
from disputedesk.app.repositories.mongodb.case_repository import CaseRepository
from disputedesk.app.repositories.mongodb.message_repository import MessageRepository
from disputedesk.app.utils.datetime_utils import utcnow
from disputedesk.app.utils.logging import get_logger, log_business_event, performance_context
from disputedesk.app.utils.validators import parse_payload, require_identifier
from disputedesk.config.settings import Settings, get_settings

logger = get_logger(__name__)


class MessageService:
    """Business logic service for case thread messaging."""

    def __init__(
        self,
        message_repository: MessageRepository,
        case_repository: CaseRepository,
        settings: Optional[Settings] = None
    ):
        self.message_repository = message_repository
        self.case_repository = case_repository
        self.settings = settings or get_settings()

        logger.info("MessageService initialized")

    async def create_message(
        self,
        payload: Union[Dict[str, Any], MessageCreateRequest],
        sender: UserContext
    ) -> Message:
        """
        Post a message into a case thread.

        Args:
            payload: Message content, recipients and attachments
            sender: Authenticated caller; becomes the message sender

        Returns:
            The stored message with every recipient unread

        Raises:
            ValidationError: If the payload is invalid
            CaseManagementError: If the case does not exist
            AccessError: If the sender may not access the case
        """
        request = parse_payload(
            MessageCreateRequest,
            payload,
            context="message",
            validation_context={"messages": self.settings.messages}
        )

        with performance_context("message_service_create", case_id=request.case_id):
            await self._load_accessible_case(request.case_id, sender)

            now = utcnow()
            message = Message(
                message_id=uuid.uuid4().hex,
                case_id=request.case_id,
                sender=MessageSender.from_user(sender),
                recipients=tuple(
                    MessageRecipient(
                        recipient_type=r.recipient_type,
                        name=r.name,
                        user_id=r.user_id,
                        panelist_id=r.panelist_id,
                        email=r.email,
                    )
                    for r in request.recipients
                ),
                subject=request.subject,
                content=request.content,
                message_type=request.message_type,
                priority=request.priority,
                attachments=tuple(
                    DocumentRecord(
                        name=a.name,
                        url=a.url,
                        key=a.key,
                        size=a.size,
                        mimetype=a.mimetype,
                        uploaded_at=now,
                    )
                    for a in request.attachments
                ),
                created_at=now,
                updated_at=now,
            )

            try:
                stored = await self.message_repository.create(message)
            except Exception as e:
                logger.error(f"Failed to create message: {e}", exc_info=True)
                raise

        log_business_event(
            "message_created",
            user_id=sender.user_id,
            case_id=stored.case_id,
            message_id=stored.message_id,
            recipient_count=len(stored.recipients)
        )
        return stored

    async def get_messages_by_case(
        self,
        case_id: str,
        user: UserContext,
        page: int = 1,
        limit: Optional[int] = None
    ) -> MessageListResult:
        """Thread messages of a case in chronological order."""
        limit = self._resolve_limit(page, limit)

        with performance_context("message_service_case_thread", case_id=case_id):
            await self._load_accessible_case(case_id, user)
            messages = await self.message_repository.find_by_case(case_id, page=page, limit=limit)
            total = await self.message_repository.count_by_case(case_id)

        return MessageListResult(
            messages=tuple(messages),
            pagination=Pagination(total=total, page=page, limit=limit)
        )

    async def mark_as_read(self, message_id: str, user_id: str) -> Message:
        """
        Mark a message read for one recipient.

        Repeating the call changes nothing. A caller who is not a recipient
        gets the message back unchanged.

        Raises:
            MessageError: If the message does not exist
        """
        user_id = require_identifier(user_id, "user_id")

        with performance_context("message_service_mark_read", message_id=message_id):
            updated = await self.message_repository.mark_as_read(message_id, user_id)
            if updated is None:
                raise_message_not_found(message_id, user_id=user_id)

        logger.debug("Message marked read", message_id=message_id, user_id=user_id)
        return updated

    async def bulk_mark_as_read(self, message_ids: Sequence[str], user_id: str) -> BulkReadResult:
        user_id = require_identifier(user_id, "user_id")
        distinct_ids = list(dict.fromkeys(require_identifier(mid, "message_id") for mid in message_ids))
        if not distinct_ids:
            return BulkReadResult(matched=0, modified=0)

        with performance_context("message_service_bulk_mark_read", user_id=user_id):
            result = await self.message_repository.bulk_mark_as_read(distinct_ids, user_id)

        logger.info(
            "Messages marked read",
            user_id=user_id,
            requested=len(distinct_ids),
            modified=result.modified
        )
        return result

    async def get_unread_count(self, user_id: str) -> int:
        user_id = require_identifier(user_id, "user_id")
        return await self.message_repository.count_unread_by_user(user_id)

    async def get_unread_messages(
        self,
        user_id: str,
        page: int = 1,
        limit: Optional[int] = None
    ) -> MessageListResult:
        """Messages with an unread entry for ``user_id``, newest first."""
        user_id = require_identifier(user_id, "user_id")
        limit = self._resolve_limit(page, limit)

        with performance_context("message_service_unread", user_id=user_id):
            messages = await self.message_repository.find_unread_by_user(user_id, page=page, limit=limit)
            unread_count = await self.message_repository.count_unread_by_user(user_id)

        return MessageListResult(
            messages=tuple(messages),
            pagination=Pagination(total=unread_count, page=page, limit=limit),
            unread_count=unread_count
        )

    async def get_inbox(self, user_id: str, page: int = 1, limit: Optional[int] = None) -> MessageListResult:
        user_id = require_identifier(user_id, "user_id")
        limit = self._resolve_limit(page, limit)

        with performance_context("message_service_inbox", user_id=user_id):
            messages, total = await self.message_repository.find_by_recipient(user_id, page=page, limit=limit)
            unread_count = await self.message_repository.count_unread_by_user(user_id)

        return MessageListResult(
            messages=tuple(messages),
            pagination=Pagination(total=total, page=page, limit=limit),
            unread_count=unread_count
        )

    async def get_sent_messages(
        self,
        user_id: str,
        page: int = 1,
        limit: Optional[int] = None
    ) -> MessageListResult:
        user_id = require_identifier(user_id, "user_id")
        limit = self._resolve_limit(page, limit)

        with performance_context("message_service_sent", user_id=user_id):
            messages, total = await self.message_repository.find_by_sender(user_id, page=page, limit=limit)

        return MessageListResult(
            messages=tuple(messages),
            pagination=Pagination(total=total, page=page, limit=limit)
        )

    async def get_recent_messages(self, limit: Optional[int] = None) -> List[Message]:
        """Latest messages across all cases, for administrative overviews."""
        limit = self._resolve_limit(1, limit, default=self.settings.pagination.recent_messages_limit)
        return await self.message_repository.find_recent(limit=limit)

    async def get_case_message_stats(self, case_id: str, user: UserContext) -> CaseMessageStats:
        with performance_context("message_service_case_stats", case_id=case_id):
            await self._load_accessible_case(case_id, user)
            by_type = await self.message_repository.case_message_stats(case_id)

        return CaseMessageStats(
            case_id=case_id,
            total_messages=sum(by_type.values()),
            by_type=by_type
        )

    async def delete_message(self, message_id: str, user: UserContext) -> Message:
        """
        Soft delete a message. Only its sender or an administrator may do so.

        Raises:
            MessageError: If the message does not exist
            AccessError: If the caller is neither sender nor administrator
        """
        with performance_context("message_service_delete", message_id=message_id):
            message = await self.message_repository.find_by_id(message_id)
            if message is None:
                raise_message_not_found(message_id, user_id=user.user_id)

            ensure_message_delete(message, user)

            deleted = await self.message_repository.soft_delete(message_id)
            if deleted is None:
                raise_message_not_found(message_id, user_id=user.user_id)

        log_business_event(
            "message_deleted",
            user_id=user.user_id,
            case_id=deleted.case_id,
            message_id=message_id
        )
        return deleted

    async def _load_accessible_case(self, case_id: str, user: UserContext) -> Case:
        case = await self.case_repository.find_by_id(case_id)
        if case is None:
            raise_case_not_found(case_id, user_id=user.user_id)
        ensure_case_access(case, user)
        return case

    def _resolve_limit(self, page: int, limit: Optional[int], default: Optional[int] = None) -> int:
        if limit is None:
            limit = default or self.settings.pagination.default_message_limit
        validate_page_request(page, limit, self.settings.pagination.max_limit)
        return limit
