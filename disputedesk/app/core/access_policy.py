"""
Access policy for cases and messages.

Each role maps to the *relation* a caller must hold with a record for an
action to be allowed. Relations are predicates over ``(record, user)``, so
supporting a new role or relation means adding a table entry, not another
``if`` branch in a service.

Case visibility, in precedence order:
1. admin    -> any case
2. client   -> cases they created
3. panelist -> cases where they hold an active panel assignment
4. anything else is denied
"""

from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional

from disputedesk.app.core.exceptions import ErrorCode, raise_access_error
from disputedesk.app.models.domain.case import AssignmentStatus, Case
from disputedesk.app.models.domain.message import Message
from disputedesk.app.models.domain.user import UserContext, UserRole
from disputedesk.app.utils.logging import get_logger, log_security_event

logger = get_logger(__name__)


class Relation(str, Enum):
    """Relationship between a caller and a record."""

    ANY = "any"
    OWNER = "owner"
    ACTIVE_PANELIST = "active_panelist"
    SENDER = "sender"


def _is_owner(record: Case, user: UserContext) -> bool:
    return record.created_by == user.user_id


def _is_active_panelist(record: Case, user: UserContext) -> bool:
    return record.has_active_panelist(user.panelist_id)


def _is_sender(record: Message, user: UserContext) -> bool:
    return record.is_sent_by(user.user_id)


RELATION_CHECKS: Dict[Relation, Callable[[Any, UserContext], bool]] = {
    Relation.ANY: lambda record, user: True,
    Relation.OWNER: _is_owner,
    Relation.ACTIVE_PANELIST: _is_active_panelist,
    Relation.SENDER: _is_sender,
}

CASE_ACCESS_POLICY: Mapping[UserRole, Relation] = {
    UserRole.ADMIN: Relation.ANY,
    UserRole.CLIENT: Relation.OWNER,
    UserRole.PANELIST: Relation.ACTIVE_PANELIST,
}

MESSAGE_DELETE_POLICY: Mapping[UserRole, Relation] = {
    UserRole.ADMIN: Relation.ANY,
    UserRole.CLIENT: Relation.SENDER,
    UserRole.PANELIST: Relation.SENDER,
}


def evaluate(policy: Mapping[UserRole, Relation], record: Any, user: UserContext) -> bool:
    """
    Evaluate ``policy`` for ``user`` against ``record``.

    Roles missing from the policy are denied.
    """
    relation = policy.get(user.role)
    if relation is None:
        return False
    return RELATION_CHECKS[relation](record, user)


def can_access_case(case: Case, user: UserContext) -> bool:
    """Pure access predicate for a case."""
    return evaluate(CASE_ACCESS_POLICY, case, user)


def ensure_case_access(case: Case, user: UserContext) -> None:
    """
    Raise when ``user`` may not access ``case``.

    Raises:
        AccessError: With HTTP 403 semantics
    """
    if can_access_case(case, user):
        return

    log_security_event(
        "access_denied",
        user_id=user.user_id,
        resource_type="case",
        resource_id=case.case_id,
        action="access",
        success=False,
        role=user.role_name
    )
    raise_access_error(
        "Unauthorized access to case",
        user_id=user.user_id,
        role=user.role_name,
        resource_type="case",
        resource_id=case.case_id,
        required_permission=CASE_ACCESS_POLICY.get(user.role, Relation.ANY).value,
        error_code=ErrorCode.CASE_ACCESS_DENIED
    )


def can_delete_message(message: Message, user: UserContext) -> bool:
    """Only the original sender or an administrator may delete a message."""
    return evaluate(MESSAGE_DELETE_POLICY, message, user)


def ensure_message_delete(message: Message, user: UserContext) -> None:
    """
    Raise when ``user`` may not delete ``message``.

    Raises:
        AccessError: With HTTP 403 semantics
    """
    if can_delete_message(message, user):
        return

    log_security_event(
        "access_denied",
        user_id=user.user_id,
        resource_type="message",
        resource_id=message.message_id,
        action="delete",
        success=False,
        role=user.role_name
    )
    raise_access_error(
        "Unauthorized to delete this message",
        user_id=user.user_id,
        role=user.role_name,
        resource_type="message",
        resource_id=message.message_id,
        required_permission=Relation.SENDER.value,
        error_code=ErrorCode.PERMISSION_INSUFFICIENT
    )


def case_visibility_filter(user: UserContext) -> Dict[str, Any]:
    """
    Store filter equivalent of the case access policy, used by listings.

    Raises:
        AccessError: For roles the policy does not know
    """
    relation: Optional[Relation] = CASE_ACCESS_POLICY.get(user.role)

    if relation == Relation.ANY:
        return {}
    if relation == Relation.OWNER:
        return {"created_by": user.user_id}
    if relation == Relation.ACTIVE_PANELIST:
        # A panelist context without a panelist id can never match an entry
        return {
            "assigned_panelists": {
                "$elemMatch": {
                    "panelist_id": user.panelist_id,
                    "status": AssignmentStatus.ACTIVE.value,
                }
            }
        }

    raise_access_error(
        f"Role '{user.role_name}' cannot list cases",
        user_id=user.user_id,
        role=user.role_name,
        resource_type="case",
        required_permission="list"
    )
