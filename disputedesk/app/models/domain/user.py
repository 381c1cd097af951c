"""
Caller identity and display records.

The service layer never authenticates anyone: ``UserContext`` arrives from the
authentication boundary and is trusted as-is.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from disputedesk.app.core.exceptions import raise_validation_error


class UserRole(str, Enum):
    """Roles recognised by the access policy."""

    ADMIN = "admin"
    CLIENT = "client"
    PANELIST = "panelist"


@dataclass(frozen=True)
class UserContext:
    """Authenticated caller identity supplied with every service call."""

    user_id: str
    role: Union[UserRole, str]
    panelist_id: Optional[str] = None
    name: str = ""

    def __post_init__(self):
        if not self.user_id:
            raise_validation_error(
                "User ID is required",
                field_errors=[{"field": "user_id", "message": "User ID is required", "type": "missing"}]
            )
        # Accept plain strings from the transport layer. Unrecognised roles
        # are kept as given; the access policy denies them.
        if not isinstance(self.role, UserRole) and self.role in {r.value for r in UserRole}:
            object.__setattr__(self, "role", UserRole(self.role))

    @property
    def role_name(self) -> str:
        return self.role.value if isinstance(self.role, UserRole) else str(self.role)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


@dataclass(frozen=True)
class UserSummary:
    """Display-ready projection of a user document."""

    user_id: str
    name: str = ""
    email: Optional[str] = None
    role: Optional[str] = None
    phone: Optional[str] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "UserSummary":
        return cls(
            user_id=doc["user_id"],
            name=doc.get("name", ""),
            email=doc.get("email"),
            role=doc.get("role"),
            phone=doc.get("phone"),
        )


@dataclass(frozen=True)
class PanelistSummary:
    """Display-ready projection of a panelist document."""

    panelist_id: str
    name: str = ""
    email: Optional[str] = None
    specialization: Optional[str] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "PanelistSummary":
        return cls(
            panelist_id=doc["panelist_id"],
            name=doc.get("name", ""),
            email=doc.get("email"),
            specialization=doc.get("specialization"),
        )
