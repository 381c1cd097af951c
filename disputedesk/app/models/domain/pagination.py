"""Offset pagination shared by case and message listings."""

import math
from dataclasses import dataclass
from typing import Dict

from disputedesk.app.core.exceptions import raise_validation_error


def validate_page_request(page: int, limit: int, max_limit: int) -> None:
    """
    Reject page/limit values outside ``page >= 1`` and ``1 <= limit <= max_limit``.

    Raises:
        ValidationError: On any out-of-range value
    """
    field_errors = []
    if not isinstance(page, int) or page < 1:
        field_errors.append({"field": "page", "message": "page must be >= 1", "type": "value_error"})
    if not isinstance(limit, int) or limit < 1 or limit > max_limit:
        field_errors.append({
            "field": "limit",
            "message": f"limit must be between 1 and {max_limit}",
            "type": "value_error",
        })
    if field_errors:
        raise_validation_error("Invalid pagination parameters", field_errors=field_errors)


def skip_for(page: int, limit: int) -> int:
    """Number of documents to skip for a 1-based page."""
    return (page - 1) * limit


@dataclass(frozen=True)
class Pagination:
    """Pagination block returned with every listing."""

    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
            "pages": self.pages,
        }


