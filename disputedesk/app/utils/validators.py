"""
Validation utilities for the Dispute Desk service layer.

Request payloads are validated with pydantic models; this module turns
pydantic failures into the package's own ``ValidationError`` so callers only
ever see one error taxonomy.
"""

from typing import Any, Dict, Iterable, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError as PydanticValidationError

from disputedesk.app.core.exceptions import field_errors_from_pydantic, raise_validation_error
from disputedesk.app.utils.logging import get_logger

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_payload(
    model: Type[ModelT],
    payload: Any,
    context: Optional[str] = None,
    validation_context: Optional[Dict[str, Any]] = None
) -> ModelT:
    """
    Validate ``payload`` against ``model``.

    Args:
        model: Pydantic model class
        payload: Mapping or model instance supplied by the caller
        context: Short description used in the error message
        validation_context: Passed to pydantic validators as ``info.context``;
            model instances are re-validated when it is given

    Returns:
        Validated model instance

    Raises:
        ValidationError: If the payload does not satisfy the model
    """
    if isinstance(payload, model) and validation_context is None:
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(exclude_unset=True)

    try:
        return model.model_validate(payload, context=validation_context)
    except PydanticValidationError as e:
        field_errors = field_errors_from_pydantic(e)
        logger.debug(
            "Payload validation failed",
            model=model.__name__,
            error_count=len(field_errors)
        )
        raise_validation_error(
            f"Invalid {context or model.__name__} payload",
            field_errors=field_errors
        )


def strip_fields(patch: Dict[str, Any], fields: Iterable[str]) -> Dict[str, Any]:
    """Return a copy of ``patch`` without ``fields``; the input is left untouched."""
    blocked = set(fields)
    return {key: value for key, value in patch.items() if key not in blocked}


def require_identifier(value: Optional[str], name: str) -> str:
    """
    Check an identifier argument is a non-empty string.

    Raises:
        ValidationError: If the identifier is missing or blank
    """
    if not isinstance(value, str) or not value.strip():
        raise_validation_error(
            f"{name} is required",
            field_errors=[{"field": name, "message": "must be a non-empty string", "type": "missing"}]
        )
    return value.strip()
