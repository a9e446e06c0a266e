from __future__ import annotations

from typing import Any, Optional


class DomainError(Exception):
    """
    Base class for business errors raised by services.

    The API layer converts these into the standard ErrorResponse envelope using
    status_code and error_type.
    """

    status_code: int = 400
    error_type: str = "domain_error"

    def __init__(self, message: str, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(DomainError):
    """Requested entity does not exist for the tenant."""

    status_code = 404
    error_type = "not_found"


class ValidationFailedError(DomainError):
    """Input is well-formed but violates a business rule."""

    status_code = 422
    error_type = "business_rule_violation"


class ConflictError(DomainError):
    """Operation conflicts with the current state of the entity."""

    status_code = 409
    error_type = "conflict"
