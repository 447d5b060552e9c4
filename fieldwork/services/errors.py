"""
Domain error taxonomy.
Every business-rule violation is raised as one of these before anything is
mutated; the HTTP layer maps them to status codes in one place.
"""
from typing import Any, Dict, Optional


class DomainError(Exception):
    status_code = 400
    code = "domain_error"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.default_message()
        self.extra = extra
        super().__init__(self.message)

    @classmethod
    def default_message(cls) -> str:
        return cls.__name__

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.extra:
            body.update(self.extra)
        return body


class Unauthorized(DomainError):
    status_code = 401
    code = "unauthorized"


class Forbidden(DomainError):
    status_code = 403
    code = "forbidden"


class NotFound(DomainError):
    status_code = 404
    code = "not_found"


class InvalidInput(DomainError):
    status_code = 400
    code = "invalid_input"


class InvalidQuantity(DomainError):
    status_code = 400
    code = "invalid_quantity"


class InsufficientStock(DomainError):
    status_code = 409
    code = "insufficient_stock"


class BelowBorrowed(DomainError):
    status_code = 409
    code = "below_borrowed"


class AlreadyFullyReturned(DomainError):
    status_code = 409
    code = "already_returned"


class AlreadyValidated(DomainError):
    status_code = 409
    code = "already_validated"


class AlreadyResolved(DomainError):
    status_code = 409
    code = "already_resolved"


class IllegalTransition(DomainError):
    status_code = 409
    code = "illegal_transition"


class Internal(DomainError):
    status_code = 500
    code = "internal"
