"""
Domain errors raised by the service layer.

Each error carries a stable ``code`` (the kind) and a human readable
message so the HTTP layer can pick a status code without inspecting
strings. Authentication and authorization failures live in
``core.security`` because they are decided at the API boundary.
"""

from typing import Any, Dict, Optional


class DomainError(Exception):
    code = "domain_error"
    status_code = 400
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        if self.retryable:
            body["retryable"] = True
        return body


class ValidationError(DomainError):
    """Malformed or missing input."""
    code = "validation_error"
    status_code = 422


class NotFoundError(DomainError):
    """A referenced doctor, patient, appointment or invoice does not exist."""
    code = "not_found"
    status_code = 404


class ConflictError(DomainError):
    """The request clashes with current state (slot taken, already paid...)."""
    code = "conflict"
    status_code = 409


class DuplicateInvoiceNumberError(ConflictError):
    code = "duplicate_invoice_number"
    retryable = True


class StoreUnavailableError(DomainError):
    """The database could not be reached; safe to retry with backoff."""
    code = "store_unavailable"
    status_code = 503
    retryable = True
