"""
Exceptions raised by the donation_hub services.

The service layer raises these; the HTTP layer maps them to status codes and
error payloads through ``status_code`` and ``to_dict()``:

    from donation_hub.errors import NotFoundError

    donation = db.get(models.Donation, donation_id)
    if donation is None or donation.is_deleted:
        raise NotFoundError("donation", donation_id)
"""

from typing import Any, Dict, List, Optional


class DonationHubError(Exception):
    """Base exception for all donation_hub errors"""

    status_code = 500
    error = "Internal error"

    def __init__(self, message: str, code: str = "INTERNAL_ERROR"):
        self.message = message
        self.code = code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error, "message": self.message}


class ValidationError(DonationHubError):
    """Input is malformed or out of range.

    ``errors`` maps field names to lists of messages, matching the payload
    FastAPI request validation failures are rendered with.
    """

    status_code = 422
    error = "Validation failed"

    def __init__(self, errors: Dict[str, List[str]], message: str = "The given data was invalid"):
        super().__init__(message, code="VALIDATION_ERROR")
        self.errors = errors

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls({field: [message]})

    def to_dict(self) -> Dict[str, Any]:
        return {"errors": self.errors}


class AuthenticationError(DonationHubError):
    """Missing or invalid credentials"""

    status_code = 401
    error = "Unauthenticated"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, code="AUTH_FAILED")


class AuthorizationError(DonationHubError):
    """Caller lacks the role or ownership for this action"""

    status_code = 403
    error = "Forbidden"

    def __init__(self, message: str = "Not authorized"):
        super().__init__(message, code="NOT_AUTHORIZED")


class NotFoundError(DonationHubError):
    """Referenced entity is absent or soft-deleted"""

    status_code = 404
    error = "Not found"

    def __init__(self, resource: str, resource_id: Optional[Any] = None):
        message = f"{resource.capitalize()} not found"
        if resource_id is not None:
            message = f"{resource.capitalize()} {resource_id} not found"
        super().__init__(message, code="NOT_FOUND")
        self.resource = resource
        self.resource_id = resource_id


class MatchMismatchError(DonationHubError):
    """Donation type or quantity does not satisfy the request"""

    status_code = 422
    error = "Donation does not match request"

    def __init__(self, message: str):
        super().__init__(message, code="MATCH_MISMATCH")


class InvalidStateError(DonationHubError):
    """Operation is not valid for the entity's current lifecycle state"""

    status_code = 400
    error = "Invalid state"

    def __init__(self, message: str):
        super().__init__(message, code="INVALID_STATE")


class PersistenceError(DonationHubError):
    """Storage failure; the transaction was rolled back"""

    status_code = 500
    error = "Storage failure"

    def __init__(self, message: str = "The operation could not be saved"):
        super().__init__(message, code="PERSISTENCE_ERROR")
