"""Error taxonomy for opportunity and membership operations.

Every error carries the HTTP status the API surfaces it with. Services raise
these; the application-level exception handler renders them as
``{"detail": message}``.
"""


class OpportunityError(Exception):
    """Base class for all opphub domain errors."""

    status_code: int = 422
    default_message: str = "Request could not be processed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(OpportunityError):
    """Malformed identifier or request body."""

    status_code = 400
    default_message = "Opportunity is invalid"


class NotFoundError(OpportunityError):
    """Well-formed identifier with no matching record."""

    status_code = 404
    default_message = "No opportunity with that identifier has been found"


class AuthorizationError(OpportunityError):
    """Acting user holds neither the opportunity admin role nor platform admin."""

    status_code = 422
    default_message = "User Not Authorized"


class StoreError(OpportunityError):
    """Persistence failure; the store's message is passed through unmodified."""

    status_code = 422
    default_message = "Store operation failed"


class CodeExhaustedError(StoreError):
    """No free opportunity code was found within the attempt cap."""

    default_message = "Unable to find a unique opportunity code"
