"""
Error taxonomy for the loan offer core.

Every error carries a stable ``code`` and the HTTP status the API layer
translates it into. The core raises these and never swallows them.
"""


class LendingError(Exception):
    """Base exception for all loan offer errors."""
    
    code = "lending_error"
    http_status = 400
    
    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


class InvalidTerms(LendingError):
    """Offer terms are malformed (non-positive amount/tenure, negative rate)."""
    
    code = "invalid_terms"
    http_status = 400


class InvalidPayment(LendingError):
    """Payment amount is not acceptable for this offer."""
    
    code = "invalid_payment"
    http_status = 400


class InvalidTransition(LendingError):
    """Requested state change is not permitted from the current state."""
    
    code = "invalid_transition"
    http_status = 409


class TerminalStateViolation(InvalidTransition):
    """Mutation attempted on an offer in a terminal state."""
    
    code = "terminal_state"
    http_status = 409


class InvalidState(LendingError):
    """Operation is not allowed in the offer's current state."""
    
    code = "invalid_state"
    http_status = 409


class Unauthorized(LendingError):
    """Actor is not the party required for this operation."""
    
    code = "unauthorized"
    http_status = 403


class AlreadyReviewed(LendingError):
    """Payment has already been approved or rejected."""
    
    code = "already_reviewed"
    http_status = 409


class Conflict(LendingError):
    """Concurrent write collision; reload and retry."""
    
    code = "conflict"
    http_status = 409


class NotFound(LendingError):
    """Referenced offer or payment does not exist."""
    
    code = "not_found"
    http_status = 404


class ScheduleIntegrityError(LendingError):
    """Computed schedule violates a conservation postcondition."""
    
    code = "schedule_integrity"
    http_status = 500
