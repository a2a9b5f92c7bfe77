"""
Escalation engine error taxonomy.

Every error raised by the engine's services derives from EscalationEngineError
and carries the HTTP status the API layer answers with. Messages are written to
be safe for clients: they never contain contact details or clinical data.
"""

from typing import Optional


class EscalationEngineError(Exception):
    """Base class for all escalation engine errors"""

    status_code: int = 500
    error_type: str = "internal_error"

    def __init__(self, message: str, resource_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.resource_id = resource_id


class NotFound(EscalationEngineError):
    """Alert or notification does not exist"""

    status_code = 404
    error_type = "not_found"


class InvalidState(EscalationEngineError):
    """Requested transition is not allowed from the record's current status"""

    status_code = 409
    error_type = "invalid_state"


class Forbidden(EscalationEngineError):
    """Requester is neither the patient nor an authorized caregiver"""

    status_code = 403
    error_type = "access_denied"


class TransientDeliveryFailure(EscalationEngineError):
    """A notification provider failed; recorded on the attempt, never surfaced"""

    status_code = 502
    error_type = "delivery_failure"


class ConfigurationError(EscalationEngineError):
    """Patient has no usable contacts or a provider is not configured"""

    status_code = 422
    error_type = "configuration_error"
