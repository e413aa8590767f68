"""
Error taxonomy for the webinar engine.

Every error carries the HTTP status it maps to; server.py installs a single
exception handler that turns any WebinarError into {"detail": message}.
"""


class WebinarError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(WebinarError):
    status_code = 404

    def __init__(self, resource: str = "Resource"):
        super().__init__(f"{resource} not found")


class NotRegisteredError(NotFoundError):
    """The webinar exists but the user has no attendance record"""
    status_code = 400

    def __init__(self, message: str = "User is not registered for this webinar"):
        WebinarError.__init__(self, message)


class ConflictError(WebinarError):
    status_code = 409
    default_message = "Resource already exists"


class CapacityExceededError(WebinarError):
    status_code = 400
    default_message = "Webinar is full"


class ValidationError(WebinarError):
    status_code = 400
    default_message = "Validation error"


class ExternalServiceError(WebinarError):
    status_code = 500
    default_message = "External service error"

    def __init__(self, message: str = None, service: str = None, upstream_status: int = None):
        self.service = service
        self.upstream_status = upstream_status
        super().__init__(message)


class InvariantViolation(WebinarError):
    status_code = 500
    default_message = "Internal invariant violated"
