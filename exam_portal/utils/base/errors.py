class PortalError(Exception):
    """Base class for domain failures surfaced to API callers as `{"message": ...}`."""
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(PortalError):
    status_code = 400


class InvalidState(PortalError):
    """Operation is illegal for the attempt's current lifecycle state."""
    status_code = 400


class Conflict(PortalError):
    status_code = 400


class Unavailable(PortalError):
    """Exam is missing, inactive or outside its availability window."""
    status_code = 400


class Forbidden(PortalError):
    status_code = 403


class NotFound(PortalError):
    status_code = 404
