"""
Domain Errors
Exception types raised by the run orchestration services
"""


class OutreachError(Exception):
    """Base class for run orchestration errors."""
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ValidationError(OutreachError):
    """Raised when a request or webhook payload is malformed."""
    status_code = 400


class InvalidTransitionError(ValidationError):
    """Raised when a run cannot move from its current status to the requested one."""

    def __init__(self, run_id: str, current_status: str, action: str):
        self.run_id = run_id
        self.current_status = current_status
        self.action = action
        super().__init__(f"Cannot {action} run {run_id} in status '{current_status}'")


class NotFoundError(OutreachError):
    """Raised when a run, call, campaign or organization does not exist for the caller."""
    status_code = 404


class UpstreamProviderError(OutreachError):
    """Raised when the voice provider rejects or fails a call-creation request."""
    status_code = 502


class DataIntegrityError(OutreachError):
    """Raised when a run references a missing organization or campaign."""
    status_code = 500
