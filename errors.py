"""
Error taxonomy shared by the services.

Every service raises one of these before it writes anything. main.py turns
them into HTTP responses with a single exception handler.
"""


class EcoCollectError(Exception):
    status_code = 500
    retryable = False

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(EcoCollectError):
    """Malformed input: empty item list, negative weight, unknown enum value."""
    status_code = 400


class NotFound(EcoCollectError):
    status_code = 404


class InvalidTransition(EcoCollectError):
    """The pickup is not in a status that allows the requested move."""
    status_code = 409


class CapabilityError(EcoCollectError):
    """Storage or classification backend failed. Nothing was partially written."""
    status_code = 503
    retryable = True


class ConflictError(CapabilityError):
    # a conditional write lost a race; re-read and try again
    pass
