"""
Domain errors raised by services and rendered by the API layer.

Each error carries a machine-readable ``kind`` and the HTTP status the
exception handlers in ``agriadvisor.main`` respond with.
"""

from fastapi import status


class AdvisorError(Exception):
    """Base class for errors that cross the service boundary."""

    kind = "internal"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {
            "error": self.kind,
            "detail": self.message,
            "status_code": self.status_code,
        }


class NotFoundError(AdvisorError):
    """Requested record does not exist in the store."""

    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class MalformedInputError(AdvisorError):
    """Request is missing a required field or carries an invalid value."""

    kind = "malformed_input"
    status_code = status.HTTP_400_BAD_REQUEST


class UpstreamUnavailableError(AdvisorError):
    """An external provider could not be reached."""

    kind = "upstream_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
