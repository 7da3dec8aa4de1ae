"""Errors raised by the scheduling and queue services."""

from fastapi import HTTPException, status


class ClinicError(Exception):
    """Base class for every error the core reports to its callers."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ClinicError):
    """Input that can never succeed as given (bad slot boundary, unknown enum value)."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class ConflictError(ClinicError):
    """The doctor already has a non-cancelled appointment at the requested slot."""

    status_code = status.HTTP_409_CONFLICT


class NotFoundError(ClinicError):
    status_code = status.HTTP_404_NOT_FOUND


class UpstreamError(ClinicError):
    """The backing store failed; the request may be retried as-is."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str = 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'):
        super().__init__(message)


def as_http_exception(error: ClinicError) -> HTTPException:
    if isinstance(error, ValidationError) and error.field:
        return HTTPException(
            status_code=error.status_code,
            detail={'message': error.message, 'field': error.field},
        )
    return HTTPException(status_code=error.status_code, detail=error.message)
