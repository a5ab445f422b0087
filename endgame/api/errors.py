from fastapi import HTTPException, status

from endgame.services.errors import (
    ConflictError,
    InvalidCredentialsError,
    MediaUploadError,
    NotFoundError,
    PermissionDeniedError,
    ServiceError,
    ValidationError,
)

STATUS_BY_ERROR: list[tuple[type[ServiceError], int]] = [
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (ConflictError, status.HTTP_409_CONFLICT),
    (InvalidCredentialsError, status.HTTP_401_UNAUTHORIZED),
    (MediaUploadError, status.HTTP_502_BAD_GATEWAY),
]


def http_error(exc: ServiceError) -> HTTPException:
    """Translate a service failure into the HTTP error clients see."""
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            headers = {"WWW-Authenticate": "Bearer"} if status_code == status.HTTP_401_UNAUTHORIZED else None
            return HTTPException(status_code=status_code, detail=str(exc), headers=headers)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error")
