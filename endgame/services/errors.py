class ServiceError(Exception):
    """Base service exception."""


class ValidationError(ServiceError):
    """Raised for invalid input, before anything is written."""


class NotFoundError(ServiceError):
    """Raised when a referenced record does not exist."""


class ProfileNotFoundError(NotFoundError):
    """Raised when a profile is not found."""


class PostNotFoundError(NotFoundError):
    """Raised when a post is not found."""


class NotificationNotFoundError(NotFoundError):
    """Raised when a notification is not found for its recipient."""


class PermissionDeniedError(ServiceError):
    """Raised when the acting profile does not own the record."""


class ConflictError(ServiceError):
    """Raised when a write violates a uniqueness rule."""


class DuplicateProfileError(ConflictError):
    """Raised when username/email already exists."""


class InvalidCredentialsError(ServiceError):
    """Raised for failed authentication."""


class MediaUploadError(ServiceError):
    """Raised when object storage rejects an upload."""
