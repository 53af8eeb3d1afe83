class AppException(Exception):
    """Base application exception."""

    pass


class NotFoundError(AppException):
    """Resource not found exception."""

    pass


class ValidationError(AppException):
    """Validation error exception."""

    pass


class StorageError(AppException):
    """Storage operation error exception."""

    pass


class StorageUnavailableError(StorageError):
    """
    The durable store could not be reached or did not answer in time.

    The operation must be treated as failed-not-applied: deny and retry,
    never allow.
    """

    pass
