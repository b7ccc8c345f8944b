class ServiceError(Exception):
    """Base exception for staff voting operations"""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    """Raised when input is malformed or breaks a business rule before any write"""

    status_code = 400


class NotFoundError(ServiceError):
    """Raised when a referenced record does not exist or does not belong to the caller"""

    status_code = 404


class ConflictError(ServiceError):
    """Raised when a write would break a uniqueness or state invariant"""

    status_code = 409


class StorageError(ServiceError):
    """Raised when the underlying store fails in a way no rule anticipates"""

    status_code = 500
