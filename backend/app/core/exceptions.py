class AppError(Exception):
    """Base class for all application exceptions."""
    def __init__(self, message: str, status_code: int = 500, details: dict = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

class ValidationError(AppError):
    """Raised when request input is malformed or violates a business rule."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=422, details=details)

class NotFoundError(AppError):
    """Raised when a requested resource is not found."""
    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(f"{resource_type} with id {resource_id} not found", status_code=404)
        self.resource_type = resource_type
        self.resource_id = resource_id

class ConflictError(AppError):
    """Raised when an action targets a record in the wrong lifecycle state."""
    def __init__(self, message: str, current_status: str | None = None):
        details = {"current_status": current_status} if current_status is not None else None
        super().__init__(message, status_code=409, details=details)
        self.current_status = current_status

class AuthorizationError(AppError):
    """Raised when the actor's role or ownership does not permit the action."""
    def __init__(self, message: str = "Not authorized to perform this action"):
        super().__init__(message, status_code=403)

class StorageError(AppError):
    """Raised when a supporting document cannot be stored."""
    def __init__(self, message: str):
        super().__init__(message, status_code=502)

class SchedulingError(AppError):
    """Raised when a background job cannot be registered."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=503, details=details)


class NotificationDeliveryError(RuntimeError):
    """A message or voice channel failed to deliver. Never surfaced to callers."""
