from typing import Any, Dict, Optional


class AppException(Exception):
    def __init__(
        self,
        message: str,
        status_code: int = 400,
        error_code: str = "BUSINESS_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)


class ValidationFailed(AppException):
    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(
            message=message,
            status_code=400,
            error_code="VALIDATION_ERROR",
            details={"errors": errors or []}
        )


class NotFoundError(AppException):
    def __init__(self, message: str = "Resource not found"):
        super().__init__(message=message, status_code=404, error_code="NOT_FOUND")


class ConflictError(AppException):
    def __init__(self, message: str, error_code: str = "CONFLICT"):
        super().__init__(message=message, status_code=409, error_code=error_code)


class AuthenticationError(AppException):
    def __init__(self, message: str = "Could not validate credentials"):
        super().__init__(
            message=message,
            status_code=401,
            error_code="AUTH_FAILED"
        )


class AccessDeniedError(AppException):
    """Custom permission error. Named AccessDeniedError to avoid shadowing Python's built-in PermissionError."""
    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(
            message=message,
            status_code=403,
            error_code="PERMISSION_DENIED"
        )
