"""
Result objects returned by workflow-facing services.

Business-rule violations are values, not exceptions: the HTTP layer turns a
failed result into the matching ``AppException``.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional


class ResultCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_STATE = "INVALID_STATE"
    NO_APPROVER = "NO_APPROVER"
    ALREADY_PROCESSED = "ALREADY_PROCESSED"
    CONFLICT = "CONFLICT"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"


@dataclass
class ServiceResult:
    success: bool
    message: str
    code: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    data: Any = None

    @classmethod
    def ok(cls, message: str, data: Any = None) -> "ServiceResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, code: ResultCode, message: str, errors: Optional[List[str]] = None) -> "ServiceResult":
        return cls(success=False, message=message, code=code.value, errors=list(errors or []))

    def __bool__(self):
        return self.success
