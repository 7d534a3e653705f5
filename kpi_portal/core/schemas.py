from typing import Any, Dict, Generic, List, Optional, TypeVar
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime, timezone

T = TypeVar("T")


class ErrorInfo(BaseModel):
    msg: str
    code: Optional[str] = None
    field: Optional[str] = None


class ApiResponse(BaseModel, Generic[T]):
    """Envelope returned by every API endpoint: ``{success, message, data?}``."""
    model_config = ConfigDict(json_encoders={datetime: lambda v: v.isoformat()})

    success: bool
    message: str = ""
    data: Optional[T] = None
    errors: List[ErrorInfo] = []
    metadata: Dict[str, Any] = {}
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary with JSON-serializable values."""
        return self.model_dump(mode="json")

    @classmethod
    def ok(cls, data: T = None, message: str = "OK", metadata: Optional[Dict[str, Any]] = None) -> "ApiResponse[T]":
        return cls(success=True, message=message, data=data, metadata=metadata or {})

    @classmethod
    def fail(cls, message: str, code: str = "ERROR", errors: Optional[List[str]] = None) -> "ApiResponse[T]":
        items = [ErrorInfo(msg=e, code=code) for e in (errors or [])] or [ErrorInfo(msg=message, code=code)]
        return cls(success=False, message=message, errors=items)
