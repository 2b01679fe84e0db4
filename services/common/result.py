"""
Result Pattern

Expected import failures (unreadable file, missing sheet, unknown reference,
rejected row) travel back to the caller as values carrying a message and an
ImportErrorCode. Exceptions are kept for bugs and infrastructure errors.
"""

from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar('T')


@dataclass
class Result(Generic[T]):
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def success(cls, data: T, metadata: Optional[Dict[str, Any]] = None) -> 'Result[T]':
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def failure(cls, error: str, code: Optional[str] = None,
                metadata: Optional[Dict[str, Any]] = None) -> 'Result[T]':
        """
        Args:
            error: Message shown to the user
            code: ImportErrorCode value
            metadata: Details for the client, e.g. {'missing_sheets': [...]}
        """
        return cls(success=False, error=error, error_code=code, metadata=metadata)

    @property
    def is_success(self) -> bool:
        return self.success

    @property
    def is_failure(self) -> bool:
        return not self.success

    def to_dict(self) -> Dict[str, Any]:
        """Error body returned by the HTTP layer"""
        payload: Dict[str, Any] = {'success': self.success}
        if not self.success:
            payload.update(error=self.error, code=self.error_code)
        if self.metadata:
            payload['details'] = self.metadata
        return payload

    def __bool__(self) -> bool:
        return self.success

    def __repr__(self) -> str:
        if self.success:
            return f"Result.success(data={self.data!r})"
        return f"Result.failure(error={self.error!r}, code={self.error_code!r})"
