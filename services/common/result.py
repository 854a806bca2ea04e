"""
Result Pattern Implementation
API-facing service methods return a Result instead of raising
"""

from typing import TypeVar, Generic, Optional, Any, Dict
from dataclasses import dataclass

T = TypeVar('T')


class ErrorCode:
    """Failure codes understood by the HTTP layer"""
    NOT_FOUND = 'NOT_FOUND'
    INVALID_STATE = 'INVALID_STATE'
    SYSTEM_SEGMENT = 'SYSTEM_SEGMENT'
    VALIDATION_ERROR = 'VALIDATION_ERROR'
    CONFLICT = 'CONFLICT'
    INTERNAL_ERROR = 'INTERNAL_ERROR'


@dataclass
class Result(Generic[T]):
    """
    Either a successful value or a failure with an error message and code.

    Examples:
        result = Result.success(segment)
        if result.is_success:
            segment = result.data

        result = Result.failure("Campaign 7 not found", code=ErrorCode.NOT_FOUND)
    """

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def success(cls, data: T = None, metadata: Optional[Dict[str, Any]] = None) -> 'Result[T]':
        """Create a successful result"""
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def failure(cls,
                error: str,
                code: Optional[str] = None,
                metadata: Optional[Dict[str, Any]] = None) -> 'Result[T]':
        """
        Create a failure result.

        Args:
            error: Human readable reason
            code: One of the ErrorCode values
            metadata: Optional extra context
        """
        return cls(success=False, error=error, error_code=code, metadata=metadata)

    @classmethod
    def from_exception(cls, exc: Exception) -> 'Result[T]':
        """Build a failure from a pipeline exception, keeping its code"""
        return cls.failure(str(exc), code=getattr(exc, 'code', ErrorCode.INTERNAL_ERROR))

    @property
    def is_success(self) -> bool:
        return self.success

    @property
    def is_failure(self) -> bool:
        return not self.success

    @property
    def code(self) -> Optional[str]:
        return self.error_code

    def unwrap(self) -> T:
        """
        Get the data from a successful result.

        Raises:
            ValueError: If called on a failure result
        """
        if self.is_failure:
            raise ValueError(f"Cannot unwrap a failure result: {self.error}")
        return self.data

    def unwrap_or(self, default: T) -> T:
        return self.data if self.is_success else default

    def map(self, func) -> 'Result':
        """Transform the data of a successful result"""
        if self.is_success:
            return Result.success(func(self.data), self.metadata)
        return self

    def __bool__(self) -> bool:
        return self.is_success

    def __repr__(self) -> str:
        if self.is_success:
            return f"Result.success(data={self.data!r})"
        return f"Result.failure(error={self.error!r}, code={self.error_code!r})"


@dataclass
class PagedResult(Result[T]):
    """Result carrying one page of items plus pagination info"""

    total: Optional[int] = None
    page: Optional[int] = None
    per_page: Optional[int] = None
    total_pages: Optional[int] = None

    @classmethod
    def paginated(cls,
                  data: T,
                  total: int,
                  page: int,
                  per_page: int,
                  metadata: Optional[Dict[str, Any]] = None) -> 'PagedResult[T]':
        """Create a successful page result"""
        total_pages = (total + per_page - 1) // per_page if per_page > 0 else 0
        return cls(
            success=True,
            data=data,
            metadata=metadata,
            total=total,
            page=page,
            per_page=per_page,
            total_pages=total_pages
        )

    def pagination(self) -> Dict[str, Any]:
        return {
            'total': self.total,
            'page': self.page,
            'perPage': self.per_page,
            'totalPages': self.total_pages,
        }
