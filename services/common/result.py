"""
Result Pattern Implementation
Services return a Result instead of raising for expected failures
"""

from typing import TypeVar, Generic, Optional, Any, Dict
from dataclasses import dataclass
from enum import Enum

T = TypeVar('T')


@dataclass
class Result(Generic[T]):
    """
    Either a success carrying data, or a failure carrying a stable error code,
    a human-readable message and optional details.

    Examples:
        result = Result.success({'member_id': 'M1'})
        if result.is_success:
            print(result.data)

        result = Result.failure('Member not found', code='MEMBER_NOT_FOUND')
        if result.is_failure:
            print(result.error_code, result.error)
    """

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def success(cls, data: T = None, metadata: Optional[Dict[str, Any]] = None) -> 'Result[T]':
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def failure(cls,
                error: str,
                code: Optional[str] = None,
                metadata: Optional[Dict[str, Any]] = None) -> 'Result[T]':
        """
        Args:
            error: Message describing the failure
            code: Error code for programmatic handling (an ErrorCode value)
            metadata: Structured details, e.g. {'retry_count': 3}
        """
        if isinstance(code, Enum):
            code = code.value
        return cls(success=False, error=error, error_code=code, metadata=metadata)

    @classmethod
    def from_error(cls, formatted: Dict[str, Any], metadata: Optional[Dict[str, Any]] = None) -> 'Result[T]':
        """Build a failure from an ImportErrorService.format_error() triple"""
        merged = dict(formatted.get('details') or {})
        merged.update(metadata or {})
        return cls.failure(formatted['message'], code=formatted['code'], metadata=merged)

    @property
    def is_success(self) -> bool:
        return self.success

    @property
    def is_failure(self) -> bool:
        return not self.success

    def meta(self, key: str, default: Any = None) -> Any:
        """Read one metadata entry"""
        return (self.metadata or {}).get(key, default)

    def unwrap(self) -> T:
        """
        Raises:
            ValueError: If called on a failure result
        """
        if self.is_failure:
            raise ValueError(f"Cannot unwrap a failure result: {self.error}")
        return self.data

    def to_error_dict(self) -> Dict[str, Any]:
        """The {code, message, details} triple used in API error bodies"""
        return {
            'code': self.error_code,
            'message': self.error,
            'details': self.metadata or {},
        }

    def __bool__(self) -> bool:
        return self.is_success

    def __repr__(self) -> str:
        if self.is_success:
            return f"Result.success(data={self.data!r})"
        return f"Result.failure(error={self.error!r}, code={self.error_code!r})"


@dataclass
class PagedResult(Result[T]):
    """Result for one page of a listing"""

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
            'per_page': self.per_page,
            'total_pages': self.total_pages,
            'has_next': bool(self.page and self.total_pages and self.page < self.total_pages),
            'has_prev': bool(self.page and self.page > 1),
        }
