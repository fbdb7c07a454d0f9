from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar('T')
U = TypeVar('U')


@dataclass(frozen=True)
class Result(Generic[T]):
    """Tagged success/failure value threaded through every fallible step."""

    ok: bool
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @classmethod
    def success(cls, value: T = None) -> "Result[T]":
        return cls(True, value, None)

    @classmethod
    def failure(cls, error) -> "Result[T]":
        if not isinstance(error, BaseException):
            error = Exception(str(error) if error else "Unknown error")
        return cls(False, None, error)

    def is_success(self) -> bool:
        return self.ok

    def is_failure(self) -> bool:
        return not self.ok

    def unwrap(self) -> T:
        if self.ok:
            return self.value
        raise self.error

    def map(self, fn: Callable[[T], U]) -> "Result[U]":
        if not self.ok:
            return self
        try:
            return Result.success(fn(self.value))
        except Exception as e:
            return Result.failure(e)
