"""Ok/Err values for outcomes a caller is expected to branch on.

Rejected grants, unknown clients and similar OAuth2 failures travel as ``Err``
values. Exceptions are kept for infrastructure failures and programming errors.
"""

from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Generic, NoReturn, TypeVar

from attrs import frozen
from beartype import beartype

T = TypeVar("T")
E = TypeVar("E")
U = TypeVar("U")


@frozen
class Ok(Generic[T]):
    """A successful outcome."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    @beartype
    def unwrap(self) -> T:
        """Return the value."""
        return self.value

    def unwrap_or(self, default: Any) -> T:
        return self.value

    def unwrap_err(self) -> NoReturn:
        raise ValueError(f"Called unwrap_err on Ok value: {self.value!r}")

    @beartype
    def map(self, func: Callable[[T], U]) -> "Ok[U]":
        """Apply ``func`` to the value."""
        return Ok(func(self.value))


@frozen
class Err(Generic[E]):
    """A failed outcome carrying its reason."""

    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> NoReturn:
        raise ValueError(f"Called unwrap on Err value: {self.error}")

    def unwrap_or(self, default: T) -> T:
        return default

    @beartype
    def unwrap_err(self) -> E:
        """Return the error."""
        return self.error

    def map(self, func: Callable[[Any], Any]) -> "Err[E]":
        """Errors pass through untouched."""
        return self


if TYPE_CHECKING:
    Result = Ok[T] | Err[E]
else:

    class Result(Generic[T, E]):
        """``Result[T, E]`` annotation usable by beartype at runtime."""

        ok = staticmethod(Ok)
        err = staticmethod(Err)

        def __class_getitem__(cls, params: Any) -> Any:
            # Only the Ok/Err shape is checked at runtime, not the payload types
            return Ok[Any] | Err[Any]
