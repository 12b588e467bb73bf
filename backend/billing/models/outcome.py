"""Tagged transaction outcome returned by business callbacks and executors."""

from dataclasses import dataclass
from typing import Generic, Literal, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful outcome carrying the callback's value."""

    value: T
    status: Literal["ok"] = "ok"

    @property
    def is_ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    """Failed outcome carrying the original error object."""

    error: Exception
    status: Literal["error"] = "error"

    def __post_init__(self) -> None:
        if not isinstance(self.error, Exception):
            raise TypeError(f"Err requires an Exception instance, got {type(self.error).__name__}")

    @property
    def is_ok(self) -> bool:
        return False


TransactionOutcome = Ok[T] | Err


def unwrap(outcome: "Ok[T] | Err") -> T:
    """Return the value of a success, or re-raise the contained error as-is.

    The error object is re-raised rather than wrapped, so callers can keep
    matching on its concrete type.
    """
    if isinstance(outcome, Ok):
        return outcome.value
    raise outcome.error
