"""Tri-state result protocol: Loading / Success / Error.

Every data-producing operation in the engine returns one of these three
values instead of raising. Combinators are plain functions over the union
so callers can chain without caring which concrete state they hold:

    outcome = await ledger.add_xp(event)
    level = map_result(outcome, lambda o: o.new_level)

Record-bearing callers (XP grants, streak updates) must use
``get_or_raise`` rather than ``get_or_default`` so that a failure cannot be
silently turned into a default value.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")
R = TypeVar("R")


class ErrorKind(str, Enum):
    """Error taxonomy shared by every producer."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    SERVER = "server"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    STORAGE = "storage"
    PARSING = "parsing"
    EMPTY_RESULT = "empty_result"
    RATE_LIMITED = "rate_limited"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


TRANSIENT_KINDS = frozenset({
    ErrorKind.NETWORK,
    ErrorKind.TIMEOUT,
    ErrorKind.SERVER,
    ErrorKind.OFFLINE,
    ErrorKind.RATE_LIMITED,
})


def is_transient(kind: ErrorKind) -> bool:
    """True if an operation failing with ``kind`` is worth retrying."""
    return kind in TRANSIENT_KINDS


@dataclass(frozen=True)
class Loading(Generic[T]):
    """Operation in flight. ``partial`` may carry stale data to render now."""

    partial: T | None = None
    progress: int | None = None

    def __post_init__(self) -> None:
        if self.progress is not None and not 0 <= self.progress <= 100:
            msg = f"progress must be within 0..100, got {self.progress}"
            raise ValueError(msg)


@dataclass(frozen=True)
class Success(Generic[T]):
    """Completed with a value."""

    data: T


@dataclass(frozen=True)
class Error(Generic[T]):
    """Failed. ``partial`` holds a best-effort value (e.g. XP computed but not persisted)."""

    message: str
    kind: ErrorKind = ErrorKind.UNKNOWN
    cause: BaseException | None = None
    partial: T | None = None


Result = Union[Loading[T], Success[T], Error[T]]


class ResultError(Exception):
    """Raised by ``get_or_raise`` when the result is not a Success."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.UNKNOWN) -> None:
        super().__init__(message)
        self.kind = kind


# ---------------------------------------------------------------------------
# Combinators
# ---------------------------------------------------------------------------


def map_result(result: Result[T], transform: Callable[[T], R]) -> Result[R]:
    """Transform Success data. Loading's partial payload is mapped too; Error passes through."""
    if isinstance(result, Success):
        return Success(transform(result.data))
    if isinstance(result, Loading):
        partial = transform(result.partial) if result.partial is not None else None
        return Loading(partial=partial, progress=result.progress)
    return result  # type: ignore[return-value]


def flat_map(result: Result[T], transform: Callable[[T], Result[R]]) -> Result[R]:
    """Chain a dependent operation. Loading and Error short-circuit."""
    if isinstance(result, Success):
        return transform(result.data)
    if isinstance(result, Loading):
        return Loading()
    return result  # type: ignore[return-value]


def recover(result: Result[T], handler: Callable[[Error[T]], Result[T]]) -> Result[T]:
    """Replace an Error with whatever ``handler`` returns. Other states pass through."""
    if isinstance(result, Error):
        return handler(result)
    return result


def on_success(result: Result[T], action: Callable[[T], object]) -> Result[T]:
    if isinstance(result, Success):
        action(result.data)
    return result


def on_error(result: Result[T], action: Callable[[Error[T]], object]) -> Result[T]:
    if isinstance(result, Error):
        action(result)
    return result


def on_loading(result: Result[T], action: Callable[[T | None], object]) -> Result[T]:
    if isinstance(result, Loading):
        action(result.partial)
    return result


def get_or_none(result: Result[T]) -> T | None:
    """Success data, or Loading's stale partial, or None for Error."""
    if isinstance(result, Success):
        return result.data
    if isinstance(result, Loading):
        return result.partial
    return None


def get_or_default(result: Result[T], default: T) -> T:
    value = get_or_none(result)
    return default if value is None else value


def get_or_raise(result: Result[T]) -> T:
    """Success data, or raise ``ResultError``.

    Use this when driving XP grants or streak updates: a failure must
    surface to the caller, never become a default value.
    """
    if isinstance(result, Success):
        return result.data
    if isinstance(result, Loading):
        raise ResultError("Result is still loading")
    raise ResultError(result.message, result.kind) from result.cause
