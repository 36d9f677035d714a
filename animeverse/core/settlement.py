"""Settled outcome of a component action."""

from dataclasses import dataclass
from typing import Generic, TypeVar

from animeverse.core.errors import ClientError

T = TypeVar("T")


@dataclass(frozen=True)
class Settlement(Generic[T]):
    """
    Result of an asynchronous action, safe to render directly.

    ok=True with skipped=True means the action was a no-op (out of range page,
    already-read notification, request already in flight, view gone).
    """

    ok: bool
    value: T | None = None
    error: ClientError | None = None
    skipped: bool = False

    @property
    def message(self) -> str | None:
        """Human-readable failure message, if any."""
        return self.error.message if self.error else None

    @classmethod
    def success(cls, value: T | None = None) -> "Settlement[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: ClientError, value: T | None = None) -> "Settlement[T]":
        return cls(ok=False, value=value, error=error)

    @classmethod
    def noop(cls, value: T | None = None) -> "Settlement[T]":
        return cls(ok=True, value=value, skipped=True)
