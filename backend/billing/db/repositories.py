"""Protocol interfaces for the transaction core's external collaborators."""

from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from backend.billing.models.effects import CacheDependencyKey, TaskTrigger
from backend.billing.models.identity import KeyVerifyResult, SessionUser

T = TypeVar("T")


class TransactionRunner(Protocol):
    """Opens a database transaction around a function."""

    async def run(self, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """Run fn inside a transaction.

        Commits when fn returns normally and rolls back when it raises.

        Args:
            fn: Async function receiving the transaction handle

        Returns:
            Whatever fn returned, after the commit succeeded
        """
        ...


class RlsChannel(Protocol):
    """Transaction-scoped key/value channel for RLS markers."""

    async def clear_claims(self) -> None:
        """Remove any claims left on the connection."""
        ...

    async def set_claims(self, claims: dict[str, Any]) -> None:
        """Set the serialized claims for the transaction."""
        ...

    async def set_role(self, role: str) -> None:
        """Switch to the database role whose policies apply."""
        ...

    async def set_livemode(self, livemode: bool) -> None:
        """Set the livemode marker."""
        ...

    async def reset_role(self) -> None:
        """Return to the connection's default role."""
        ...


class CacheInvalidator(Protocol):
    """Sink for cache invalidations keyed by dependency."""

    async def invalidate(self, key: CacheDependencyKey) -> None:
        """Drop cached entries that depend on key."""
        ...


class TaskDispatcher(Protocol):
    """Sink for background task triggers."""

    async def dispatch(self, trigger: TaskTrigger) -> None:
        """Start the background task."""
        ...


class KeyVerifier(Protocol):
    """Verifies API keys."""

    async def verify(self, key: str) -> KeyVerifyResult:
        """Verify a raw API key.

        Raises:
            InvalidApiKeyError: If the key is unknown or inactive
        """
        ...


class SessionProvider(Protocol):
    """Looks up webapp sessions."""

    async def get_session(self, token: str) -> SessionUser | None:
        """Return the session's user, or None if the session is invalid."""
        ...
