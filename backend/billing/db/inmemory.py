"""In-memory and logging-only implementations of collaborator interfaces."""

import logging
from typing import Any

from backend.billing.db.rls import ALLOWED_ROLES
from backend.billing.errors import RlsContextError
from backend.billing.models.effects import CacheDependencyKey, TaskTrigger

logger = logging.getLogger(__name__)


class InMemoryRlsChannel:
    """In-memory implementation of RlsChannel.

    Records every operation and tracks the effective settings the way a
    transaction-local channel would.
    """

    def __init__(self) -> None:
        self.operations: list[tuple[str, Any]] = []
        self.claims: dict[str, Any] | None = None
        self.role: str | None = None
        self.livemode: bool | None = None

    async def clear_claims(self) -> None:
        self.operations.append(("clear_claims", None))
        self.claims = None

    async def set_claims(self, claims: dict[str, Any]) -> None:
        self.operations.append(("set_claims", claims))
        self.claims = claims

    async def set_role(self, role: str) -> None:
        if role not in ALLOWED_ROLES:
            raise RlsContextError(f"Invalid RLS role: {role!r}")
        self.operations.append(("set_role", role))
        self.role = role

    async def set_livemode(self, livemode: bool) -> None:
        self.operations.append(("set_livemode", livemode))
        self.livemode = livemode

    async def reset_role(self) -> None:
        self.operations.append(("reset_role", None))
        self.role = None


class InMemoryCacheInvalidator:
    """In-memory implementation of CacheInvalidator."""

    def __init__(self, fail_on: set[str] | None = None) -> None:
        self.invalidated: list[CacheDependencyKey] = []
        self._fail_on = fail_on or set()

    async def invalidate(self, key: CacheDependencyKey) -> None:
        if key in self._fail_on:
            raise ConnectionError(f"cache unavailable for {key}")
        self.invalidated.append(key)


class InMemoryTaskDispatcher:
    """In-memory implementation of TaskDispatcher."""

    def __init__(self) -> None:
        self.dispatched: list[TaskTrigger] = []

    async def dispatch(self, trigger: TaskTrigger) -> None:
        self.dispatched.append(trigger)


class LoggingCacheInvalidator:
    """CacheInvalidator for processes without a shared cache.

    Keeps no state; each key is logged and dropped.
    """

    async def invalidate(self, key: CacheDependencyKey) -> None:
        logger.debug(
            "Cache invalidation skipped, no cache configured",
            extra={"structured": {"key": key}},
        )


class LoggingTaskDispatcher:
    """TaskDispatcher for processes without a task queue.

    Keeps no state; each trigger is logged and dropped.
    """

    async def dispatch(self, trigger: TaskTrigger) -> None:
        logger.warning(
            "Trigger dropped, no task queue configured",
            extra={"structured": {"task": trigger.task, "idempotency_key": trigger.idempotency_key}},
        )
