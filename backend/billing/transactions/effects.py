"""Per-transaction effects accumulator and its processing steps.

Effects are collected while business logic runs, persisted inside the same
transaction (events and ledger commands), and applied after commit (cache
invalidations and background triggers).
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from backend.billing.db.events import insert_events_skipping_existing
from backend.billing.db.ledger import process_ledger_command
from backend.billing.db.repositories import CacheInvalidator, TaskDispatcher
from backend.billing.models.effects import (
    CacheDependencyKey,
    EventInsert,
    LedgerCommand,
    TaskTrigger,
)

logger = logging.getLogger(__name__)


@dataclass
class EffectsAccumulator:
    """Ordered, append-only effect queues owned by one transaction attempt."""

    events: list[EventInsert] = field(default_factory=list)
    ledger_commands: list[LedgerCommand] = field(default_factory=list)
    cache_invalidations: list[CacheDependencyKey] = field(default_factory=list)
    background_triggers: list[TaskTrigger] = field(default_factory=list)


@dataclass(frozen=True)
class EffectCallbacks:
    """Effect-emitting functions bound to one accumulator."""

    accumulator: EffectsAccumulator
    invalidate_cache: Callable[..., None]
    emit_event: Callable[..., None]
    enqueue_ledger_command: Callable[..., None]
    enqueue_trigger_task: Callable[..., None]


@dataclass(frozen=True)
class EffectsCounts:
    """Number of effects persisted inside the transaction."""

    events_count: int
    ledger_commands_count: int


def create_accumulator() -> EffectCallbacks:
    """Create a fresh accumulator and the functions that append to it.

    Appends are synchronous and keep insertion order. Repeated calls queue
    repeated entries.
    """
    accumulator = EffectsAccumulator()

    def invalidate_cache(*keys: CacheDependencyKey) -> None:
        accumulator.cache_invalidations.extend(keys)

    def emit_event(*events: EventInsert) -> None:
        accumulator.events.extend(events)

    def enqueue_ledger_command(*commands: LedgerCommand) -> None:
        accumulator.ledger_commands.extend(commands)

    def enqueue_trigger_task(*tasks: TaskTrigger) -> None:
        accumulator.background_triggers.extend(tasks)

    return EffectCallbacks(
        accumulator=accumulator,
        invalidate_cache=invalidate_cache,
        emit_event=emit_event,
        enqueue_ledger_command=enqueue_ledger_command,
        enqueue_trigger_task=enqueue_trigger_task,
    )


async def process_effects(
    accumulator: EffectsAccumulator, session: AsyncSession
) -> EffectsCounts:
    """Persist queued events and ledger commands on the active transaction.

    Must only be called after the business callback succeeded. Any failure
    propagates so the enclosing transaction rolls back as a whole.

    Args:
        accumulator: Effects queued during the callback
        session: The same transaction handle the callback used

    Returns:
        Counts of what was actually written
    """
    inserted_event_ids = await insert_events_skipping_existing(session, accumulator.events)

    for command in accumulator.ledger_commands:
        await process_ledger_command(command, session)

    return EffectsCounts(
        events_count=len(inserted_event_ids),
        ledger_commands_count=len(accumulator.ledger_commands),
    )


async def invalidate_after_commit(
    keys: list[CacheDependencyKey],
    invalidator: CacheInvalidator,
    on_failure: Callable[[str], None] | None = None,
) -> int:
    """Invalidate cache dependencies once the transaction has committed.

    Each key is attempted independently. Failures are logged and never
    raised: the database already holds the committed state.

    Returns:
        Number of keys that failed
    """
    failures = 0
    for key in dict.fromkeys(keys):
        try:
            await invalidator.invalidate(key)
        except Exception:
            failures += 1
            logger.exception(
                "Cache invalidation failed",
                extra={"structured": {"stage": "cache_invalidation", "key": key}},
            )
            if on_failure is not None:
                on_failure("cache_invalidation")
    return failures


async def dispatch_after_commit(
    triggers: list[TaskTrigger],
    dispatcher: TaskDispatcher,
    on_failure: Callable[[str], None] | None = None,
) -> int:
    """Start background tasks once the transaction has committed.

    Best-effort, like cache invalidation.

    Returns:
        Number of triggers that failed to dispatch
    """
    failures = 0
    for trigger in triggers:
        try:
            await dispatcher.dispatch(trigger)
        except Exception:
            failures += 1
            logger.exception(
                "Trigger dispatch failed",
                extra={"structured": {"stage": "trigger_dispatch", "task": trigger.task}},
            )
            if on_failure is not None:
                on_failure("trigger_dispatch")
    return failures
