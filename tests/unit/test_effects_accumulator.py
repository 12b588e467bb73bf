"""Unit tests for the effects accumulator and post-commit steps."""

import logging

import pytest

from backend.billing.db.inmemory import InMemoryCacheInvalidator, InMemoryTaskDispatcher
from backend.billing.models.effects import (
    CacheDependency,
    EventInsert,
    LedgerCommand,
    LedgerTransactionType,
    TaskTrigger,
)
from backend.billing.transactions.effects import (
    EffectsAccumulator,
    create_accumulator,
    dispatch_after_commit,
    invalidate_after_commit,
)


def make_event(event_type: str, hash: str | None = None) -> EventInsert:
    return EventInsert(
        type=event_type, organization_id="org_1", livemode=True, hash=hash or ""
    )


class FailingDispatcher:
    """Dispatcher that fails for one task name."""

    def __init__(self, failing_task: str) -> None:
        self.failing_task = failing_task
        self.dispatched: list[TaskTrigger] = []

    async def dispatch(self, trigger: TaskTrigger) -> None:
        if trigger.task == self.failing_task:
            raise ConnectionError("queue unavailable")
        self.dispatched.append(trigger)


class TestCreateAccumulator:
    """Test effect-emitting functions."""

    def test_new_accumulator_is_empty(self) -> None:
        effects = create_accumulator()
        assert effects.accumulator == EffectsAccumulator()

    def test_each_function_appends_to_its_own_queue(self) -> None:
        effects = create_accumulator()
        event = make_event("customer.created")
        command = LedgerCommand(
            type=LedgerTransactionType.admin_credit_adjusted,
            organization_id="org_1",
            livemode=True,
        )
        trigger = TaskTrigger(task="send-receipt")

        effects.emit_event(event)
        effects.enqueue_ledger_command(command)
        effects.invalidate_cache(CacheDependency.customer("cus_1"))
        effects.enqueue_trigger_task(trigger)

        assert effects.accumulator.events == [event]
        assert effects.accumulator.ledger_commands == [command]
        assert effects.accumulator.cache_invalidations == ["customer:cus_1"]
        assert effects.accumulator.background_triggers == [trigger]

    def test_insertion_order_is_preserved_across_calls(self) -> None:
        effects = create_accumulator()
        first, second, third = (make_event(name) for name in ("a", "b", "c"))

        effects.emit_event(first, second)
        effects.emit_event(third)

        assert [event.type for event in effects.accumulator.events] == ["a", "b", "c"]

    def test_repeated_appends_are_kept(self) -> None:
        effects = create_accumulator()
        event = make_event("a", hash="same")

        effects.emit_event(event)
        effects.emit_event(event)
        effects.invalidate_cache("customer:cus_1", "customer:cus_1")

        assert len(effects.accumulator.events) == 2
        assert effects.accumulator.cache_invalidations == ["customer:cus_1", "customer:cus_1"]

    def test_accumulators_are_independent(self) -> None:
        first = create_accumulator()
        second = create_accumulator()

        first.invalidate_cache("customer:cus_1")

        assert second.accumulator.cache_invalidations == []


class TestInvalidateAfterCommit:
    """Test best-effort cache invalidation."""

    @pytest.mark.asyncio
    async def test_invalidates_each_distinct_key_once(self) -> None:
        invalidator = InMemoryCacheInvalidator()

        failures = await invalidate_after_commit(
            ["customer:cus_1", "subscription:sub_1", "customer:cus_1"], invalidator
        )

        assert failures == 0
        assert invalidator.invalidated == ["customer:cus_1", "subscription:sub_1"]

    @pytest.mark.asyncio
    async def test_failure_is_logged_and_other_keys_still_run(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        invalidator = InMemoryCacheInvalidator(fail_on={"customer:cus_1"})
        stages: list[str] = []

        with caplog.at_level(logging.ERROR, logger="backend.billing.transactions.effects"):
            failures = await invalidate_after_commit(
                ["customer:cus_1", "subscription:sub_1"], invalidator, on_failure=stages.append
            )

        assert failures == 1
        assert invalidator.invalidated == ["subscription:sub_1"]
        assert stages == ["cache_invalidation"]
        assert "Cache invalidation failed" in caplog.text

    @pytest.mark.asyncio
    async def test_no_keys_is_a_no_op(self) -> None:
        invalidator = InMemoryCacheInvalidator()
        assert await invalidate_after_commit([], invalidator) == 0
        assert invalidator.invalidated == []


class TestDispatchAfterCommit:
    """Test best-effort trigger dispatch."""

    @pytest.mark.asyncio
    async def test_dispatches_in_order(self) -> None:
        dispatcher = InMemoryTaskDispatcher()
        triggers = [TaskTrigger(task="a"), TaskTrigger(task="b")]

        failures = await dispatch_after_commit(triggers, dispatcher)

        assert failures == 0
        assert [trigger.task for trigger in dispatcher.dispatched] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_failure_does_not_raise(self) -> None:
        dispatcher = FailingDispatcher(failing_task="a")
        stages: list[str] = []

        failures = await dispatch_after_commit(
            [TaskTrigger(task="a"), TaskTrigger(task="b")], dispatcher, on_failure=stages.append
        )

        assert failures == 1
        assert [trigger.task for trigger in dispatcher.dispatched] == ["b"]
        assert stages == ["trigger_dispatch"]
