"""Shared transaction engine behind the admin, merchant and customer executors.

One invocation runs this sequence exactly once:

1. Resolve the security context (before any transaction is opened)
2. Open a transaction and apply the RLS context
3. Run the business callback with a fresh effects accumulator
4. On a failure outcome, abort so the transaction rolls back
5. On success, persist events and ledger commands in the same transaction
6. After commit, invalidate caches and dispatch background triggers

Identity resolution is the only thing that differs between executors, so it
is supplied as a strategy.
"""

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, Protocol, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.billing.auth.identity import (
    get_database_authentication_info,
    resolve_customer_portal_identity,
)
from backend.billing.config import Settings, get_settings
from backend.billing.db.context import SecurityContext
from backend.billing.db.repositories import (
    CacheInvalidator,
    KeyVerifier,
    RlsChannel,
    SessionProvider,
    TaskDispatcher,
    TransactionRunner,
)
from backend.billing.db.rls import PostgresRlsChannel, rls_context
from backend.billing.errors import AuthenticationError, CallbackFailure, TestOnlyOrganizationError
from backend.billing.models.identity import Credentials
from backend.billing.models.outcome import Err, Ok, unwrap
from backend.billing.transactions.effects import (
    EffectsAccumulator,
    EffectsCounts,
    create_accumulator,
    dispatch_after_commit,
    invalidate_after_commit,
    process_effects,
)

T = TypeVar("T")


@dataclass(frozen=True)
class TransactionParams:
    """Everything a business callback receives.

    ``transaction`` is already scoped by the RLS context. The four effect
    functions append to this invocation's accumulator only.
    """

    transaction: AsyncSession
    context: SecurityContext
    user_id: str | None
    organization_id: str | None
    customer_id: str | None
    livemode: bool
    invalidate_cache: Callable[..., None]
    emit_event: Callable[..., None]
    enqueue_ledger_command: Callable[..., None]
    enqueue_trigger_task: Callable[..., None]


BusinessCallback = Callable[[TransactionParams], Awaitable[Ok[T] | Err]]


# Metrics interface (to be implemented by actual metrics system)
class TransactionMetrics:
    """Interface for transaction metrics."""

    def record_transaction(
        self,
        span_name: str,
        kind: str,
        outcome: str,
        latency_ms: float,
        events_count: int,
        ledger_commands_count: int,
    ) -> None:
        """Record one executor invocation."""
        pass

    def inc_post_commit_failure(self, stage: str) -> None:
        """Count a failed post-commit step."""
        pass


# Logging interface
class TransactionLogger:
    """Interface for structured logging."""

    def log_outcome(
        self,
        span_name: str,
        kind: str,
        outcome: str,
        latency_ms: float,
        events_count: int = 0,
        ledger_commands_count: int = 0,
        error_type: str | None = None,
    ) -> None:
        """Log one executor invocation."""
        pass


class IdentityStrategy(Protocol):
    """Produces the security context for one invocation."""

    kind: str

    async def resolve(self, engine: "TransactionEngine") -> SecurityContext:
        ...


@dataclass(frozen=True)
class AdminIdentity:
    """Elevated context for system-internal code. No identity lookup."""

    livemode: bool | None = None
    kind: str = "admin"

    async def resolve(self, engine: "TransactionEngine") -> SecurityContext:
        livemode = self.livemode
        if livemode is None:
            livemode = engine.settings.admin_default_livemode
        return SecurityContext.admin(livemode=livemode)


@dataclass(frozen=True)
class MerchantIdentity:
    """Context resolved from an API key or a webapp session."""

    credentials: Credentials
    kind: str = "merchant"

    async def resolve(self, engine: "TransactionEngine") -> SecurityContext:
        info = await get_database_authentication_info(
            self.credentials,
            session_factory=engine.session_factory,
            key_verifier=engine.key_verifier,
            session_provider=engine.session_provider,
            settings=engine.settings,
        )
        return SecurityContext.from_auth_info(info)


@dataclass(frozen=True)
class CustomerIdentity:
    """Context scoped to one portal customer of an organization."""

    credentials: Credentials
    organization_id: str | None = None
    customer_id: str | None = None
    livemode: bool = True
    kind: str = "customer"

    async def resolve(self, engine: "TransactionEngine") -> SecurityContext:
        if self.credentials.test_only_organization_id and not engine.settings.is_test:
            raise TestOnlyOrganizationError()

        organization_id = (
            self.organization_id
            or self.credentials.test_only_organization_id
            or self.credentials.billing_portal_organization_id
        )
        if not organization_id:
            raise AuthenticationError("No billing portal organization for customer transaction")

        user = None
        if self.credentials.session_token:
            user = await engine.session_provider.get_session(self.credentials.session_token)
        if user is None:
            raise AuthenticationError("No user found for a customer transaction")

        async with engine.session_factory() as session:
            info = await resolve_customer_portal_identity(
                session,
                auth_user_id=user.id,
                organization_id=organization_id,
                customer_id=self.customer_id or self.credentials.customer_id,
                livemode=self.livemode,
            )
        return SecurityContext.from_auth_info(info)


@dataclass
class _Committed(Generic[T]):
    value: T
    counts: EffectsCounts
    accumulator: EffectsAccumulator


class TransactionEngine:
    """Runs business callbacks inside RLS-scoped transactions with effects."""

    def __init__(
        self,
        runner: TransactionRunner,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        cache_invalidator: CacheInvalidator,
        task_dispatcher: TaskDispatcher,
        key_verifier: KeyVerifier,
        session_provider: SessionProvider,
        rls_channel_factory: Callable[[AsyncSession], RlsChannel] = PostgresRlsChannel,
        metrics: TransactionMetrics | None = None,
        logger: TransactionLogger | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize engine.

        Args:
            runner: Transaction-opening primitive
            session_factory: Sessions for identity lookups outside the transaction
            cache_invalidator: Post-commit cache sink
            task_dispatcher: Post-commit background task sink
            key_verifier: API key verification
            session_provider: Webapp session lookup
            rls_channel_factory: Builds the RLS channel for a transaction handle
            metrics: Metrics recorder (optional, defaults to no-op)
            logger: Structured logger (optional, defaults to no-op)
            settings: Settings (optional, defaults to environment)
        """
        self.runner = runner
        self.session_factory = session_factory
        self.cache_invalidator = cache_invalidator
        self.task_dispatcher = task_dispatcher
        self.key_verifier = key_verifier
        self.session_provider = session_provider
        self.settings = settings or get_settings()
        self._rls_channel_factory = rls_channel_factory
        self._metrics = metrics or TransactionMetrics()
        self._logger = logger or TransactionLogger()

    async def run_with_result(
        self, fn: BusinessCallback[T], strategy: IdentityStrategy
    ) -> Ok[T] | Err:
        """Run fn and return its tagged outcome.

        Failures raised or returned by fn become Err carrying the original
        error object. Errors from identity resolution, RLS application, effect
        persistence, commit and cancellation are not the callback's and
        propagate.

        Raises:
            AuthenticationError: If no identity could be resolved
            NotFoundError: If the identity has no visible customer or membership
        """
        start_time = time.monotonic()
        span_name = f"{self.settings.transaction_span_prefix}.{strategy.kind}"

        try:
            context = await strategy.resolve(self)
            committed = await self.runner.run(self._transaction_body(fn, context))
        except CallbackFailure as failure:
            self._record(span_name, strategy.kind, "error", start_time, error=failure.error)
            return Err(failure.error)
        except BaseException as exc:
            self._record(span_name, strategy.kind, "aborted", start_time, error=exc)
            raise

        # Only reachable once the commit has succeeded
        await invalidate_after_commit(
            committed.accumulator.cache_invalidations,
            self.cache_invalidator,
            on_failure=self._metrics.inc_post_commit_failure,
        )
        await dispatch_after_commit(
            committed.accumulator.background_triggers,
            self.task_dispatcher,
            on_failure=self._metrics.inc_post_commit_failure,
        )

        self._record(span_name, strategy.kind, "ok", start_time, counts=committed.counts)
        return Ok(committed.value)

    async def run(self, fn: BusinessCallback[T], strategy: IdentityStrategy) -> T:
        """Run fn and return its bare value, re-raising the original error on failure."""
        return unwrap(await self.run_with_result(fn, strategy))

    def _transaction_body(
        self, fn: BusinessCallback[T], context: SecurityContext
    ) -> Callable[[AsyncSession], Awaitable[_Committed[T]]]:
        async def body(session: AsyncSession) -> _Committed[T]:
            channel = self._rls_channel_factory(session)
            async with rls_context(channel, context):
                effects = create_accumulator()
                params = TransactionParams(
                    transaction=session,
                    context=context,
                    user_id=context.subject_id,
                    organization_id=context.organization_id,
                    customer_id=context.customer_id,
                    livemode=context.livemode,
                    invalidate_cache=effects.invalidate_cache,
                    emit_event=effects.emit_event,
                    enqueue_ledger_command=effects.enqueue_ledger_command,
                    enqueue_trigger_task=effects.enqueue_trigger_task,
                )

                try:
                    outcome = await fn(params)
                except Exception as exc:
                    raise CallbackFailure(exc) from exc

                # Raising is what makes the runner roll back
                if isinstance(outcome, Err):
                    raise CallbackFailure(outcome.error)
                if not isinstance(outcome, Ok):
                    raise TypeError(
                        f"Transaction callback must return Ok or Err, got {type(outcome).__name__}"
                    )

                counts = await process_effects(effects.accumulator, session)
            return _Committed(value=outcome.value, counts=counts, accumulator=effects.accumulator)

        return body

    def _record(
        self,
        span_name: str,
        kind: str,
        outcome: str,
        start_time: float,
        counts: EffectsCounts | None = None,
        error: BaseException | None = None,
    ) -> None:
        latency_ms = (time.monotonic() - start_time) * 1000
        events_count = counts.events_count if counts else 0
        ledger_commands_count = counts.ledger_commands_count if counts else 0
        self._metrics.record_transaction(
            span_name, kind, outcome, latency_ms, events_count, ledger_commands_count
        )
        self._logger.log_outcome(
            span_name,
            kind,
            outcome,
            latency_ms,
            events_count=events_count,
            ledger_commands_count=ledger_commands_count,
            error_type=type(error).__name__ if error is not None else None,
        )
