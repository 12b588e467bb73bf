"""Public transaction executors.

Each flavor has a result-returning surface (``*_with_result``) that resolves
to ``Ok``/``Err``, and an unwrapping surface that returns the bare value or
re-raises the callback's original error.

Example:
    async def create_thing(params: TransactionParams) -> Ok[str] | Err:
        params.emit_event(EventInsert(...))
        params.invalidate_cache(CacheDependency.customer(customer_id))
        return Ok(thing_id)

    thing_id = await merchant_transaction(create_thing, credentials)
"""

import logging
from typing import TypeVar

import redis.asyncio as redis

from backend.billing.config import get_settings
from backend.billing.db.engine import create_session_factory, get_async_engine
from backend.billing.db.inmemory import LoggingCacheInvalidator, LoggingTaskDispatcher
from backend.billing.db.sql_repositories import (
    DatabaseKeyVerifier,
    DatabaseSessionProvider,
    SqlAlchemyTransactionRunner,
)
from backend.billing.models.identity import Credentials
from backend.billing.models.outcome import Err, Ok
from backend.billing.redis_sinks import RedisCacheInvalidator, RedisTaskDispatcher
from backend.billing.transactions.engine import (
    AdminIdentity,
    BusinessCallback,
    CustomerIdentity,
    MerchantIdentity,
    TransactionEngine,
)
from backend.billing.utils.logging import StructuredTransactionLogger
from backend.billing.utils.metrics import PrometheusTransactionMetrics

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Global engine instance and the Redis client it was built with
_engine: TransactionEngine | None = None
_redis_client: redis.Redis | None = None


def create_default_engine(redis_client: redis.Redis | None = None) -> TransactionEngine:
    """Build an engine from settings.

    Cache invalidation and task dispatch go to Redis when a client is given.
    Without one they are logged and dropped. The caller owns the client.
    """
    settings = get_settings()
    session_factory = create_session_factory(get_async_engine())

    if redis_client is not None:
        cache_invalidator = RedisCacheInvalidator(redis_client, prefix=settings.cache_key_prefix)
        task_dispatcher = RedisTaskDispatcher(redis_client, queue_key=settings.trigger_queue_key)
    else:
        logger.warning("REDIS_URL not set; cache invalidations and triggers are dropped")
        cache_invalidator = LoggingCacheInvalidator()
        task_dispatcher = LoggingTaskDispatcher()

    return TransactionEngine(
        SqlAlchemyTransactionRunner(session_factory),
        session_factory=session_factory,
        cache_invalidator=cache_invalidator,
        task_dispatcher=task_dispatcher,
        key_verifier=DatabaseKeyVerifier(session_factory),
        session_provider=DatabaseSessionProvider(session_factory),
        metrics=PrometheusTransactionMetrics(),
        logger=StructuredTransactionLogger(),
        settings=settings,
    )


def get_transaction_engine() -> TransactionEngine:
    """Get global engine instance."""
    global _engine, _redis_client
    if _engine is None:
        settings = get_settings()
        if settings.redis_url and _redis_client is None:
            _redis_client = redis.from_url(settings.redis_url)
        _engine = create_default_engine(_redis_client)
    return _engine


def set_transaction_engine(engine: TransactionEngine | None) -> None:
    """Replace the global engine (None rebuilds it from settings on next use).

    The Redis client is kept and reused by the rebuilt engine.
    """
    global _engine
    _engine = engine


async def close_transaction_engine() -> None:
    """Drop the global engine and close its Redis client."""
    global _engine, _redis_client
    client = _redis_client
    _engine = None
    _redis_client = None
    if client is not None:
        await client.aclose()


async def admin_transaction_with_result(
    fn: BusinessCallback[T],
    *,
    livemode: bool | None = None,
    engine: TransactionEngine | None = None,
) -> Ok[T] | Err:
    """Run fn with elevated privileges and no organization scope.

    For system-internal code only. ``livemode`` defaults to the
    ``admin_default_livemode`` setting.
    """
    engine = engine or get_transaction_engine()
    return await engine.run_with_result(fn, AdminIdentity(livemode=livemode))


async def admin_transaction(
    fn: BusinessCallback[T],
    *,
    livemode: bool | None = None,
    engine: TransactionEngine | None = None,
) -> T:
    engine = engine or get_transaction_engine()
    return await engine.run(fn, AdminIdentity(livemode=livemode))


async def merchant_transaction_with_result(
    fn: BusinessCallback[T],
    credentials: Credentials,
    *,
    engine: TransactionEngine | None = None,
) -> Ok[T] | Err:
    """Run fn scoped to the identity behind an API key or webapp session.

    Raises:
        AuthenticationError: If the credentials resolve to no identity
    """
    engine = engine or get_transaction_engine()
    return await engine.run_with_result(fn, MerchantIdentity(credentials=credentials))


async def merchant_transaction(
    fn: BusinessCallback[T],
    credentials: Credentials,
    *,
    engine: TransactionEngine | None = None,
) -> T:
    engine = engine or get_transaction_engine()
    return await engine.run(fn, MerchantIdentity(credentials=credentials))


async def customer_transaction_with_result(
    fn: BusinessCallback[T],
    credentials: Credentials,
    *,
    organization_id: str | None = None,
    customer_id: str | None = None,
    livemode: bool = True,
    engine: TransactionEngine | None = None,
) -> Ok[T] | Err:
    """Run fn scoped to one portal customer.

    ``organization_id`` defaults to the billing-portal organization carried by
    the credentials.

    Raises:
        AuthenticationError: If there is no session or portal organization
        CustomerNotFoundError: If no active customer matches the livemode
        TestOnlyOrganizationError: If a test-only organization is used outside tests
    """
    engine = engine or get_transaction_engine()
    strategy = CustomerIdentity(
        credentials=credentials,
        organization_id=organization_id,
        customer_id=customer_id,
        livemode=livemode,
    )
    return await engine.run_with_result(fn, strategy)


async def customer_transaction(
    fn: BusinessCallback[T],
    credentials: Credentials,
    *,
    organization_id: str | None = None,
    customer_id: str | None = None,
    livemode: bool = True,
    engine: TransactionEngine | None = None,
) -> T:
    engine = engine or get_transaction_engine()
    strategy = CustomerIdentity(
        credentials=credentials,
        organization_id=organization_id,
        customer_id=customer_id,
        livemode=livemode,
    )
    return await engine.run(fn, strategy)
