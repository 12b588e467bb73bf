"""SQL implementations of collaborator interfaces."""

import hashlib
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.billing.db.models import ApiKey, AuthSession, User
from backend.billing.errors import InvalidApiKeyError
from backend.billing.models.identity import ApiKeyType, KeyVerifyResult, SessionUser

T = TypeVar("T")


def hash_token(token: str) -> str:
    """Hash an API key or session token for storage and lookup."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class SqlAlchemyTransactionRunner:
    """SQL implementation of TransactionRunner."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def run(self, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """Run fn in a fresh session; commit on return, roll back on raise."""
        async with self._session_factory() as session:
            async with session.begin():
                return await fn(session)


class DatabaseKeyVerifier:
    """SQL implementation of KeyVerifier."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def verify(self, key: str) -> KeyVerifyResult:
        """Verify an API key by its token hash."""
        if not key:
            raise InvalidApiKeyError("API key is empty")

        async with self._session_factory() as session:
            result = await session.execute(
                select(ApiKey).where(ApiKey.token_hash == hash_token(key))
            )
            record = result.scalar_one_or_none()

        if record is None or not record.active:
            raise InvalidApiKeyError("Invalid API key")

        key_type = ApiKeyType(record.type)
        if key_type == ApiKeyType.billing_portal_token:
            user_id = record.billing_portal_user_id
        else:
            user_id = record.user_id

        return KeyVerifyResult(
            key_id=record.id,
            key_type=key_type,
            user_id=user_id or "",
            owner_id=record.organization_id,
            environment="live" if record.livemode else "test",
            billing_portal_user_id=record.billing_portal_user_id,
        )


class DatabaseSessionProvider:
    """SQL implementation of SessionProvider."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_session(self, token: str) -> SessionUser | None:
        """Return the user of an unexpired session."""
        if not token:
            return None

        async with self._session_factory() as session:
            result = await session.execute(
                select(AuthSession, User)
                .join(User, User.better_auth_id == AuthSession.better_auth_id)
                .where(
                    AuthSession.token_hash == hash_token(token),
                    AuthSession.expires_at > datetime.now(timezone.utc),
                )
            )
            row = result.first()

        if row is None:
            return None

        auth_session, user = row
        return SessionUser(id=auth_session.better_auth_id, email=user.email)
