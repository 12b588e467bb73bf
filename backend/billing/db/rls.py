"""Row-level-security context for a single transaction.

Every non-admin transaction MUST:
1. Clear claims left behind on the pooled connection
2. Set the claims, role and livemode markers before any business query
3. Reset the role before the transaction ends

All settings are transaction-local (``set_config(..., true)`` and
``SET LOCAL ROLE``), so they never outlive the transaction that applied them.
"""

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from backend.billing.db.context import SecurityContext
from backend.billing.db.repositories import RlsChannel
from backend.billing.errors import RlsContextError

logger = logging.getLogger(__name__)

# Database roles that policies are written against. SET ROLE cannot take a
# bound parameter, so only these names are ever interpolated.
ALLOWED_ROLES = frozenset({"merchant", "customer"})

CLAIMS_SETTING = "request.jwt.claims"
LIVEMODE_SETTING = "app.livemode"


class PostgresRlsChannel:
    """RlsChannel backed by PostgreSQL session settings."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def clear_claims(self) -> None:
        await self._session.execute(
            text("SELECT set_config(:name, NULL, true)"), {"name": CLAIMS_SETTING}
        )

    async def set_claims(self, claims: dict[str, Any]) -> None:
        await self._session.execute(
            text("SELECT set_config(:name, :value, true)"),
            {"name": CLAIMS_SETTING, "value": json.dumps(claims)},
        )

    async def set_role(self, role: str) -> None:
        if role not in ALLOWED_ROLES:
            raise RlsContextError(f"Invalid RLS role: {role!r}")
        await self._session.execute(text(f"SET LOCAL ROLE {role}"))

    async def set_livemode(self, livemode: bool) -> None:
        await self._session.execute(
            text("SELECT set_config(:name, :value, true)"),
            {"name": LIVEMODE_SETTING, "value": "true" if livemode else "false"},
        )

    async def reset_role(self) -> None:
        await self._session.execute(text("RESET ROLE"))


def validate_claims(context: SecurityContext) -> dict[str, Any] | None:
    """Serialize and check the context's claims before anything is applied.

    Raises:
        RlsContextError: If claims are missing for a scoped role or disagree
            with the context
    """
    claims = context.rls_claims()
    if context.role == "admin":
        return None
    if claims is None:
        raise RlsContextError(f"{context.role} context has no claims")
    if claims.get("role") != context.role:
        raise RlsContextError(
            f"Claims role {claims.get('role')!r} does not match context role {context.role!r}"
        )
    if context.role not in ALLOWED_ROLES:
        raise RlsContextError(f"Invalid RLS role: {context.role!r}")
    return claims


async def apply_rls_context(channel: RlsChannel, context: SecurityContext) -> None:
    """Apply a security context at the start of a transaction.

    Admin contexts only clear stale claims and set livemode; they keep the
    connection's privileged role.

    Raises:
        RlsContextError: If the claims are malformed or the role is invalid.
            The caller's transaction must abort.
    """
    claims = validate_claims(context)

    await channel.clear_claims()
    if claims is not None:
        await channel.set_claims(claims)
        await channel.set_role(context.role)
    await channel.set_livemode(context.livemode)

    logger.debug(
        "RLS context applied",
        extra={
            "structured": {
                "role": context.role,
                "organization_id": context.organization_id,
                "livemode": context.livemode,
            }
        },
    )


@asynccontextmanager
async def rls_context(channel: RlsChannel, context: SecurityContext) -> AsyncIterator[None]:
    """Hold a security context for the body of a transaction.

    The role is reset when the body completes. If the body raises, the reset
    is skipped: the transaction is rolling back, which discards every
    transaction-local setting.
    """
    await apply_rls_context(channel, context)
    yield
    await channel.reset_role()
