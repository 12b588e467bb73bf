"""PostgreSQL-specific integration test for transaction-local RLS settings.

SQLite has no set_config, so these run only against a real PostgreSQL
instance. Role switching is not exercised because the merchant and customer
roles are provisioned by migrations outside this package.

Run with: DATABASE_URL='postgresql://...' pytest -m postgres
"""

import json

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from backend.billing.db.context import SecurityContext
from backend.billing.db.rls import CLAIMS_SETTING, LIVEMODE_SETTING, PostgresRlsChannel, rls_context


async def current_setting(session: AsyncSession, name: str) -> str | None:
    result = await session.execute(text("SELECT current_setting(:name, true)"), {"name": name})
    return result.scalar_one()


@pytest.mark.postgres
@pytest.mark.asyncio
async def test_settings_visible_inside_transaction_only(postgres_session: AsyncSession) -> None:
    channel = PostgresRlsChannel(postgres_session)

    async with postgres_session.begin():
        await channel.set_claims({"role": "merchant", "organization_id": "org_pg"})
        await channel.set_livemode(False)

        claims = await current_setting(postgres_session, CLAIMS_SETTING)
        assert claims is not None
        assert json.loads(claims)["organization_id"] == "org_pg"
        assert await current_setting(postgres_session, LIVEMODE_SETTING) == "false"

    # Next transaction on the same connection sees nothing left behind
    async with postgres_session.begin():
        assert await current_setting(postgres_session, CLAIMS_SETTING) in (None, "")
        assert await current_setting(postgres_session, LIVEMODE_SETTING) in (None, "")


@pytest.mark.postgres
@pytest.mark.asyncio
async def test_admin_context_clears_claims_and_sets_livemode(postgres_session: AsyncSession) -> None:
    channel = PostgresRlsChannel(postgres_session)

    async with postgres_session.begin():
        await channel.set_claims({"role": "merchant", "organization_id": "stale"})

        async with rls_context(channel, SecurityContext.admin(livemode=True)):
            assert await current_setting(postgres_session, CLAIMS_SETTING) in (None, "")
            assert await current_setting(postgres_session, LIVEMODE_SETTING) == "true"
