"""Dev seeding helpers for identities that the executors can resolve."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.billing.db.engine import create_session_factory, get_async_engine
from backend.billing.db.models import (
    ApiKey,
    AuthSession,
    Base,
    Customer,
    Membership,
    Organization,
    User,
)
from backend.billing.db.sql_repositories import hash_token

RowT = TypeVar("RowT", bound=Base)

# Fixed dev identifiers
DEV_ORG_ID = "org_dev"
DEV_API_KEY = "sk_test_dev"
DEV_SESSION_TOKEN = "sess_dev"
DEV_BETTER_AUTH_ID = "ba_dev"


class Seeder:
    """Inserts identity rows, one committed transaction per row."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _add(self, row: RowT) -> RowT:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(row)
        return row

    async def organization(self, name: str = "Acme", id: str | None = None) -> Organization:
        organization = Organization(name=name)
        if id is not None:
            organization.id = id
        return await self._add(organization)

    async def user(
        self,
        email: str = "owner@example.com",
        better_auth_id: str | None = None,
        external_auth_id: str | None = None,
    ) -> User:
        return await self._add(
            User(email=email, better_auth_id=better_auth_id, external_auth_id=external_auth_id)
        )

    async def membership(
        self,
        user: User,
        organization: Organization,
        *,
        focused: bool = False,
        livemode: bool = True,
        deactivated: bool = False,
        created_at: datetime | None = None,
    ) -> Membership:
        return await self._add(
            Membership(
                user_id=user.id,
                organization_id=organization.id,
                focused=focused,
                livemode=livemode,
                deactivated_at=datetime.now(timezone.utc) if deactivated else None,
                created_at=created_at or datetime.now(timezone.utc),
            )
        )

    async def api_key(
        self,
        token: str,
        organization: Organization,
        *,
        type: str = "secret",
        livemode: bool = True,
        active: bool = True,
        user_id: str | None = None,
        billing_portal_user_id: str | None = None,
    ) -> ApiKey:
        return await self._add(
            ApiKey(
                organization_id=organization.id,
                token_hash=hash_token(token),
                type=type,
                livemode=livemode,
                active=active,
                user_id=user_id,
                billing_portal_user_id=billing_portal_user_id,
            )
        )

    async def customer(
        self,
        organization: Organization,
        user: User | None = None,
        *,
        email: str = "customer@example.com",
        livemode: bool = True,
        archived: bool = False,
        billing_portal_user_id: str | None = None,
    ) -> Customer:
        return await self._add(
            Customer(
                organization_id=organization.id,
                user_id=user.id if user is not None else None,
                email=email,
                livemode=livemode,
                archived=archived,
                billing_portal_user_id=billing_portal_user_id,
            )
        )

    async def auth_session(
        self, token: str, better_auth_id: str, *, expired: bool = False, hours: int = 1
    ) -> AuthSession:
        offset = timedelta(hours=-hours) if expired else timedelta(hours=hours)
        return await self._add(
            AuthSession(
                token_hash=hash_token(token),
                better_auth_id=better_auth_id,
                expires_at=datetime.now(timezone.utc) + offset,
            )
        )


async def seed_dev_identities() -> None:
    """Seed a dev organization reachable by API key and by session.

    This function is idempotent - safe to run multiple times. Creates:
    - Organization DEV_ORG_ID with a focused member
    - Secret test-mode API key DEV_API_KEY
    - Session DEV_SESSION_TOKEN for the member, valid for 30 days
    """
    session_factory = create_session_factory(get_async_engine())

    async with session_factory() as session:
        existing = await session.execute(
            select(Organization).where(Organization.id == DEV_ORG_ID)
        )
        if existing.scalar_one_or_none() is not None:
            print(f"Dev organization already exists: {DEV_ORG_ID}")
            return

    seeder = Seeder(session_factory)
    print(f"Creating dev organization {DEV_ORG_ID}...")
    organization = await seeder.organization("Dev Org", id=DEV_ORG_ID)
    user = await seeder.user(email="dev@example.com", better_auth_id=DEV_BETTER_AUTH_ID)
    await seeder.membership(user, organization, focused=True, livemode=False)
    await seeder.api_key(DEV_API_KEY, organization, livemode=False, user_id=user.id)
    await seeder.auth_session(DEV_SESSION_TOKEN, DEV_BETTER_AUTH_ID, hours=24 * 30)
    print("Dev seeding complete")


if __name__ == "__main__":
    asyncio.run(seed_dev_identities())
