"""Credential-to-identity resolution for authenticated transactions.

Each path returns a DatabaseAuthenticationInfo whose claims are built by
``build_jwt_claim``, so ``sub`` and ``user_metadata.id`` always agree and the
role and provider markers are computed here rather than taken from input.
Lookups run outside any RLS context, before the business transaction opens.
"""

import logging
from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.billing.config import Settings, get_settings
from backend.billing.db.models import Customer, Membership, User
from backend.billing.db.repositories import KeyVerifier, SessionProvider
from backend.billing.errors import (
    AuthenticationError,
    CustomerNotFoundError,
    InvalidApiKeyError,
    MembershipNotFoundError,
    TestOnlyOrganizationError,
)
from backend.billing.models.identity import (
    ApiKeyType,
    Credentials,
    DatabaseAuthenticationInfo,
    KeyVerifyResult,
    SessionUser,
    build_jwt_claim,
)

logger = logging.getLogger(__name__)

# API-key claims are not tied to a person's mailbox
API_KEY_CLAIM_EMAIL = "apiKey@example.com"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


async def resolve_webapp_identity(
    session: AsyncSession, user: SessionUser
) -> DatabaseAuthenticationInfo:
    """Resolve a merchant dashboard session to its focused organization.

    Only a membership that is focused and not deactivated grants scope. When
    none qualifies the caller stays authenticated with an empty organization
    scope, no user id, and livemode off.
    """
    result = await session.execute(
        select(Membership)
        .join(User, Membership.user_id == User.id)
        .where(
            User.better_auth_id == user.id,
            Membership.focused.is_(True),
            Membership.deactivated_at.is_(None),
        )
        .order_by(Membership.created_at)
        .limit(1)
    )
    membership = result.scalar_one_or_none()

    user_id = membership.user_id if membership is not None else None
    organization_id = membership.organization_id if membership is not None else None
    livemode = membership.livemode if membership is not None else False

    if membership is None:
        logger.info(
            "No active focused membership for session user",
            extra={"structured": {"auth_user_id": user.id}},
        )

    return DatabaseAuthenticationInfo(
        user_id=user_id,
        livemode=livemode,
        jwt_claim=build_jwt_claim(
            user_id=user_id,
            email=user.email,
            role="merchant",
            organization_id=organization_id,
            provider="webapp",
        ),
    )


async def resolve_secret_api_key_identity(
    session: AsyncSession, verify_result: KeyVerifyResult
) -> DatabaseAuthenticationInfo:
    """Resolve a secret API key to a member of its owning organization.

    The key's user identifier may be an internal user id or an external
    auth-provider id; either maps to the internal id through a membership in
    the owning organization.

    Raises:
        InvalidApiKeyError: If the key is not a secret key
        MembershipNotFoundError: If the owning organization has no matching membership
    """
    if verify_result.key_type != ApiKeyType.secret:
        raise InvalidApiKeyError(f"Expected a secret key, got {verify_result.key_type.value}")

    result = await session.execute(
        select(Membership.user_id)
        .join(User, Membership.user_id == User.id)
        .where(
            Membership.organization_id == verify_result.owner_id,
            or_(
                Membership.user_id == verify_result.user_id,
                User.external_auth_id == verify_result.user_id,
            ),
        )
        .order_by(Membership.created_at)
        .limit(1)
    )
    user_id = result.scalar_one_or_none()
    if user_id is None:
        raise MembershipNotFoundError(
            f"No membership for API key {verify_result.key_id} in its organization"
        )

    return DatabaseAuthenticationInfo(
        user_id=user_id,
        livemode=verify_result.environment == "live",
        jwt_claim=build_jwt_claim(
            user_id=user_id,
            email=API_KEY_CLAIM_EMAIL,
            role="merchant",
            organization_id=verify_result.owner_id,
            provider="apiKey",
            session_id=verify_result.key_id,
        ),
    )


async def resolve_billing_portal_api_key_identity(
    session: AsyncSession, verify_result: KeyVerifyResult
) -> DatabaseAuthenticationInfo:
    """Resolve a billing-portal token to its organization's earliest member.

    Raises:
        InvalidApiKeyError: If the key is not a billing-portal token or lacks
            its portal user id
        CustomerNotFoundError: If no customer carries the portal user id
        MembershipNotFoundError: If the customer's organization has no members
    """
    if verify_result.key_type != ApiKeyType.billing_portal_token:
        raise InvalidApiKeyError(
            f"Expected a billing portal token, got {verify_result.key_type.value}"
        )
    if not verify_result.billing_portal_user_id:
        raise InvalidApiKeyError("Billing portal token has no portal user")

    customer_result = await session.execute(
        select(Customer.organization_id)
        .where(
            Customer.organization_id == verify_result.owner_id,
            Customer.billing_portal_user_id == verify_result.billing_portal_user_id,
        )
        .limit(1)
    )
    organization_id = customer_result.scalar_one_or_none()
    if organization_id is None:
        raise CustomerNotFoundError()

    membership_result = await session.execute(
        select(Membership.user_id)
        .where(Membership.organization_id == organization_id)
        .order_by(Membership.created_at)
        .limit(1)
    )
    user_id = membership_result.scalar_one_or_none()
    if user_id is None:
        raise MembershipNotFoundError(f"No memberships for organization {organization_id}")

    return DatabaseAuthenticationInfo(
        user_id=user_id,
        livemode=verify_result.environment == "live",
        jwt_claim=build_jwt_claim(
            user_id=user_id,
            email=API_KEY_CLAIM_EMAIL,
            role="merchant",
            organization_id=organization_id,
            provider="apiKey",
            session_id=verify_result.key_id,
        ),
    )


async def resolve_customer_portal_identity(
    session: AsyncSession,
    *,
    auth_user_id: str,
    organization_id: str,
    customer_id: str | None = None,
    livemode: bool = True,
) -> DatabaseAuthenticationInfo:
    """Resolve a portal user to their customer record in an organization.

    Only non-archived customers in the requested livemode qualify. A record
    that exists solely in the other livemode is treated as missing.

    Raises:
        CustomerNotFoundError: If no qualifying customer exists
    """
    query = (
        select(Customer, User)
        .join(User, Customer.user_id == User.id)
        .where(
            User.better_auth_id == auth_user_id,
            Customer.organization_id == organization_id,
            Customer.livemode == livemode,
            Customer.archived.is_(False),
        )
    )
    if customer_id:
        query = query.where(Customer.id == customer_id)

    result = await session.execute(query.order_by(Customer.created_at).limit(1))
    row = result.first()
    if row is None:
        raise CustomerNotFoundError()

    customer, user = row
    return DatabaseAuthenticationInfo(
        user_id=user.id,
        livemode=customer.livemode,
        jwt_claim=build_jwt_claim(
            user_id=user.id,
            email=user.email,
            role="customer",
            organization_id=customer.organization_id,
            provider="customerBillingPortal",
            customer_id=customer.id,
            created_at=_iso(user.created_at),
            updated_at=_iso(user.updated_at),
        ),
    )


async def resolve_api_key_identity(
    session: AsyncSession, verify_result: KeyVerifyResult
) -> DatabaseAuthenticationInfo:
    """Dispatch a verified API key to the resolver for its type.

    Raises:
        InvalidApiKeyError: If the key has no user or no owner
    """
    if not verify_result.user_id:
        raise InvalidApiKeyError("Invalid API key, no user")
    if not verify_result.owner_id:
        raise InvalidApiKeyError("Invalid API key, no owner")

    if verify_result.key_type == ApiKeyType.secret:
        return await resolve_secret_api_key_identity(session, verify_result)
    return await resolve_billing_portal_api_key_identity(session, verify_result)


async def get_database_authentication_info(
    credentials: Credentials,
    *,
    session_factory: async_sessionmaker[AsyncSession],
    key_verifier: KeyVerifier,
    session_provider: SessionProvider,
    settings: Settings | None = None,
) -> DatabaseAuthenticationInfo:
    """Resolve inbound credentials to an identity.

    An API key wins over a session. A session resolves as a portal customer
    when a billing-portal organization is present, otherwise as a merchant.

    Raises:
        TestOnlyOrganizationError: If the test organization override is used
            outside the test environment
        AuthenticationError: If no credential resolves to a user
    """
    settings = settings or get_settings()
    if credentials.test_only_organization_id and not settings.is_test:
        raise TestOnlyOrganizationError()

    if credentials.api_key:
        verify_result = await key_verifier.verify(credentials.api_key)
        async with session_factory() as session:
            return await resolve_api_key_identity(session, verify_result)

    user = None
    if credentials.session_token:
        user = await session_provider.get_session(credentials.session_token)
    if user is None:
        raise AuthenticationError("No user found for a non-API key transaction")

    portal_organization_id = (
        credentials.test_only_organization_id or credentials.billing_portal_organization_id
    )
    async with session_factory() as session:
        if portal_organization_id:
            return await resolve_customer_portal_identity(
                session,
                auth_user_id=user.id,
                organization_id=portal_organization_id,
                customer_id=credentials.customer_id,
            )
        return await resolve_webapp_identity(session, user)
