"""Identity and claim models produced by credential resolution."""

from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Provider = Literal["webapp", "apiKey", "customerBillingPortal"]
ClaimRole = Literal["merchant", "customer"]


class ApiKeyType(str, Enum):
    """API key types."""

    secret = "secret"
    billing_portal_token = "billing_portal_token"


class SessionUser(BaseModel):
    """User attached to an authenticated webapp session."""

    id: str  # auth provider id (users.better_auth_id)
    email: str


class Credentials(BaseModel):
    """Inbound credentials for an authenticated transaction.

    At least one of ``api_key`` or ``session_token`` must be present for the
    request to resolve to an identity.
    """

    api_key: str | None = None
    session_token: str | None = None
    billing_portal_organization_id: str | None = None
    customer_id: str | None = None
    test_only_organization_id: str | None = None


class KeyVerifyResult(BaseModel):
    """Result of verifying an API key."""

    key_id: str
    key_type: ApiKeyType
    user_id: str  # internal user id or external auth-provider id
    owner_id: str  # owning organization id
    environment: Literal["live", "test"]
    billing_portal_user_id: str | None = None


class AppMetadata(BaseModel):
    """Server-computed provenance of a set of claims."""

    provider: Provider
    customer_id: str | None = None


class UserMetadata(BaseModel):
    """User section of the claims; ``id`` mirrors the top-level ``sub``."""

    id: str | None
    email: str
    role: ClaimRole
    aud: str = "stub"
    created_at: str
    updated_at: str
    app_metadata: AppMetadata
    user_metadata: dict[str, str] = Field(default_factory=dict)


class JwtClaim(BaseModel):
    """Claims serialized into the transaction's RLS context."""

    model_config = ConfigDict(frozen=True)

    role: ClaimRole
    sub: str | None
    email: str
    organization_id: str
    session_id: str | None = None
    user_metadata: UserMetadata
    app_metadata: AppMetadata


class DatabaseAuthenticationInfo(BaseModel):
    """Resolved identity for one authenticated transaction."""

    user_id: str | None
    livemode: bool
    jwt_claim: JwtClaim


def utc_now_iso() -> str:
    """Current UTC time as ISO8601."""
    return datetime.now(timezone.utc).isoformat()


def build_jwt_claim(
    *,
    user_id: str | None,
    email: str,
    role: ClaimRole,
    organization_id: str | None,
    provider: Provider,
    customer_id: str | None = None,
    session_id: str | None = None,
    created_at: str | None = None,
    updated_at: str | None = None,
) -> JwtClaim:
    """Build claims with ``sub`` and ``user_metadata.id`` taken from one value.

    Every resolution path goes through here so the two fields cannot drift.
    """
    now = utc_now_iso()
    return JwtClaim(
        role=role,
        sub=user_id,
        email=email,
        organization_id=organization_id or "",
        session_id=session_id,
        user_metadata=UserMetadata(
            id=user_id,
            email=email,
            role=role,
            created_at=created_at or now,
            updated_at=updated_at or now,
            app_metadata=AppMetadata(provider=provider, customer_id=customer_id),
        ),
        app_metadata=AppMetadata(provider=provider),
    )
