"""Security context for tenancy enforcement."""

from dataclasses import dataclass
from typing import Any, Literal

from backend.billing.models.identity import DatabaseAuthenticationInfo, JwtClaim

Role = Literal["admin", "merchant", "customer"]


@dataclass(frozen=True)
class SecurityContext:
    """Identity a single transaction runs under.

    Built fresh per invocation and never persisted. ``admin`` carries no
    claims and is not organization-scoped; ``merchant`` and ``customer`` are
    restricted by RLS to ``organization_id`` (and ``customer_id``).
    """

    subject_id: str | None
    organization_id: str | None
    livemode: bool
    role: Role
    customer_id: str | None = None
    claims: JwtClaim | None = None

    def __post_init__(self) -> None:
        if self.role == "admin" and self.claims is not None:
            raise ValueError("admin context must not carry claims")
        if self.role != "admin" and self.claims is None:
            raise ValueError(f"{self.role} context requires claims")
        if self.role == "customer" and not self.customer_id:
            raise ValueError("customer context requires customer_id")

    @classmethod
    def admin(cls, livemode: bool = True) -> "SecurityContext":
        """Synthesize the elevated context used by system-internal code."""
        return cls(subject_id=None, organization_id=None, livemode=livemode, role="admin")

    @classmethod
    def from_auth_info(cls, info: DatabaseAuthenticationInfo) -> "SecurityContext":
        """Derive the context from a resolved identity."""
        claim = info.jwt_claim
        return cls(
            subject_id=info.user_id,
            organization_id=claim.organization_id or None,
            livemode=info.livemode,
            role=claim.role,
            customer_id=claim.user_metadata.app_metadata.customer_id,
            claims=claim,
        )

    def rls_claims(self) -> dict[str, Any] | None:
        """Serialized claims for the RLS layer, or None for admin."""
        if self.claims is None:
            return None
        return self.claims.model_dump(mode="json")
