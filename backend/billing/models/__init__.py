"""Models package - re-exports for convenience."""

from backend.billing.models.effects import (
    CacheDependency,
    CacheDependencyKey,
    EventInsert,
    LedgerCommand,
    LedgerEntryInsert,
    LedgerTransactionType,
    TaskTrigger,
)
from backend.billing.models.identity import (
    ApiKeyType,
    AppMetadata,
    Credentials,
    DatabaseAuthenticationInfo,
    JwtClaim,
    KeyVerifyResult,
    SessionUser,
    UserMetadata,
    build_jwt_claim,
)
from backend.billing.models.outcome import Err, Ok, TransactionOutcome, unwrap

__all__ = [
    # Effects
    "CacheDependency",
    "CacheDependencyKey",
    "EventInsert",
    "LedgerCommand",
    "LedgerEntryInsert",
    "LedgerTransactionType",
    "TaskTrigger",
    # Identity
    "ApiKeyType",
    "AppMetadata",
    "Credentials",
    "DatabaseAuthenticationInfo",
    "JwtClaim",
    "KeyVerifyResult",
    "SessionUser",
    "UserMetadata",
    "build_jwt_claim",
    # Outcome
    "Err",
    "Ok",
    "TransactionOutcome",
    "unwrap",
]
