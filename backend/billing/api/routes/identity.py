"""Identity endpoint: reports the scope a request's credentials resolve to."""

from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from backend.billing.api.auth import get_credentials
from backend.billing.models.identity import Credentials
from backend.billing.models.outcome import Ok
from backend.billing.transactions.engine import TransactionEngine, TransactionParams
from backend.billing.transactions.executors import get_transaction_engine, merchant_transaction

router = APIRouter()


class IdentityResponse(BaseModel):
    """Resolved request scope."""

    user_id: str | None
    organization_id: str | None
    customer_id: str | None
    livemode: bool
    role: str


@router.get("/identity", response_model=IdentityResponse)
async def get_identity(
    credentials: Annotated[Credentials, Depends(get_credentials)],
    engine: Annotated[TransactionEngine, Depends(get_transaction_engine)],
) -> IdentityResponse:
    """Resolve the caller and echo the security context.

    Raises:
        AuthenticationError: Mapped to 401
        NotFoundError: Mapped to 404
    """

    async def describe(params: TransactionParams) -> Ok[IdentityResponse]:
        return Ok(
            IdentityResponse(
                user_id=params.user_id,
                organization_id=params.organization_id,
                customer_id=params.customer_id,
                livemode=params.livemode,
                role=params.context.role,
            )
        )

    return await merchant_transaction(describe, credentials, engine=engine)
