"""Credential extraction and auth error mapping for HTTP callers.

Credentials are only collected here. They are verified when an executor
resolves them, so a request with a bad key fails with 401 before any
transaction opens.
"""

from typing import Annotated

from fastapi import Cookie, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse

from backend.billing.errors import AuthenticationError, NotFoundError
from backend.billing.models.identity import Credentials

SESSION_COOKIE = "session_token"
BILLING_PORTAL_COOKIE = "billing_portal_organization_id"


async def get_credentials(
    authorization: Annotated[str | None, Header()] = None,
    session_token: Annotated[str | None, Cookie()] = None,
    billing_portal_organization_id: Annotated[str | None, Cookie()] = None,
) -> Credentials:
    """Collect credentials from the Authorization header and cookies.

    Args:
        authorization: Authorization header (e.g., "Bearer <api key>")
        session_token: Webapp session cookie
        billing_portal_organization_id: Billing portal organization cookie

    Returns:
        Credentials for an executor

    Raises:
        HTTPException: If the authorization header is malformed
    """
    api_key = None
    if authorization:
        if not authorization.startswith("Bearer ") or not authorization[7:].strip():
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authorization header format",
                headers={"WWW-Authenticate": "Bearer"},
            )
        api_key = authorization[7:].strip()

    return Credentials(
        api_key=api_key,
        session_token=session_token,
        billing_portal_organization_id=billing_portal_organization_id,
    )


async def authentication_error_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"detail": str(exc)},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def not_found_error_handler(request: Request, exc: Exception) -> JSONResponse:
    # Same body for every not-found so other tenants' rows are not revealed
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": "Not found"})


def register_exception_handlers(app: FastAPI) -> None:
    """Map authentication errors to 401 and not-found errors to 404."""
    app.add_exception_handler(AuthenticationError, authentication_error_handler)
    app.add_exception_handler(NotFoundError, not_found_error_handler)
