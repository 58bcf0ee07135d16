"""
FastAPI Dependencies - Session authentication and shared service handles.

NO DICTIONARIES - All dependencies return typed objects.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from structlog import get_logger

from jeesi_gateway.exceptions import GatewayConfigurationError
from jeesi_gateway.models.domain import SessionUser
from jeesi_gateway.services.identity import SupabaseAuthClient, get_auth_client
from jeesi_gateway.services.side_channel import SideChannel, get_side_channel
from jeesi_gateway.services.usage import UsageRecorder

logger = get_logger(__name__)

# Bearer token scheme for session auth
bearer_scheme = HTTPBearer(auto_error=False)


async def get_optional_session_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_client: SupabaseAuthClient = Depends(get_auth_client),
) -> SessionUser | None:
    """
    Resolve the bearer token to a user, tolerating anonymous callers.

    No token, a token the identity provider rejects (such as the public anon
    key the web client sends before sign-in), or an unconfigured identity
    provider all resolve to None.
    """
    if credentials is None or not credentials.credentials:
        return None

    try:
        return await auth_client.get_user(credentials.credentials)
    except GatewayConfigurationError as exc:
        logger.warning("identity_provider_not_configured", error=exc.message)
        return None


async def get_session_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_client: SupabaseAuthClient = Depends(get_auth_client),
) -> SessionUser:
    """
    FastAPI dependency requiring a signed-in user.

    Usage:
        @router.get("/v1/credits/balance")
        async def balance(user: SessionUser = Depends(get_session_user)):
            ...
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization header",
        )

    try:
        user = await auth_client.get_user(credentials.credentials)
    except GatewayConfigurationError as exc:
        logger.error("identity_provider_not_configured", error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication is not configured",
        ) from exc

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session",
        )
    return user


def get_usage_recorder(side_channel: SideChannel = Depends(get_side_channel)) -> UsageRecorder:
    """Usage recorder bound to the process-wide side channel."""
    return UsageRecorder(side_channel)
