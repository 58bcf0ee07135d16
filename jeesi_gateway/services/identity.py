"""
Identity Provider Client - Resolves session bearer tokens to users.

Session tokens are issued by Supabase Auth; the gateway never verifies them
locally, it asks the provider's user endpoint.
"""

from uuid import UUID

import httpx
from structlog import get_logger

from jeesi_gateway.config import settings
from jeesi_gateway.exceptions import GatewayConfigurationError
from jeesi_gateway.models.domain import SessionUser

logger = get_logger(__name__)


class SupabaseAuthClient:
    """Client for the Supabase Auth user endpoint."""

    def __init__(
        self,
        user_endpoint: str,
        anon_key: str,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.user_endpoint = user_endpoint
        self.anon_key = anon_key
        self.timeout = timeout
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._http_client

    async def get_user(self, token: str) -> SessionUser | None:
        """
        Exchange a session token for the user it belongs to.

        Returns:
            SessionUser, or None when the provider does not recognise the token
            (expired, forged, or a non-user token such as the anon key)

        Raises:
            GatewayConfigurationError: Identity provider not configured
        """
        if not settings.supabase_url or not self.anon_key:
            raise GatewayConfigurationError("SUPABASE_URL and SUPABASE_ANON_KEY are required")

        try:
            response = await self.http_client.get(
                self.user_endpoint,
                headers={
                    "Authorization": f"Bearer {token}",
                    "apikey": self.anon_key,
                },
            )
        except httpx.HTTPError as e:
            logger.warning("identity_provider_unreachable", error=str(e))
            return None

        if response.status_code != 200:
            logger.info("session_token_rejected", status_code=response.status_code)
            return None

        try:
            user_info = response.json()
            return SessionUser(user_id=UUID(user_info["id"]), email=user_info.get("email"))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("identity_response_malformed", error=str(e))
            return None

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


_auth_client: SupabaseAuthClient | None = None


def get_auth_client() -> SupabaseAuthClient:
    """Get or create the process-wide identity provider client."""
    global _auth_client
    if _auth_client is None:
        _auth_client = SupabaseAuthClient(
            user_endpoint=settings.supabase_user_endpoint,
            anon_key=settings.supabase_anon_key,
            timeout=settings.identity_timeout_seconds,
        )
    return _auth_client


async def close_auth_client() -> None:
    """Close the process-wide identity provider client."""
    global _auth_client
    if _auth_client is not None:
        await _auth_client.close()
        _auth_client = None
