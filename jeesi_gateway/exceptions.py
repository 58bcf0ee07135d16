"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from uuid import UUID


class GatewayError(Exception):
    """Base exception for all gateway errors."""

    pass


class AuthenticationError(GatewayError):
    """Raised when authentication fails (missing/invalid API key or session token)."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


class InsufficientCreditsError(GatewayError):
    """Raised when a user's credit balance is exhausted or missing."""

    def __init__(self, user_id: UUID, credits_remaining: int | None) -> None:
        self.user_id = user_id
        self.credits_remaining = credits_remaining
        super().__init__(
            f"Insufficient credits for user {user_id}. Remaining: {credits_remaining}"
        )


class AgentNotFoundError(GatewayError):
    """Raised when an agent does not exist or is not published."""

    def __init__(self, agent_id: str) -> None:
        self.agent_id = agent_id
        super().__init__(f"Agent not found or not published: {agent_id}")


class APIKeyNotFoundError(GatewayError):
    """Raised when an API key does not exist for the requesting user."""

    def __init__(self, key_id: UUID) -> None:
        self.key_id = key_id
        super().__init__(f"API key not found: {key_id}")


class UpstreamError(GatewayError):
    """Raised when the AI completion gateway fails (non-success status or transport error)."""

    def __init__(self, status_code: int | None, message: str = "AI gateway error") -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Upstream error ({status_code}): {message}")


class UpstreamRateLimitError(UpstreamError):
    """Raised when the AI completion gateway responds with HTTP 429."""

    def __init__(self) -> None:
        super().__init__(429, "Upstream rate limit exceeded")


class UpstreamPaymentRequiredError(UpstreamError):
    """Raised when the AI completion gateway responds with HTTP 402."""

    def __init__(self) -> None:
        super().__init__(402, "Upstream payment required")


class GatewayConfigurationError(GatewayError):
    """Raised when a runtime dependency (gateway key, identity provider) is not configured."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Gateway misconfiguration: {message}")
