"""
Tests for the exception hierarchy.
"""

from uuid import uuid4

import pytest

from jeesi_gateway.exceptions import (
    AgentNotFoundError,
    APIKeyNotFoundError,
    AuthenticationError,
    GatewayConfigurationError,
    GatewayError,
    InsufficientCreditsError,
    UpstreamError,
    UpstreamPaymentRequiredError,
    UpstreamRateLimitError,
)


class TestExceptionHierarchy:
    """All gateway errors share a base class."""

    @pytest.mark.parametrize(
        "exc",
        [
            AuthenticationError("Invalid API key"),
            InsufficientCreditsError(uuid4(), 0),
            AgentNotFoundError("abc"),
            APIKeyNotFoundError(uuid4()),
            UpstreamError(500),
            UpstreamRateLimitError(),
            UpstreamPaymentRequiredError(),
            GatewayConfigurationError("missing key"),
        ],
    )
    def test_is_gateway_error(self, exc):
        """Every exception derives from GatewayError."""
        assert isinstance(exc, GatewayError)

    def test_upstream_subclasses(self):
        """Rate limit and payment errors are upstream errors with fixed statuses."""
        assert isinstance(UpstreamRateLimitError(), UpstreamError)
        assert UpstreamRateLimitError().status_code == 429
        assert UpstreamPaymentRequiredError().status_code == 402


class TestExceptionAttributes:
    """Typed attributes carried by exceptions."""

    def test_authentication_message(self):
        """The client-facing message is kept separately."""
        exc = AuthenticationError("Invalid API key")

        assert exc.message == "Invalid API key"
        assert "Invalid API key" in str(exc)

    def test_insufficient_credits(self):
        """Missing balance is represented as None."""
        user_id = uuid4()
        exc = InsufficientCreditsError(user_id, None)

        assert exc.user_id == user_id
        assert exc.credits_remaining is None
        assert str(user_id) in str(exc)

    def test_upstream_default_message(self):
        """Upstream errors default to the generic gateway message."""
        exc = UpstreamError(None)

        assert exc.status_code is None
        assert exc.message == "AI gateway error"
