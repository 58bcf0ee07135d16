"""
Tests for the published agent runtime endpoint.

Database reads happen in a fixed order: API key, balance, agent, functions.
"""

import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from tests.factories import (
    SSE_BODY,
    RecordingSideChannel,
    UpstreamRecorder,
    create_mock_agent,
    create_mock_api_key,
    create_mock_balance,
    create_mock_function,
    make_result,
)

KEY_HEADERS = {"x-api-key": "jeesi_" + "a" * 32}


@pytest.fixture
def agent_row() -> MagicMock:
    return create_mock_agent()


def _body(agent_id: Any, text: str = "Hello") -> dict[str, Any]:
    return {"agentId": str(agent_id), "messages": [{"role": "user", "content": text}]}


def _wire_db(
    db_session: AsyncMock,
    agent_row: MagicMock | None,
    credits_remaining: int | None = 5,
    functions: list[MagicMock] | None = None,
) -> None:
    balance = (
        create_mock_balance(credits_remaining=credits_remaining)
        if credits_remaining is not None
        else None
    )
    db_session.execute = AsyncMock(
        side_effect=[
            make_result(scalar=create_mock_api_key()),
            make_result(scalar=balance),
            make_result(scalar=agent_row),
            make_result(scalars=functions or []),
        ]
    )


class TestRuntimeSuccess:
    """Tests for successful runtime calls."""

    def test_streams_agent_response(
        self,
        client: TestClient,
        db_session: AsyncMock,
        upstream: UpstreamRecorder,
        recording_side_channel: RecordingSideChannel,
        agent_row: MagicMock,
    ):
        """The agent's configuration drives the upstream call and the body is relayed."""
        _wire_db(db_session, agent_row)

        response = client.post("/v1/agent-runtime", json=_body(agent_row.id), headers=KEY_HEADERS)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.content == SSE_BODY

        sent = json.loads(upstream.requests[0].content)
        assert sent["model"] == "openai/gpt-5-mini"
        assert sent["temperature"] == 0.3
        assert sent["max_tokens"] == 800
        assert sent["messages"][0]["content"] == "You answer questions about Acme Oy."
        assert recording_side_channel.job_names() == ["api_key_touch", "usage_record"]

    def test_api_function_data_in_prompt(
        self,
        client: TestClient,
        db_session: AsyncMock,
        upstream: UpstreamRecorder,
        agent_row: MagicMock,
    ):
        """A triggered api_call feeds its result into the system prompt."""
        weather = create_mock_function(config={"url": "https://api.example.fi/weather"})
        _wire_db(db_session, agent_row, functions=[weather])

        client.post(
            "/v1/agent-runtime",
            json=_body(agent_row.id, "What's the weather?"),
            headers=KEY_HEADERS,
        )

        system_prompt = json.loads(upstream.requests[0].content)["messages"][0]["content"]
        assert "[API Result from weather]:" in system_prompt
        assert "Helsinki" in system_prompt

    def test_conditional_answers_directly(
        self,
        client: TestClient,
        db_session: AsyncMock,
        upstream: UpstreamRecorder,
        recording_side_channel: RecordingSideChannel,
        agent_row: MagicMock,
    ):
        """A matching conditional short-circuits the upstream call but is still charged."""
        hours = create_mock_function(
            name="hours",
            function_type="conditional",
            trigger_keywords=["open"],
            config={"condition_keyword": "open", "condition_response": "We are open 9-17."},
        )
        _wire_db(db_session, agent_row, functions=[hours])

        response = client.post(
            "/v1/agent-runtime",
            json=_body(agent_row.id, "When are you open?"),
            headers=KEY_HEADERS,
        )

        assert response.status_code == 200
        assert upstream.call_count == 0
        assert b"We are open 9-17." in response.content
        assert response.content.endswith(b"data: [DONE]\n\n")
        assert "usage_record" in recording_side_channel.job_names()

    def test_webhook_scheduled(
        self,
        client: TestClient,
        db_session: AsyncMock,
        recording_side_channel: RecordingSideChannel,
        agent_row: MagicMock,
    ):
        """Webhooks are delivered through the side channel, after usage is recorded."""
        hook = create_mock_function(
            name="notify",
            function_type="webhook",
            trigger_keywords=[],
            config={"webhook_url": "https://hooks.example.fi/new-message"},
        )
        _wire_db(db_session, agent_row, functions=[hook])

        client.post("/v1/agent-runtime", json=_body(agent_row.id), headers=KEY_HEADERS)

        assert recording_side_channel.job_names() == ["api_key_touch", "usage_record", "webhook"]


class TestRuntimeAuthentication:
    """Tests for API key checks."""

    def test_missing_key(self, client: TestClient, db_session: AsyncMock, agent_row: MagicMock):
        """No key header: 401 before any database access."""
        response = client.post("/v1/agent-runtime", json=_body(agent_row.id))

        assert response.status_code == 401
        assert response.json() == {"error": "Missing API key"}
        db_session.execute.assert_not_awaited()

    def test_unknown_or_revoked_key(
        self,
        client: TestClient,
        upstream: UpstreamRecorder,
        recording_side_channel: RecordingSideChannel,
        agent_row: MagicMock,
    ):
        """A key that matches no active row is rejected with no side effects."""
        response = client.post("/v1/agent-runtime", json=_body(agent_row.id), headers=KEY_HEADERS)

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid API key"}
        assert upstream.call_count == 0
        assert recording_side_channel.jobs == []

    def test_invalid_body_checked_first(self, client: TestClient, db_session: AsyncMock):
        """Malformed bodies are rejected with 400 even without a key."""
        response = client.post("/v1/agent-runtime", json={"messages": []})

        assert response.status_code == 400
        db_session.execute.assert_not_awaited()

    def test_missing_agent_id(self, client: TestClient):
        """agentId is required."""
        response = client.post(
            "/v1/agent-runtime",
            json={"messages": [{"role": "user", "content": "Hi"}]},
            headers=KEY_HEADERS,
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Missing required field: agentId"}


class TestRuntimeCreditGate:
    """Tests for the credit gate."""

    @pytest.mark.parametrize("credits_remaining", [0, None])
    def test_no_credit(
        self,
        client: TestClient,
        db_session: AsyncMock,
        upstream: UpstreamRecorder,
        recording_side_channel: RecordingSideChannel,
        agent_row: MagicMock,
        credits_remaining: int | None,
    ):
        """Exhausted or missing balance: 402, no upstream call, no usage job."""
        _wire_db(db_session, agent_row, credits_remaining=credits_remaining)

        response = client.post("/v1/agent-runtime", json=_body(agent_row.id), headers=KEY_HEADERS)

        assert response.status_code == 402
        assert response.json() == {"error": "Insufficient credits"}
        assert upstream.call_count == 0
        assert "usage_record" not in recording_side_channel.job_names()


class TestRuntimeAgentLookup:
    """Tests for agent resolution."""

    def test_unknown_and_unpublished_identical(
        self, client: TestClient, db_session: AsyncMock, upstream: UpstreamRecorder
    ):
        """Unknown, unpublished and malformed ids all produce the same 404."""
        responses = []
        for agent_id in ("3f7c1a52-0000-4000-8000-000000000000", "not-a-uuid"):
            _wire_db(db_session, None)
            responses.append(
                client.post("/v1/agent-runtime", json=_body(agent_id), headers=KEY_HEADERS)
            )

        for response in responses:
            assert response.status_code == 404
            assert response.json() == {"error": "Agent not found or not published"}
        assert upstream.call_count == 0


class TestRuntimeUpstreamFailures:
    """Tests for upstream failure mapping."""

    def test_rate_limited_not_charged(
        self,
        client: TestClient,
        db_session: AsyncMock,
        upstream: UpstreamRecorder,
        recording_side_channel: RecordingSideChannel,
        agent_row: MagicMock,
    ):
        """Upstream 429: rate limit message and no usage recorded."""
        upstream.status_code = 429
        _wire_db(db_session, agent_row)

        response = client.post("/v1/agent-runtime", json=_body(agent_row.id), headers=KEY_HEADERS)

        assert response.status_code == 429
        assert response.json() == {"error": "Rate limit exceeded. Please try again later."}
        assert recording_side_channel.job_names() == ["api_key_touch"]

    def test_upstream_payment_required_not_charged(
        self,
        client: TestClient,
        db_session: AsyncMock,
        upstream: UpstreamRecorder,
        recording_side_channel: RecordingSideChannel,
        agent_row: MagicMock,
    ):
        """Upstream 402 carries its own message, distinct from local exhaustion."""
        upstream.status_code = 402
        _wire_db(db_session, agent_row)

        response = client.post("/v1/agent-runtime", json=_body(agent_row.id), headers=KEY_HEADERS)

        assert response.status_code == 402
        assert response.json() == {"error": "Payment required. Please add credits to your account."}
        assert "usage_record" not in recording_side_channel.job_names()

    def test_unexpected_error(
        self,
        client: TestClient,
        db_session: AsyncMock,
        agent_row: MagicMock,
    ):
        """An unexpected failure is a generic 500."""
        db_session.execute = AsyncMock(
            side_effect=[
                make_result(scalar=create_mock_api_key()),
                RuntimeError("pool exhausted"),
            ]
        )

        response = client.post("/v1/agent-runtime", json=_body(agent_row.id), headers=KEY_HEADERS)

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}
