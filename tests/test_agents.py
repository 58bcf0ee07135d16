"""
Tests for agent configuration loading and prompt assembly.
"""

from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from jeesi_gateway.exceptions import AgentNotFoundError
from jeesi_gateway.models.api import AgentChatConfig, ChatMessage, FunctionType
from jeesi_gateway.models.domain import AgentConfig, FunctionResult, KnowledgeEntry
from jeesi_gateway.services.agents import (
    API_RESULT_PREVIEW_CHARS,
    DEFAULT_AGENT_PROMPT,
    DEFAULT_BUILDER_PROMPT,
    AgentConfigLoader,
    build_completion_request,
    build_system_prompt,
    resolve_chat_config,
)
from tests.factories import create_mock_agent, create_mock_function, make_result


class TestResolveChatConfig:
    """Tests for preview-mode configuration."""

    def test_defaults(self):
        """No overrides: builder persona, default model and temperature, no ceiling."""
        config = resolve_chat_config(None)

        assert config.system_prompt == DEFAULT_BUILDER_PROMPT
        assert config.model == "google/gemini-2.5-flash"
        assert config.temperature == 0.7
        assert config.max_tokens is None

    def test_overrides_applied(self):
        """Supplied overrides replace each default."""
        config = resolve_chat_config(
            AgentChatConfig(
                system_prompt="You are a sommelier.",
                ai_model="openai/gpt-5-mini",
                temperature=1.2,
                max_tokens=400,
            )
        )

        assert config.system_prompt == "You are a sommelier."
        assert config.model == "openai/gpt-5-mini"
        assert config.temperature == 1.2
        assert config.max_tokens == 400

    def test_zero_temperature_kept(self):
        """A temperature of 0 is a real value, not a missing one."""
        assert resolve_chat_config(AgentChatConfig(temperature=0.0)).temperature == 0.0

    def test_empty_prompt_uses_persona(self):
        """An empty prompt falls back to the builder persona."""
        config = resolve_chat_config(AgentChatConfig(system_prompt=""))

        assert config.system_prompt == DEFAULT_BUILDER_PROMPT


class TestBuildSystemPrompt:
    """Tests for system prompt composition."""

    def _config(self, knowledge: tuple[KnowledgeEntry, ...] = ()) -> AgentConfig:
        return AgentConfig(
            model="m", temperature=0.5, system_prompt="Base prompt.", knowledge_base=knowledge
        )

    def test_plain_prompt(self):
        """Without knowledge or results the prompt is unchanged."""
        assert build_system_prompt(self._config()) == "Base prompt."

    def test_knowledge_base_appended(self):
        """Knowledge entries follow the prompt under their heading."""
        prompt = build_system_prompt(
            self._config((KnowledgeEntry(content="Open 9-17."), KnowledgeEntry(content="Helsinki.")))
        )

        assert prompt == "Base prompt.\n\nKnowledge Base:\nOpen 9-17.\n\nHelsinki."

    def test_function_results_appended(self):
        """API results are truncated JSON; transformed data is verbatim; failures are skipped."""
        big = {"rows": ["x" * 50] * 30}
        results = [
            FunctionResult("weather", FunctionType.API_CALL, True, data=big),
            FunctionResult("shout", FunctionType.DATA_TRANSFORM, True, data="Please summarize: hi"),
            FunctionResult("broken", FunctionType.API_CALL, False, error="API returned 500"),
        ]

        prompt = build_system_prompt(self._config(), results)

        assert "External Data (use this in your response when relevant):" in prompt
        api_line = next(line for line in prompt.splitlines() if line.startswith("[API Result"))
        prefix = "[API Result from weather]: "
        assert len(api_line) == len(prefix) + API_RESULT_PREVIEW_CHARS
        assert "[Transformed Data from shout]: Please summarize: hi" in prompt
        assert "broken" not in prompt


class TestBuildCompletionRequest:
    """Tests for upstream request assembly."""

    def test_system_message_prepended(self):
        """The composed system prompt precedes the caller's messages unchanged."""
        config = AgentConfig(model="m", temperature=0.2, system_prompt="Sys.", max_tokens=50)
        messages = [
            ChatMessage(role="user", content="Hei"),
            ChatMessage(role="assistant", content="Moi!"),
            ChatMessage(role="user", content="Mitä kuuluu?"),
        ]

        request = build_completion_request(config, messages)

        assert request.messages[0].role == "system"
        assert request.messages[0].content == "Sys."
        assert list(request.messages[1:]) == messages
        assert request.model == "m"
        assert request.temperature == 0.2
        assert request.max_tokens == 50


class TestAgentConfigLoader:
    """Tests for published agent loading."""

    @pytest.mark.asyncio
    async def test_published_agent(self, db_session: AsyncMock):
        """Stored fields map onto the published agent and its config."""
        row = create_mock_agent(
            knowledge_base=[{"title": "Hours", "content": "Open 9-17."}, "Located in Espoo.", {}]
        )
        db_session.execute = AsyncMock(return_value=make_result(scalar=row))

        published = await AgentConfigLoader(db_session).load_published(str(row.id))
        config = published.config

        assert published.agent_id == row.id
        assert published.owner_id == row.user_id
        assert published.name == row.name
        assert config.model == "openai/gpt-5-mini"
        assert config.temperature == 0.3
        assert config.max_tokens == 800
        assert config.system_prompt == "You answer questions about Acme Oy."
        assert [k.content for k in config.knowledge_base] == ["Open 9-17.", "Located in Espoo."]

    @pytest.mark.asyncio
    async def test_missing_fields_fall_back(self, db_session: AsyncMock):
        """Unset model, prompt, temperature and ceiling use the runtime defaults."""
        row = create_mock_agent(system_prompt=None, ai_model=None, temperature=None, max_tokens=None)
        db_session.execute = AsyncMock(return_value=make_result(scalar=row))

        config = (await AgentConfigLoader(db_session).load_published(str(row.id))).config

        assert config.model == "google/gemini-2.5-flash"
        assert config.temperature == 0.7
        assert config.system_prompt == DEFAULT_AGENT_PROMPT
        assert config.max_tokens == 1000

    @pytest.mark.asyncio
    async def test_zero_temperature_kept(self, db_session: AsyncMock):
        """A stored temperature of 0 is honoured."""
        row = create_mock_agent(temperature=0.0)
        db_session.execute = AsyncMock(return_value=make_result(scalar=row))

        config = (await AgentConfigLoader(db_session).load_published(str(row.id))).config

        assert config.temperature == 0.0

    @pytest.mark.asyncio
    async def test_unpublished_or_unknown(self, db_session: AsyncMock):
        """No published row raises AgentNotFoundError."""
        with pytest.raises(AgentNotFoundError):
            await AgentConfigLoader(db_session).load_published(str(uuid4()))

        stmt = db_session.execute.call_args[0][0]
        assert "agents.is_published" in str(stmt.whereclause)

    @pytest.mark.asyncio
    async def test_malformed_id(self, db_session: AsyncMock):
        """A non-UUID id is indistinguishable from an unknown agent and skips the query."""
        with pytest.raises(AgentNotFoundError) as exc_info:
            await AgentConfigLoader(db_session).load_published("not-a-uuid")

        assert exc_info.value.agent_id == "not-a-uuid"
        db_session.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_load_functions(self, db_session: AsyncMock):
        """Enabled functions are mapped in execution order."""
        rows = [
            create_mock_function(name="lookup", execution_order=0),
            create_mock_function(
                name="notify",
                function_type="webhook",
                trigger_keywords=[],
                config={"webhook_url": "https://hooks.example.fi/x"},
                execution_order=1,
            ),
        ]
        db_session.execute = AsyncMock(return_value=make_result(scalars=rows))

        functions = await AgentConfigLoader(db_session).load_functions(uuid4())

        assert [f.name for f in functions] == ["lookup", "notify"]
        assert functions[0].function_type == FunctionType.API_CALL
        assert functions[0].trigger_keywords == ("weather",)
        assert functions[1].function_type == FunctionType.WEBHOOK
        stmt = db_session.execute.call_args[0][0]
        assert "ORDER BY agent_functions.execution_order" in str(stmt)
