"""
Agent Config Loader - Resolves behavioural configuration for a chat call.

Published agents come from the database; the builder preview uses the
caller's overrides on top of the default assistant persona.
"""

import json
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from jeesi_gateway.config import settings
from jeesi_gateway.db.models import Agent, AgentFunction
from jeesi_gateway.exceptions import AgentNotFoundError
from jeesi_gateway.models.api import AgentChatConfig, ChatMessage, FunctionType
from jeesi_gateway.models.domain import (
    AgentConfig,
    AgentFunctionData,
    CompletionRequest,
    FunctionResult,
    KnowledgeEntry,
    PublishedAgent,
)

logger = get_logger(__name__)

DEFAULT_BUILDER_PROMPT = """You are Jeesi Assistant, an expert AI agent builder who helps small and medium-sized businesses design and specify AI agents.

Your tasks:
1. Ask the user what kind of agent they want to create
2. Find out the agent's purpose and use cases
3. Ask follow-up questions: which technology, which features, which integrations
4. Present a summary of the agent specification
5. Tell the user their agent can be built and guide them to sign up

Be friendly and encouraging, and ask clear questions. Avoid jargon unless it is necessary."""

DEFAULT_AGENT_PROMPT = "You are a helpful AI assistant."

API_RESULT_PREVIEW_CHARS = 500


def _parse_knowledge_base(raw: list[Any] | None) -> tuple[KnowledgeEntry, ...]:
    if not raw:
        return ()
    entries: list[KnowledgeEntry] = []
    for item in raw:
        if isinstance(item, dict) and item.get("content"):
            entries.append(KnowledgeEntry(content=str(item["content"]), title=item.get("title")))
        elif isinstance(item, str) and item:
            entries.append(KnowledgeEntry(content=item))
    return tuple(entries)


def _to_function_data(fn: AgentFunction) -> AgentFunctionData:
    return AgentFunctionData(
        function_id=fn.id,
        name=fn.name,
        function_type=FunctionType(fn.function_type),
        trigger_keywords=tuple(fn.trigger_keywords or ()),
        config=dict(fn.config or {}),
        execution_order=fn.execution_order,
    )


def resolve_chat_config(overrides: AgentChatConfig | None) -> AgentConfig:
    """
    Build the preview-mode configuration.

    Missing overrides fall back to the builder persona, the default model and
    temperature. No token ceiling is sent unless one is supplied.
    """
    if overrides is None:
        overrides = AgentChatConfig()

    return AgentConfig(
        model=overrides.ai_model or settings.default_model,
        temperature=(
            overrides.temperature
            if overrides.temperature is not None
            else settings.default_temperature
        ),
        system_prompt=overrides.system_prompt or DEFAULT_BUILDER_PROMPT,
        max_tokens=overrides.max_tokens,
    )


def build_system_prompt(config: AgentConfig, results: list[FunctionResult] | None = None) -> str:
    """
    Compose the system prompt sent upstream.

    Order: agent prompt, knowledge base, then data produced by custom
    functions (API results truncated, transformed text verbatim).
    """
    prompt = config.system_prompt

    if config.knowledge_base:
        knowledge = "\n\n".join(entry.content for entry in config.knowledge_base)
        prompt = f"{prompt}\n\nKnowledge Base:\n{knowledge}"

    context_lines: list[str] = []
    for result in results or []:
        if not result.success or not result.data:
            continue
        if result.function_type == FunctionType.API_CALL:
            preview = json.dumps(result.data, ensure_ascii=False)[:API_RESULT_PREVIEW_CHARS]
            context_lines.append(f"[API Result from {result.function_name}]: {preview}")
        elif result.function_type == FunctionType.DATA_TRANSFORM:
            context_lines.append(f"[Transformed Data from {result.function_name}]: {result.data}")

    if context_lines:
        external = "\n".join(context_lines)
        prompt = (
            f"{prompt}\n\nExternal Data (use this in your response when relevant):\n{external}"
        )

    return prompt


def build_completion_request(
    config: AgentConfig,
    messages: list[ChatMessage],
    results: list[FunctionResult] | None = None,
) -> CompletionRequest:
    """Prepend the system prompt to the caller's conversation."""
    system_message = ChatMessage(role="system", content=build_system_prompt(config, results))
    return CompletionRequest(
        model=config.model,
        messages=(system_message, *messages),
        temperature=config.temperature,
        max_tokens=config.max_tokens,
    )


class AgentConfigLoader:
    """Loads published agent configuration and custom functions."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def load_published(self, agent_id: str) -> PublishedAgent:
        """
        Load a published agent.

        Unknown, unpublished and malformed ids raise the same error so the
        existence of private agents is not revealed.

        Raises:
            AgentNotFoundError
        """
        try:
            agent_uuid = UUID(agent_id)
        except ValueError:
            logger.info("agent_not_found", agent_id=agent_id, reason="malformed_id")
            raise AgentNotFoundError(agent_id) from None

        stmt = select(Agent).where(Agent.id == agent_uuid, Agent.is_published.is_(True))
        result = await self.session.execute(stmt)
        agent = result.scalar_one_or_none()

        if agent is None:
            logger.info("agent_not_found", agent_id=agent_id)
            raise AgentNotFoundError(agent_id)

        config = AgentConfig(
            model=agent.ai_model or settings.default_model,
            temperature=(
                agent.temperature if agent.temperature is not None else settings.default_temperature
            ),
            system_prompt=agent.system_prompt or DEFAULT_AGENT_PROMPT,
            max_tokens=agent.max_tokens or settings.default_max_tokens,
            knowledge_base=_parse_knowledge_base(agent.knowledge_base),
        )
        return PublishedAgent(
            agent_id=agent.id, owner_id=agent.user_id, name=agent.name, config=config
        )

    async def load_functions(self, agent_id: UUID) -> list[AgentFunctionData]:
        """Load an agent's enabled custom functions in execution order."""
        stmt = (
            select(AgentFunction)
            .where(AgentFunction.agent_id == agent_id, AgentFunction.is_enabled.is_(True))
            .order_by(AgentFunction.execution_order)
        )
        result = await self.session.execute(stmt)
        functions = [_to_function_data(fn) for fn in result.scalars().all()]

        logger.debug("agent_functions_loaded", agent_id=str(agent_id), count=len(functions))
        return functions
