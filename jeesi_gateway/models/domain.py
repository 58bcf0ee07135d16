"""
Domain Models - Internal business logic models using dataclasses.

Strongly typed immutable dataclasses. Free-form JSON (usage metadata,
function config, upstream payloads) is the only place plain dicts appear.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from jeesi_gateway.models.api import ChatMessage, FunctionType, OperationType, PlanType


@dataclass(frozen=True)
class SessionUser:
    """User resolved from a session bearer token by the identity provider."""

    user_id: UUID
    email: str | None = None


@dataclass(frozen=True)
class APIKeyData:
    """Stored API key metadata (no secret, no hash)."""

    key_id: UUID
    user_id: UUID
    key_name: str
    key_prefix: str
    is_active: bool
    created_at: datetime
    last_used_at: datetime | None


@dataclass(frozen=True)
class GeneratedAPIKey:
    """Newly issued API key. `plaintext_key` is returned to the caller exactly once."""

    plaintext_key: str
    key: APIKeyData


@dataclass(frozen=True)
class BalanceData:
    """Immutable credit balance snapshot."""

    user_id: UUID
    credits_remaining: int
    credits_used_this_month: int
    plan_type: PlanType

    @property
    def has_credit(self) -> bool:
        """Gate rule: any positive balance admits the request."""
        return self.credits_remaining > 0


@dataclass(frozen=True)
class DeductionResult:
    """Outcome of an atomic decrement-if-sufficient."""

    deducted: bool
    credits_remaining: int | None


@dataclass(frozen=True)
class UsageEntry:
    """One completed proxied call, pending persistence."""

    user_id: UUID
    operation_type: OperationType
    credits: int
    agent_id: UUID | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate usage constraints."""
        if self.credits <= 0:
            raise ValueError(f"Usage credits must be positive: {self.credits}")


@dataclass(frozen=True)
class KnowledgeEntry:
    """One knowledge base snippet attached to an agent."""

    content: str
    title: str | None = None


@dataclass(frozen=True)
class AgentConfig:
    """Behavioural parameters used to build the upstream request."""

    model: str
    temperature: float
    system_prompt: str
    max_tokens: int | None = None
    knowledge_base: tuple[KnowledgeEntry, ...] = ()

    def __post_init__(self) -> None:
        """Validate agent parameters."""
        if not self.model:
            raise ValueError("model cannot be empty")
        if not 0.0 <= self.temperature <= 2.0:
            raise ValueError(f"temperature out of range: {self.temperature}")
        if self.max_tokens is not None and self.max_tokens <= 0:
            raise ValueError(f"max_tokens must be positive: {self.max_tokens}")


@dataclass(frozen=True)
class PublishedAgent:
    """A published agent and the configuration it runs with."""

    agent_id: UUID
    owner_id: UUID
    name: str
    config: AgentConfig


@dataclass(frozen=True)
class AgentFunctionData:
    """Custom function attached to a published agent."""

    function_id: UUID
    name: str
    function_type: FunctionType
    trigger_keywords: tuple[str, ...]
    config: dict[str, Any]
    execution_order: int = 0

    def is_triggered_by(self, user_content: str) -> bool:
        """Case-insensitive substring match of any trigger keyword."""
        lowered = user_content.lower()
        return any(keyword.lower() in lowered for keyword in self.trigger_keywords if keyword)


@dataclass(frozen=True)
class FunctionResult:
    """Outcome of executing one custom function."""

    function_name: str
    function_type: FunctionType
    success: bool
    data: Any = None
    error: str | None = None

    @property
    def direct_response(self) -> str | None:
        """Response text of a successful conditional function, if any."""
        if (
            self.function_type == FunctionType.CONDITIONAL
            and self.success
            and isinstance(self.data, dict)
            and self.data.get("response")
        ):
            return str(self.data["response"])
        return None


@dataclass(frozen=True)
class CompletionRequest:
    """Chat completion request sent to the upstream gateway."""

    model: str
    messages: tuple[ChatMessage, ...]
    temperature: float
    max_tokens: int | None = None

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the OpenAI-compatible wire body (always streaming)."""
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [m.model_dump(mode="json", exclude_none=True) for m in self.messages],
            "temperature": self.temperature,
            "stream": True,
        }
        if self.max_tokens is not None:
            payload["max_tokens"] = self.max_tokens
        return payload
