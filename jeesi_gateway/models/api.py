"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
Request bodies are validated here before any business logic executes.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PlanType(str, Enum):
    """Subscription tier attached to a credit balance."""

    FREE = "free"
    STARTER = "starter"
    PRO = "pro"
    BUSINESS = "business"
    ENTERPRISE = "enterprise"
    BUSINESS_PLUS = "businessplus"


class OperationType(str, Enum):
    """Usage log operation category."""

    AGENT_CHAT = "agent_chat"
    AGENT_RUNTIME = "agent_runtime"


class FunctionType(str, Enum):
    """Custom agent function type."""

    API_CALL = "api_call"
    CONDITIONAL = "conditional"
    DATA_TRANSFORM = "data_transform"
    WEBHOOK = "webhook"


# ============================================================================
# Chat Message Models
# ============================================================================


class TextContentPart(BaseModel):
    """Plain text part of a multimodal message."""

    type: Literal["text"]
    text: str


class ImageURL(BaseModel):
    """Image reference (https URL or data URL)."""

    url: str = Field(..., min_length=1)


class ImageContentPart(BaseModel):
    """Image part of a multimodal message."""

    type: Literal["image_url"]
    image_url: ImageURL


ContentPart = Annotated[TextContentPart | ImageContentPart, Field(discriminator="type")]


class ChatMessage(BaseModel):
    """One conversation turn, forwarded verbatim to the completion gateway."""

    role: Literal["system", "user", "assistant"]
    content: str | list[ContentPart]

    @property
    def is_multimodal(self) -> bool:
        """True when the message carries non-text parts."""
        if isinstance(self.content, str):
            return False
        return any(part.type != "text" for part in self.content)

    @property
    def text(self) -> str:
        """Concatenated text content of the message."""
        if isinstance(self.content, str):
            return self.content
        return " ".join(part.text for part in self.content if isinstance(part, TextContentPart))


# ============================================================================
# Agent Chat (preview / builder) Models
# ============================================================================


class AgentChatConfig(BaseModel):
    """Optional behavioural overrides supplied by the builder preview."""

    system_prompt: str | None = None
    ai_model: str | None = Field(None, min_length=1, max_length=255)
    temperature: float | None = Field(None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(None, gt=0, le=32000)


class AgentChatRequest(BaseModel):
    """POST /v1/agent-chat request body."""

    model_config = ConfigDict(populate_by_name=True)

    messages: list[ChatMessage] = Field(..., min_length=1)
    agent_config: AgentChatConfig | None = Field(None, alias="agentConfig")


# ============================================================================
# Agent Runtime (published agents) Models
# ============================================================================


class AgentRuntimeRequest(BaseModel):
    """POST /v1/agent-runtime request body."""

    model_config = ConfigDict(populate_by_name=True)

    messages: list[ChatMessage] = Field(..., min_length=1)
    agent_id: str = Field(..., min_length=1, max_length=255, alias="agentId")


class ErrorResponse(BaseModel):
    """Error body returned by every endpoint."""

    error: str


# ============================================================================
# API Key Models
# ============================================================================


class CreateAPIKeyRequest(BaseModel):
    """POST /v1/api-keys request body."""

    model_config = ConfigDict(populate_by_name=True)

    key_name: str = Field(..., max_length=255, alias="keyName")

    @field_validator("key_name")
    @classmethod
    def validate_key_name(cls, v: str) -> str:
        """Key name must contain something other than whitespace."""
        if not v.strip():
            raise ValueError("Key name is required")
        return v.strip()


class APIKeyInfo(BaseModel):
    """Displayable API key metadata. Never carries the secret or its hash."""

    id: UUID
    key_name: str
    key_prefix: str
    created_at: datetime
    last_used_at: datetime | None = None


class CreateAPIKeyResponse(BaseModel):
    """POST /v1/api-keys response. The only place the plaintext key appears."""

    model_config = ConfigDict(populate_by_name=True)

    api_key: str = Field(..., alias="apiKey")
    key_data: APIKeyInfo = Field(..., alias="keyData")


class RevokeAPIKeyResponse(BaseModel):
    """DELETE /v1/api-keys/{key_id} response."""

    id: UUID
    is_active: bool


# ============================================================================
# Credit Balance Models
# ============================================================================


class CreditBalanceResponse(BaseModel):
    """GET /v1/credits/balance response."""

    credits_remaining: int
    credits_used_this_month: int
    plan_type: PlanType


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    database: str
    timestamp: str
