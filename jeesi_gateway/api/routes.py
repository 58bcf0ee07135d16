"""
API Routes - Chat proxy endpoints.

Both endpoints follow the same pipeline: authenticate, gate on credit,
resolve agent configuration, open the upstream stream, schedule usage
recording on the side channel, relay the stream.

Every failure is mapped to an HTTPException here and rendered as
{"error": message} by the application's exception handler.
"""

from collections.abc import AsyncIterator
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Header, HTTPException, Response, status
from fastapi.responses import StreamingResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from jeesi_gateway.api.dependencies import get_optional_session_user, get_usage_recorder
from jeesi_gateway.config import settings
from jeesi_gateway.db.session import get_read_db, get_write_db
from jeesi_gateway.exceptions import (
    AgentNotFoundError,
    AuthenticationError,
    GatewayConfigurationError,
    InsufficientCreditsError,
    UpstreamError,
    UpstreamPaymentRequiredError,
    UpstreamRateLimitError,
)
from jeesi_gateway.models.api import (
    AgentChatRequest,
    AgentRuntimeRequest,
    ChatMessage,
    ErrorResponse,
    HealthResponse,
    OperationType,
)
from jeesi_gateway.models.domain import SessionUser, UsageEntry
from jeesi_gateway.observability.metrics import metrics
from jeesi_gateway.services.agent_functions import FunctionRunner, get_function_runner
from jeesi_gateway.services.agents import (
    AgentConfigLoader,
    build_completion_request,
    resolve_chat_config,
)
from jeesi_gateway.services.api_key import APIKeyService, schedule_key_touch
from jeesi_gateway.services.credits import CreditLedgerService
from jeesi_gateway.services.side_channel import SideChannel, get_side_channel
from jeesi_gateway.services.upstream import (
    AIGatewayClient,
    direct_completion_stream,
    get_gateway_client,
)
from jeesi_gateway.services.usage import UsageRecorder

logger = get_logger(__name__)

router = APIRouter()

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type, x-api-key",
}

ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    code: {"model": ErrorResponse} for code in (400, 401, 402, 404, 429, 500)
}

RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again later."
UPSTREAM_PAYMENT_MESSAGE = "Payment required. Please add credits to your account."
UPSTREAM_ERROR_MESSAGE = "AI gateway error"
INTERNAL_ERROR_MESSAGE = "Internal server error"


def _event_stream(body: AsyncIterator[bytes]) -> StreamingResponse:
    return StreamingResponse(
        body,
        media_type="text/event-stream",
        headers={**CORS_HEADERS, "Cache-Control": "no-cache"},
    )


def _upstream_http_error(exc: UpstreamError) -> HTTPException:
    """Map upstream failures; 402 here is the upstream's, not the local ledger's."""
    if isinstance(exc, UpstreamRateLimitError):
        return HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=RATE_LIMIT_MESSAGE
        )
    if isinstance(exc, UpstreamPaymentRequiredError):
        return HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=UPSTREAM_PAYMENT_MESSAGE
        )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=UPSTREAM_ERROR_MESSAGE
    )


def _usage_metadata(model: str, request_messages: list[ChatMessage]) -> dict[str, object]:
    return {
        "model": model,
        "message_count": len(request_messages),
        "multimodal": any(m.is_multimodal for m in request_messages),
    }


# =============================================================================
# CORS preflight
# =============================================================================


@router.options("/v1/agent-chat", include_in_schema=False)
@router.options("/v1/agent-runtime", include_in_schema=False)
async def chat_preflight() -> Response:
    """Permissive CORS preflight for browser and widget callers."""
    return Response(status_code=status.HTTP_200_OK, headers=CORS_HEADERS)


# =============================================================================
# Agent chat (builder preview)
# =============================================================================


@router.post(
    "/v1/agent-chat",
    response_class=StreamingResponse,
    responses=ERROR_RESPONSES,
)
async def agent_chat(
    request: AgentChatRequest,
    user: SessionUser | None = Depends(get_optional_session_user),
    db: AsyncSession = Depends(get_write_db),
    gateway: AIGatewayClient = Depends(get_gateway_client),
    recorder: UsageRecorder = Depends(get_usage_recorder),
) -> StreamingResponse:
    """
    Stream a chat completion for the agent builder preview.

    Signed-in callers are metered (a first call grants the default balance);
    anonymous callers are not. Omitted overrides use the builder persona.
    """
    config = resolve_chat_config(request.agent_config)

    try:
        if user is not None:
            await CreditLedgerService(db).check_credit(
                user.user_id, OperationType.AGENT_CHAT, create_if_missing=True
            )

        completion = build_completion_request(config, request.messages)
        upstream = await gateway.open_stream(completion)

    except InsufficientCreditsError as exc:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED, detail="Insufficient credits"
        ) from exc
    except UpstreamError as exc:
        raise _upstream_http_error(exc) from exc
    except GatewayConfigurationError as exc:
        logger.error("agent_chat_misconfigured", error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=INTERNAL_ERROR_MESSAGE
        ) from exc
    except Exception as exc:
        logger.exception("agent_chat_failed", error=str(exc))
        metrics.record_error(type(exc).__name__, OperationType.AGENT_CHAT.value)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=INTERNAL_ERROR_MESSAGE
        ) from exc

    if user is not None:
        recorder.record(
            UsageEntry(
                user_id=user.user_id,
                operation_type=OperationType.AGENT_CHAT,
                credits=settings.credits_per_request,
                metadata=_usage_metadata(config.model, request.messages),
            )
        )

    logger.info(
        "agent_chat_streaming",
        user_id=str(user.user_id) if user else None,
        model=config.model,
        message_count=len(request.messages),
    )
    return _event_stream(gateway.relay(upstream))


# =============================================================================
# Agent runtime (published agents, API key auth)
# =============================================================================


@router.post(
    "/v1/agent-runtime",
    response_class=StreamingResponse,
    responses=ERROR_RESPONSES,
)
async def agent_runtime(
    request: AgentRuntimeRequest,
    x_api_key: str | None = Header(None, alias="x-api-key"),
    db: AsyncSession = Depends(get_write_db),
    gateway: AIGatewayClient = Depends(get_gateway_client),
    runner: FunctionRunner = Depends(get_function_runner),
    side_channel: SideChannel = Depends(get_side_channel),
    recorder: UsageRecorder = Depends(get_usage_recorder),
) -> StreamingResponse:
    """
    Stream a chat completion from a published agent.

    The credit gate runs before the agent is loaded and before any paid
    upstream call. A matching conditional function answers directly without
    calling the upstream API (still charged).
    """
    if not x_api_key:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing API key")

    try:
        key = await APIKeyService(db).validate_api_key(x_api_key)
        schedule_key_touch(side_channel, key.key_id)

        await CreditLedgerService(db).check_credit(key.user_id, OperationType.AGENT_RUNTIME)

        loader = AgentConfigLoader(db)
        agent = await loader.load_published(request.agent_id)
        functions = await loader.load_functions(agent.agent_id)
        results = await runner.run_triggered(functions, request.messages)

        usage = UsageEntry(
            user_id=key.user_id,
            operation_type=OperationType.AGENT_RUNTIME,
            credits=settings.credits_per_request,
            agent_id=agent.agent_id,
            metadata=_usage_metadata(agent.config.model, request.messages),
        )

        direct = next((r.direct_response for r in results if r.direct_response), None)
        if direct is not None:
            recorder.record(usage)
            runner.schedule_webhooks(
                side_channel, functions, agent.agent_id, request.messages, direct
            )
            logger.info("agent_runtime_direct_response", agent_id=str(agent.agent_id))
            return _event_stream(direct_completion_stream(direct))

        completion = build_completion_request(agent.config, request.messages, results)
        upstream = await gateway.open_stream(completion)

    except AuthenticationError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=exc.message) from exc
    except InsufficientCreditsError as exc:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED, detail="Insufficient credits"
        ) from exc
    except AgentNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Agent not found or not published"
        ) from exc
    except UpstreamError as exc:
        raise _upstream_http_error(exc) from exc
    except GatewayConfigurationError as exc:
        logger.error("agent_runtime_misconfigured", error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=INTERNAL_ERROR_MESSAGE
        ) from exc
    except Exception as exc:
        logger.exception("agent_runtime_failed", error=str(exc))
        metrics.record_error(type(exc).__name__, OperationType.AGENT_RUNTIME.value)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=INTERNAL_ERROR_MESSAGE
        ) from exc

    recorder.record(usage)
    runner.schedule_webhooks(side_channel, functions, agent.agent_id, request.messages, None)

    logger.info(
        "agent_runtime_streaming",
        agent_id=str(agent.agent_id),
        user_id=str(key.user_id),
        model=agent.config.model,
        functions_run=len(results),
    )
    return _event_stream(gateway.relay(upstream))


# =============================================================================
# Health
# =============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("health_check_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database unavailable",
        ) from exc

    return HealthResponse(
        status="healthy",
        database="connected",
        timestamp=datetime.now(UTC).isoformat(),
    )
