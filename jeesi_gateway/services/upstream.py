"""
Upstream Proxy - Streaming client for the AI completion gateway.

The gateway speaks the OpenAI chat-completions protocol. Responses are
relayed to the caller byte for byte; nothing is buffered or re-encoded.
"""

import json
import time
from collections.abc import AsyncIterator

import httpx
from structlog import get_logger

from jeesi_gateway.config import settings
from jeesi_gateway.exceptions import (
    GatewayConfigurationError,
    UpstreamError,
    UpstreamPaymentRequiredError,
    UpstreamRateLimitError,
)
from jeesi_gateway.models.domain import CompletionRequest
from jeesi_gateway.observability.metrics import metrics
from jeesi_gateway.observability.tracing import trace_operation

logger = get_logger(__name__)


class AIGatewayClient:
    """Client for the external streaming completion API."""

    def __init__(
        self,
        url: str,
        api_key: str,
        timeout: float = 120.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._http_client

    async def open_stream(self, request: CompletionRequest) -> httpx.Response:
        """
        Send a streaming completion request and return the open response.

        The response body is not read. The caller owns the response and must
        consume it with `relay()` (which closes it).

        Raises:
            GatewayConfigurationError: No gateway key configured
            UpstreamRateLimitError: Upstream returned 429
            UpstreamPaymentRequiredError: Upstream returned 402
            UpstreamError: Any other non-success status or transport failure
        """
        if not self.api_key:
            raise GatewayConfigurationError("AI_GATEWAY_API_KEY is not configured")

        http_request = self.http_client.build_request(
            "POST",
            self.url,
            json=request.to_payload(),
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
                # Relay must not re-encode a compressed body
                "Accept-Encoding": "identity",
            },
        )

        started = time.perf_counter()
        with trace_operation(
            "ai_gateway_request",
            model=request.model,
            message_count=len(request.messages),
        ) as span:
            try:
                response = await self.http_client.send(http_request, stream=True)
            except httpx.HTTPError as e:
                logger.error("ai_gateway_transport_error", error=str(e), model=request.model)
                metrics.record_upstream("transport_error")
                raise UpstreamError(None, f"AI gateway unreachable: {e}") from e

            duration = time.perf_counter() - started
            span.set_attribute("http.status_code", response.status_code)

            if response.is_success:
                metrics.record_upstream("success", duration)
                logger.debug(
                    "ai_gateway_stream_opened",
                    model=request.model,
                    latency_ms=round(duration * 1000, 2),
                )
                return response

            error_text = await self._read_error_body(response)
            logger.error(
                "ai_gateway_error",
                status_code=response.status_code,
                model=request.model,
                body=error_text[:500],
            )

        if response.status_code == 429:
            metrics.record_upstream("rate_limited", duration)
            raise UpstreamRateLimitError()
        if response.status_code == 402:
            metrics.record_upstream("payment_required", duration)
            raise UpstreamPaymentRequiredError()
        metrics.record_upstream("error", duration)
        raise UpstreamError(response.status_code)

    @staticmethod
    async def _read_error_body(response: httpx.Response) -> str:
        try:
            await response.aread()
            return response.text
        except httpx.HTTPError:
            return ""
        finally:
            await response.aclose()

    @staticmethod
    async def relay(response: httpx.Response) -> AsyncIterator[bytes]:
        """Yield the upstream body unmodified, closing the response when done."""
        try:
            async for chunk in response.aiter_raw():
                yield chunk
        except httpx.HTTPError as e:
            # Headers are already sent; the client sees a truncated stream
            logger.warning("ai_gateway_stream_interrupted", error=str(e))
        finally:
            await response.aclose()

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


async def direct_completion_stream(content: str) -> AsyncIterator[bytes]:
    """Emit a complete answer as a single completion-chunk SSE event."""
    chunk = {"choices": [{"delta": {"content": content}, "index": 0}]}
    yield f"data: {json.dumps(chunk, ensure_ascii=False)}\n\n".encode()
    yield b"data: [DONE]\n\n"


_gateway_client: AIGatewayClient | None = None


def get_gateway_client() -> AIGatewayClient:
    """Get or create the process-wide gateway client."""
    global _gateway_client
    if _gateway_client is None:
        _gateway_client = AIGatewayClient(
            url=settings.ai_gateway_url,
            api_key=settings.ai_gateway_api_key,
            timeout=settings.ai_gateway_timeout_seconds,
        )
    return _gateway_client


async def close_gateway_client() -> None:
    """Close the process-wide gateway client (for graceful shutdown)."""
    global _gateway_client
    if _gateway_client is not None:
        await _gateway_client.close()
        _gateway_client = None
