"""
Custom Agent Functions - Keyword-triggered actions run before the AI call.

Function types:
- api_call: call an external HTTP API and feed its JSON into the prompt
- conditional: canned response that short-circuits the AI call
- data_transform: reshape the user's message for the prompt
- webhook: notify an external URL after the response (side channel)
"""

import json
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import httpx
from structlog import get_logger

from jeesi_gateway.config import settings
from jeesi_gateway.models.api import ChatMessage, FunctionType
from jeesi_gateway.models.domain import AgentFunctionData, FunctionResult
from jeesi_gateway.services.side_channel import SideChannel

logger = get_logger(__name__)


def last_user_text(messages: list[ChatMessage]) -> str:
    """Text of the most recent user turn, or an empty string."""
    for message in reversed(messages):
        if message.role == "user":
            return message.text
    return ""


class FunctionRunner:
    """Executes an agent's triggered custom functions."""

    def __init__(self, timeout: float = 10.0, http_client: httpx.AsyncClient | None = None):
        self.timeout = timeout
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._http_client

    async def run_triggered(
        self, functions: list[AgentFunctionData], messages: list[ChatMessage]
    ) -> list[FunctionResult]:
        """
        Run, in order, every function triggered by the last user message.

        A failing function yields a failed result; later functions still run.
        """
        user_text = last_user_text(messages)
        results: list[FunctionResult] = []

        for fn in functions:
            if not fn.is_triggered_by(user_text):
                continue
            try:
                result = await self.execute(fn, user_text)
            except Exception as e:
                # Owner-supplied config (bad URL, non-string header values)
                logger.warning(
                    "agent_function_failed",
                    function=fn.name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                result = FunctionResult(
                    function_name=fn.name,
                    function_type=fn.function_type,
                    success=False,
                    error=str(e) or type(e).__name__,
                )
            logger.info(
                "agent_function_executed",
                function=fn.name,
                function_type=fn.function_type.value,
                success=result.success,
                error=result.error,
            )
            results.append(result)

        return results

    async def execute(self, fn: AgentFunctionData, user_text: str) -> FunctionResult:
        """Dispatch a single function by type."""
        if fn.function_type == FunctionType.API_CALL:
            return await self._api_call(fn, user_text)
        if fn.function_type == FunctionType.CONDITIONAL:
            return self._conditional(fn, user_text)
        if fn.function_type == FunctionType.DATA_TRANSFORM:
            return self._data_transform(fn, user_text)
        # Webhooks run after the response
        return FunctionResult(
            function_name=fn.name,
            function_type=fn.function_type,
            success=True,
            data={"scheduled": True},
        )

    async def _api_call(self, fn: AgentFunctionData, user_text: str) -> FunctionResult:
        url = fn.config.get("url")
        method = str(fn.config.get("method") or "GET").upper()

        def failed(error: str) -> FunctionResult:
            return FunctionResult(
                function_name=fn.name, function_type=fn.function_type, success=False, error=error
            )

        if not url:
            return failed("No URL configured")

        headers = {"Content-Type": "application/json"}
        if fn.config.get("headers_json"):
            try:
                headers.update(json.loads(fn.config["headers_json"]))
            except (ValueError, TypeError):
                logger.warning("agent_function_headers_invalid", function=fn.name)

        content: str | None = None
        if fn.config.get("body_template") and method != "GET":
            content = str(fn.config["body_template"]).replace("{{user_input}}", user_text)

        try:
            response = await self.http_client.request(method, url, headers=headers, content=content)
        except httpx.HTTPError as e:
            return failed(str(e) or "API call failed")

        if not response.is_success:
            return failed(f"API returned {response.status_code}")

        try:
            data = response.json()
        except ValueError:
            return failed("API returned invalid JSON")

        return FunctionResult(
            function_name=fn.name, function_type=fn.function_type, success=True, data=data
        )

    @staticmethod
    def _conditional(fn: AgentFunctionData, user_text: str) -> FunctionResult:
        lowered = user_text.lower()
        keywords = [
            k.strip() for k in str(fn.config.get("condition_keyword") or "").lower().split(",")
        ]
        matched = any(k and k in lowered for k in keywords)

        condition_response = fn.config.get("condition_response")
        default_response = fn.config.get("default_response")

        if matched and condition_response:
            data: dict[str, Any] = {"response": str(condition_response), "matched": True}
            success = True
        elif not matched and default_response:
            data = {"response": str(default_response), "matched": False}
            success = True
        else:
            data = {"matched": matched}
            success = False

        return FunctionResult(
            function_name=fn.name, function_type=fn.function_type, success=success, data=data
        )

    @staticmethod
    def _data_transform(fn: AgentFunctionData, user_text: str) -> FunctionResult:
        transform_type = fn.config.get("transform_type")
        template = fn.config.get("template")

        if transform_type == "format" and template:
            data = str(template).replace("{{data}}", user_text)
        elif transform_type == "summarize":
            data = f"Please summarize: {user_text}"
        else:
            # "extract" and unknown types pass the text through
            data = user_text

        return FunctionResult(
            function_name=fn.name, function_type=fn.function_type, success=True, data=data
        )

    # ========================================================================
    # Webhooks
    # ========================================================================

    @staticmethod
    def build_webhook_payload(
        fn: AgentFunctionData, agent_id: UUID, message: str, response: str | None
    ) -> dict[str, Any]:
        """Default payload, or the configured template when it renders to valid JSON."""
        payload: dict[str, Any] = {
            "agent_id": str(agent_id),
            "timestamp": datetime.now(UTC).isoformat(),
            "message": message,
            "response": response or "",
        }

        template = fn.config.get("payload_template")
        if template:
            rendered = (
                str(template)
                .replace("{{content}}", message)
                .replace("{{response}}", response or "")
                .replace("{{agent_id}}", str(agent_id))
            )
            try:
                parsed = json.loads(rendered)
            except ValueError:
                logger.warning("webhook_template_invalid", function=fn.name)
            else:
                if isinstance(parsed, dict):
                    payload = parsed

        return payload

    async def deliver_webhook(self, fn: AgentFunctionData, payload: dict[str, Any]) -> None:
        """POST a webhook payload. Raises on transport or HTTP failure."""
        response = await self.http_client.post(fn.config["webhook_url"], json=payload)
        response.raise_for_status()
        logger.info("webhook_delivered", function=fn.name, status_code=response.status_code)

    def schedule_webhooks(
        self,
        side_channel: SideChannel,
        functions: list[AgentFunctionData],
        agent_id: UUID,
        messages: list[ChatMessage],
        response: str | None,
    ) -> int:
        """
        Submit one side-channel job per eligible webhook.

        Webhooks without a URL are skipped; `on_keyword` webhooks are skipped
        unless one of their keywords matched.

        Returns:
            Number of jobs accepted
        """
        message = last_user_text(messages)
        accepted = 0

        for fn in functions:
            if fn.function_type != FunctionType.WEBHOOK or not fn.config.get("webhook_url"):
                continue
            if fn.config.get("trigger_event") == "on_keyword" and not fn.is_triggered_by(message):
                continue

            payload = self.build_webhook_payload(fn, agent_id, message, response)
            if side_channel.submit(
                "webhook", lambda fn=fn, payload=payload: self.deliver_webhook(fn, payload)
            ):
                accepted += 1

        return accepted

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


_function_runner: FunctionRunner | None = None


def get_function_runner() -> FunctionRunner:
    """Get or create the process-wide function runner."""
    global _function_runner
    if _function_runner is None:
        _function_runner = FunctionRunner(timeout=settings.function_call_timeout_seconds)
    return _function_runner


async def close_function_runner() -> None:
    """Close the process-wide function runner."""
    global _function_runner
    if _function_runner is not None:
        await _function_runner.close()
        _function_runner = None
