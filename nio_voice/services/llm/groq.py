"""Groq LLM provider with tool calling support."""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from typing import Any

import groq
from groq import AsyncGroq

from nio_voice.config import Settings, get_settings
from nio_voice.exceptions import InvalidConfigError, NotInitializedError, ProviderFailure
from nio_voice.logging_config import get_logger
from nio_voice.services.llm.protocol import (
    CompletionRequest,
    CompletionResult,
    FinishReason,
    Message,
    Role,
    TokenUsage,
    Tool,
    ToolCall,
    ToolChoice,
)

logger: Any = get_logger(__name__)

PROVIDER_NAME = "groq"


class GroqLLMProvider:
    """Groq chat completion provider (OpenAI-compatible tool calling)."""

    def __init__(
        self,
        settings: Settings | None = None,
        model: str | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._model = model or self._settings.groq_model
        self._client: AsyncGroq | None = None

    @property
    def client(self) -> AsyncGroq:
        """AsyncGroq client; only available after initialize()."""
        if self._client is None:
            raise NotInitializedError(PROVIDER_NAME)
        return self._client

    @property
    def is_initialized(self) -> bool:
        return self._client is not None

    async def initialize(self) -> None:
        """Create the AsyncGroq client.

        Raises:
            InvalidConfigError: When no API key is configured
        """
        if self._settings.groq_api_key is None:
            raise InvalidConfigError("Groq API key is required", PROVIDER_NAME)

        self._client = AsyncGroq(
            api_key=self._settings.groq_api_key.get_secret_value(),
            timeout=self._settings.llm_timeout,
            max_retries=2,
        )
        logger.debug(f"Groq client ready (model={self._model})")

    def _request_kwargs(self, request: CompletionRequest) -> dict[str, Any]:
        """Build chat.completions.create arguments for a request."""
        kwargs: dict[str, Any] = {
            "messages": self._format_messages(request.messages),
            "model": self._model,
            "temperature": (
                request.temperature
                if request.temperature is not None
                else self._settings.llm_temperature
            ),
            "max_tokens": request.max_tokens or self._settings.llm_max_tokens,
        }
        if request.tools:
            kwargs["tools"] = self._format_tools(request.tools)
            if request.tool_choice is not None:
                kwargs["tool_choice"] = self._format_tool_choice(request.tool_choice)
        return kwargs

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        """Run a chat completion.

        Args:
            request: Messages (system message included), sampling and tools

        Returns:
            Normalized completion result

        Raises:
            NotInitializedError: When initialize() has not been awaited
            ProviderFailure: For any Groq API error
        """
        client = self.client
        kwargs = self._request_kwargs(request)

        start_time = time.perf_counter()
        try:
            response = await client.chat.completions.create(**kwargs)
        except groq.APIError as e:
            raise self._provider_failure(e) from e

        latency_ms = (time.perf_counter() - start_time) * 1000
        logger.debug(f"Groq completion took {latency_ms:.1f}ms")

        return self._convert_response(response)

    async def stream(
        self,
        request: CompletionRequest,
        on_chunk: Callable[[str], None],
    ) -> CompletionResult:
        """Stream a chat completion.

        Text deltas are handed to on_chunk as they arrive. Tool call
        fragments are accumulated by index and parsed once the stream ends.

        Raises:
            NotInitializedError: When initialize() has not been awaited
            ProviderFailure: For any Groq API error
        """
        client = self.client
        kwargs = self._request_kwargs(request)

        start_time = time.perf_counter()
        first_token_received = False
        text_parts: list[str] = []
        call_parts: dict[int, dict[str, Any]] = {}
        finish_reason: str | None = None
        usage: Any = None

        try:
            stream = await client.chat.completions.create(**kwargs, stream=True)

            async for chunk in stream:
                if chunk.choices:
                    choice = chunk.choices[0]
                    delta = choice.delta

                    if delta.content:
                        if not first_token_received:
                            first_token_received = True
                            first_token_ms = (time.perf_counter() - start_time) * 1000
                            logger.debug(f"First token latency: {first_token_ms:.1f}ms")
                        text_parts.append(delta.content)
                        on_chunk(delta.content)

                    for call in delta.tool_calls or ():
                        part = call_parts.setdefault(
                            call.index, {"id": "", "name": "", "arguments": ""}
                        )
                        if call.id:
                            part["id"] = call.id
                        if call.function is not None:
                            if call.function.name:
                                part["name"] = call.function.name
                            if call.function.arguments:
                                part["arguments"] += call.function.arguments

                    if choice.finish_reason:
                        finish_reason = choice.finish_reason

                # Groq reports usage in the x_groq extension of the last chunk
                x_groq = getattr(chunk, "x_groq", None)
                if x_groq is not None and getattr(x_groq, "usage", None):
                    usage = x_groq.usage

        except groq.APIError as e:
            raise self._provider_failure(e) from e

        tool_calls = [
            self._parse_tool_call(part["id"], part["name"], part["arguments"])
            for _, part in sorted(call_parts.items())
        ]

        return CompletionResult(
            text="".join(text_parts),
            tool_calls=tool_calls or None,
            usage=self._convert_usage(usage),
            finish_reason=self._convert_finish_reason(finish_reason),
        )

    def _provider_failure(self, error: groq.APIError) -> ProviderFailure:
        """Log a Groq SDK error and wrap it as a ProviderFailure."""
        if isinstance(error, groq.RateLimitError):
            logger.warning(f"Groq rate limit hit: {error}")
            return ProviderFailure("llm", "Groq rate limit exceeded", error)
        if isinstance(error, groq.APIConnectionError):
            logger.error(f"Groq connection error: {error.__cause__}")
            return ProviderFailure("llm", "Failed to connect to Groq API", error)
        if isinstance(error, groq.AuthenticationError):
            logger.error("Groq authentication failed")
            return ProviderFailure("llm", "Invalid Groq API key", error)
        if isinstance(error, groq.APIStatusError):
            logger.error(f"Groq API error: {error.status_code} - {error.message}")
            return ProviderFailure("llm", f"Groq API error: {error.status_code}", error)
        logger.error(f"Groq error: {error}")
        return ProviderFailure("llm", f"Groq error: {error}", error)

    def _format_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        """Format ledger messages for the Groq API."""
        api_messages: list[dict[str, Any]] = []

        for msg in messages:
            api_msg: dict[str, Any] = {"role": msg.role.value, "content": msg.content}

            if msg.role == Role.TOOL:
                api_msg["tool_call_id"] = msg.tool_call_id
                if msg.name:
                    api_msg["name"] = msg.name
            elif msg.role == Role.ASSISTANT and msg.tool_calls:
                api_msg["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {
                            "name": call.name,
                            "arguments": json.dumps(dict(call.arguments)),
                        },
                    }
                    for call in msg.tool_calls
                ]

            api_messages.append(api_msg)

        return api_messages

    def _format_tools(self, tools: list[Tool]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": dict(tool.parameters),
                },
            }
            for tool in tools
        ]

    def _format_tool_choice(self, tool_choice: ToolChoice) -> Any:
        """Map tool choice to the OpenAI-compatible format."""
        if isinstance(tool_choice, str):
            return tool_choice
        name = tool_choice.get("name")
        if name:
            return {"type": "function", "function": {"name": name}}
        return "auto"

    def _convert_response(self, response: Any) -> CompletionResult:
        """Convert a Groq chat completion to a CompletionResult."""
        if not response.choices:
            raise ProviderFailure("llm", "Empty response from Groq")

        choice = response.choices[0]
        message = choice.message

        tool_calls = [
            self._parse_tool_call(call.id, call.function.name, call.function.arguments)
            for call in message.tool_calls or ()
        ]

        return CompletionResult(
            text=message.content or "",
            tool_calls=tool_calls or None,
            usage=self._convert_usage(response.usage),
            finish_reason=self._convert_finish_reason(choice.finish_reason),
        )

    def _parse_tool_call(self, call_id: str, name: str, arguments: str | None) -> ToolCall:
        try:
            parsed = json.loads(arguments or "{}")
        except json.JSONDecodeError as e:
            logger.error(f"Invalid tool arguments from Groq for {name}: {e}")
            raise ProviderFailure("llm", f"Invalid JSON in tool arguments: {e}", e) from e
        return ToolCall(id=call_id, name=name, arguments=parsed)

    def _convert_usage(self, usage: Any) -> TokenUsage | None:
        if not usage:
            return None
        return TokenUsage(
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
        )

    def _convert_finish_reason(self, value: str | None) -> FinishReason | None:
        if not value:
            return None
        try:
            return FinishReason(value)
        except ValueError:
            logger.debug(f"Unmapped Groq finish reason: {value}")
            return None

    async def health_check(self) -> bool:
        """Check if Groq API is reachable."""
        try:
            response = await self.client.chat.completions.create(
                messages=[{"role": "user", "content": "hi"}],
                model=self._model,
                max_tokens=1,
            )
            return bool(response.choices)
        except Exception as e:
            logger.warning(f"Groq health check failed: {e}")
            return False

    async def close(self) -> None:
        """Close the client connection."""
        if self._client:
            await self._client.close()
            self._client = None
