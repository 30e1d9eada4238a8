"""Claude client shared by every pipeline stage.

One instance is built per process (API lifespan or processor service) and
injected into the stages; nothing here reads global state.
"""

import json
from dataclasses import dataclass
from typing import Any, Optional

import structlog
from anthropic import (
    AsyncAnthropic,
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
)
from fastapi import Request

from api.middleware.error_handler import ConfigurationError, UpstreamError

logger = structlog.get_logger()


@dataclass
class ReasoningResponse:
    """Text and token usage from one completion."""

    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def usage(self) -> dict:
        return {"input_tokens": self.input_tokens, "output_tokens": self.output_tokens}


def classify_status(status_code: int) -> str:
    """Map an upstream HTTP status onto an UpstreamError kind."""
    if status_code in (401, 403):
        return "auth"
    if status_code == 429:
        return "quota"
    if status_code == 408:
        return "timeout"
    if status_code >= 500:
        return "network"
    return "malformed_response"


class ReasoningClient:
    """Async Claude client with a fixed timeout and classified errors.

    SDK-level retries are off; retrying is the job queue's decision.
    """

    def __init__(
        self,
        api_key: Optional[str],
        default_model: str,
        max_tokens: int = 8000,
        timeout: float = 120.0,
        client: Optional[AsyncAnthropic] = None,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._client = client

    @classmethod
    def from_settings(cls, settings) -> "ReasoningClient":
        return cls(
            api_key=settings.ANTHROPIC_API_KEY,
            default_model=settings.CLAUDE_MODEL,
            max_tokens=settings.CLAUDE_MAX_TOKENS,
            timeout=settings.CLAUDE_TIMEOUT_SECONDS,
        )

    @property
    def client(self) -> AsyncAnthropic:
        if self._client is None:
            if not self.api_key:
                raise ConfigurationError("ANTHROPIC_API_KEY is not configured")
            self._client = AsyncAnthropic(
                api_key=self.api_key,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    async def complete(
        self,
        prompt: str,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: float = 0.3,
        system: Optional[str] = None,
    ) -> ReasoningResponse:
        """Send one prompt and return the concatenated text response.

        Raises:
            ConfigurationError: No API key configured
            UpstreamError: The call failed or returned no text
        """
        model = model or self.default_model
        request: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens or self.max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            request["system"] = system

        client = self.client
        try:
            response = await client.messages.create(**request)
        except APITimeoutError as e:
            logger.warning("Claude request timed out", model=model, timeout=self.timeout)
            raise UpstreamError("timeout", f"Reasoning engine timed out: {e}") from e
        except APIConnectionError as e:
            logger.warning("Claude connection error", model=model, error=str(e))
            raise UpstreamError("network", f"Reasoning engine unreachable: {e}") from e
        except APIStatusError as e:
            kind = classify_status(e.status_code)
            logger.error(
                "Claude API error",
                model=model,
                status_code=e.status_code,
                kind=kind,
                error=str(e),
            )
            raise UpstreamError(kind, f"Reasoning engine error: {e.message}", e.status_code) from e

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        if not text.strip():
            raise UpstreamError("malformed_response", "Reasoning engine returned no text")

        usage = getattr(response, "usage", None)
        result = ReasoningResponse(
            content=text,
            model=getattr(response, "model", None) or model,
            input_tokens=getattr(usage, "input_tokens", 0) or 0,
            output_tokens=getattr(usage, "output_tokens", 0) or 0,
        )
        logger.info(
            "Claude completion received",
            model=result.model,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
        )
        return result

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()


def _matching_brace(text: str, start: int) -> int:
    """Index of the brace closing the object opened at text[start], or -1."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return -1


def extract_json_object(text: str) -> dict:
    """Parse the first balanced top-level JSON object embedded in text.

    Prose, Markdown fences, unbalanced braces and brace-delimited fragments
    that are not valid JSON are skipped. A rejected fragment is skipped as
    a whole, so objects nested inside it are never returned.

    Raises:
        ValueError: No parseable JSON object found
    """
    if not text:
        raise ValueError("Empty response")

    start = text.find("{")
    while start != -1:
        end = _matching_brace(text, start)
        if end == -1:
            start = text.find("{", start + 1)
            continue
        try:
            return json.loads(text[start:end + 1])
        except json.JSONDecodeError:
            start = text.find("{", end + 1)

    raise ValueError("No JSON object found in response")


def get_reasoning_client(request: Request) -> ReasoningClient:
    """Dependency returning the process-wide reasoning client."""
    return request.app.state.reasoning_client
