"""
OpenAI-compatible completion provider.

Talks to any ``/chat/completions`` endpoint (OpenRouter, OpenAI, LM Studio,
Ollama). Streaming responses are read as Server-Sent Events; frames from
document-grounded gateways may carry ``citations`` and ``confidence``.
"""

import json
import logging
from typing import Any, AsyncIterator, Optional

import httpx

from classroom_tutor.llm.base import LLMProvider, LLMResponse, StreamChunk
from classroom_tutor.llm.config import LLMConfig, Message
from classroom_tutor.llm.exceptions import (
    LLMAuthenticationError,
    LLMConnectionError,
    LLMContextLengthError,
    LLMError,
    LLMModelNotFoundError,
    LLMModelUnavailableError,
    LLMRateLimitError,
    LLMResponseError,
    LLMTimeoutError,
)

logger = logging.getLogger(__name__)


def parse_sse_line(line: str) -> Optional[str]:
    """
    Extract the payload of one SSE line.

    Returns None for blank lines, comments (``:keep-alive``) and non-data
    fields. ``data:`` is accepted with or without a following space.
    """
    if not line or line.startswith(":"):
        return None
    if not line.startswith("data:"):
        return None
    payload = line[5:]
    if payload.startswith(" "):
        payload = payload[1:]
    return payload


class OpenAIProvider(LLMProvider):
    """
    Provider for OpenAI-style chat-completion APIs.

    Example:
        ```python
        provider = OpenAIProvider(LLMConfig(api_key="sk-or-..."))
        async for chunk in provider.stream(messages):
            print(chunk.content, end="")
        ```
    """

    def __init__(self, config: LLMConfig, client: Optional[httpx.AsyncClient] = None):
        super().__init__(config)
        self._client: Optional[httpx.AsyncClient] = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=httpx.Timeout(self.config.timeout),
                headers=self._build_headers(),
            )
        return self._client

    def _build_headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-Title": self.config.app_title,
        }
        api_key = self.config.get_api_key()
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        if self.config.referer:
            headers["HTTP-Referer"] = self.config.referer
        return headers

    def _handle_error_response(self, response: httpx.Response, model: str) -> None:
        """Raise the LLMError subclass matching a non-success response."""
        status_code = response.status_code
        body = response.text

        try:
            error_data = response.json()
            error = error_data.get("error", {})
            if isinstance(error, str):
                detail = error
                error_type = None
            else:
                detail = error.get("message", str(error_data))
                error_type = error.get("type")
        except (ValueError, AttributeError):
            detail = body or f"HTTP {status_code}"
            error_type = None

        logger.error(f"Completion service returned {status_code}: {body[:500]}")

        common_kwargs: dict[str, Any] = {
            "provider": self.provider_name,
            "model": model,
            "status_code": status_code,
        }

        if status_code in (401, 403):
            raise LLMAuthenticationError(detail, **common_kwargs)
        if status_code == 404:
            raise LLMModelNotFoundError(f"Endpoint or model not found: {detail}", **common_kwargs)
        if status_code == 406:
            raise LLMModelUnavailableError(f"Model unavailable: {detail}", **common_kwargs)
        if status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise LLMRateLimitError(
                detail,
                retry_after=float(retry_after) if retry_after else None,
                **common_kwargs,
            )
        if status_code == 400 and (
            error_type == "context_length_exceeded" or "context length" in detail.lower()
        ):
            raise LLMContextLengthError(detail, **common_kwargs)
        if status_code >= 500:
            raise LLMResponseError(f"Server error: {detail}", response_body=body, **common_kwargs)
        raise LLMResponseError(detail, response_body=body, **common_kwargs)

    def _request_body(
        self,
        prompt: str | list[Message],
        system_prompt: Optional[str],
        stream: bool,
        **kwargs: Any,
    ) -> dict[str, Any]:
        return {
            "messages": self._prepare_messages(prompt, system_prompt),
            "stream": stream,
            **self._merge_generation_params(**kwargs),
        }

    async def complete(
        self,
        prompt: str | list[Message],
        *,
        system_prompt: Optional[str] = None,
        **kwargs: Any,
    ) -> LLMResponse:
        client = await self._get_client()
        body = self._request_body(prompt, system_prompt, False, **kwargs)
        model = body.get("model", self.model_name)

        logger.debug(f"POST {self.config.base_url}/chat/completions model={model}")

        try:
            response = await client.post("/chat/completions", json=body)
            if not response.is_success:
                self._handle_error_response(response, model)

            data = response.json()
            choice = data["choices"][0]
            return LLMResponse(
                content=choice["message"].get("content") or "",
                model=data.get("model", model),
                finish_reason=choice.get("finish_reason"),
                usage=data.get("usage"),
                raw_response=data,
            )
        except LLMError:
            raise
        except httpx.TimeoutException as e:
            raise LLMTimeoutError(
                f"Request timed out after {self.config.timeout}s: {e}",
                provider=self.provider_name,
                model=model,
            )
        except httpx.HTTPError as e:
            raise LLMConnectionError(
                f"Request to {self.config.base_url} failed: {e}",
                provider=self.provider_name,
                model=model,
            )
        except (KeyError, IndexError, ValueError) as e:
            raise LLMResponseError(
                f"Malformed completion response: {e}",
                provider=self.provider_name,
                model=model,
            )

    async def stream(
        self,
        prompt: str | list[Message],
        *,
        system_prompt: Optional[str] = None,
        **kwargs: Any,
    ) -> AsyncIterator[StreamChunk]:
        client = await self._get_client()
        body = self._request_body(prompt, system_prompt, True, **kwargs)
        model = body.get("model", self.model_name)

        logger.debug(f"Streaming POST {self.config.base_url}/chat/completions model={model}")

        try:
            async with client.stream("POST", "/chat/completions", json=body) as response:
                if not response.is_success:
                    await response.aread()
                    self._handle_error_response(response, model)

                async for line in response.aiter_lines():
                    payload = parse_sse_line(line)
                    if payload is None:
                        continue
                    if payload.strip() == "[DONE]":
                        break

                    try:
                        data = json.loads(payload)
                    except json.JSONDecodeError:
                        logger.warning(f"Skipping unparseable stream frame: {payload[:200]}")
                        continue

                    chunk = self._chunk_from_frame(data)
                    if chunk is not None:
                        yield chunk

        except LLMError:
            raise
        except httpx.TimeoutException as e:
            raise LLMTimeoutError(
                f"Stream timed out after {self.config.timeout}s: {e}",
                provider=self.provider_name,
                model=model,
            )
        except httpx.HTTPError as e:
            raise LLMConnectionError(
                f"Stream from {self.config.base_url} broke: {e}",
                provider=self.provider_name,
                model=model,
            )

    @staticmethod
    def _chunk_from_frame(data: dict[str, Any]) -> Optional[StreamChunk]:
        citations = data.get("citations")
        confidence = data.get("confidence")

        content = ""
        finish_reason = None
        choices = data.get("choices") or []
        if choices:
            choice = choices[0]
            delta = choice.get("delta") or {}
            content = delta.get("content") or ""
            finish_reason = choice.get("finish_reason")
        elif isinstance(data.get("content"), str):
            content = data["content"]

        if not content and finish_reason is None and citations is None and confidence is None:
            return None

        return StreamChunk(
            content=content,
            finish_reason=finish_reason,
            is_final=finish_reason is not None,
            citations=citations,
            confidence=confidence,
        )

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
