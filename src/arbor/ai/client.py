"""Async chat-completion client for OpenAI-compatible endpoints."""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, cast

import httpx
from openai import AsyncOpenAI, APIConnectionError, APIError, APIStatusError, RateLimitError
from openai.types.chat import ChatCompletionMessageParam
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

LOGGER = logging.getLogger(__name__)

RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    APIError,
    APIStatusError,
    APIConnectionError,
    RateLimitError,
    httpx.TimeoutException,
    httpx.TransportError,
)


@dataclass(slots=True)
class ClientSettings:
    """Connection and retry options for :class:`AIClient`."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] | None = None
    metadata: Mapping[str, str] | None = None
    debug_logging: bool = False


class AIClient:
    """Async client providing chat completions with retry semantics."""

    def __init__(
        self,
        settings: ClientSettings,
        *,
        client: AsyncOpenAI | Any | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or self._open_client(settings)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def complete(
        self,
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
        *,
        temperature: float | None = 0.2,
        max_tokens: int | None = None,
        json_mode: bool = False,
        metadata: Mapping[str, str] | None = None,
        **extra_params: Any,
    ) -> str:
        """Return the text of the first choice for the provided messages."""

        chat = [cast(ChatCompletionMessageParam, dict(message)) for message in messages]
        if not chat:
            raise ValueError("Cannot request a completion without messages")

        request: Dict[str, Any] = {"model": self._settings.model, "messages": chat}
        tags = {**(self._settings.metadata or {}), **(metadata or {})}
        if tags:
            request["metadata"] = tags
        if json_mode:
            request["response_format"] = {"type": "json_object"}
        optional = {"temperature": temperature, "max_tokens": max_tokens}
        request.update({key: value for key, value in optional.items() if value is not None})
        request.update(extra_params)

        LOGGER.debug("Requesting %s completion for %s message(s)", self._settings.model, len(chat))
        if self._settings.debug_logging:
            LOGGER.debug("Completion request:\n%s", json.dumps(request, ensure_ascii=False, indent=2, default=str))

        response: Any = None
        async for attempt in self._retry_policy():
            with attempt:
                response = await self._client.chat.completions.create(**request)
        return self._extract_text(response)

    @staticmethod
    def _open_client(settings: ClientSettings) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            default_headers=dict(settings.default_headers or {}) or None,
            max_retries=0,
        )

    def _retry_policy(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
        )

    @staticmethod
    def _extract_text(response: Any) -> str:
        choices = getattr(response, "choices", None) or []
        if not choices:
            raise ValueError("Chat completion returned no choices")
        message = getattr(choices[0], "message", None)
        content = getattr(message, "content", None)
        if content is None:
            refusal = getattr(message, "refusal", None)
            if refusal:
                raise ValueError(f"Model refused the request: {refusal}")
            raise ValueError("Chat completion returned empty content")
        return str(content)

    async def aclose(self) -> None:
        """Release the HTTP connections held by the OpenAI client."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        outcome = close()
        if inspect.isawaitable(outcome):
            await outcome


__all__ = ["AIClient", "ClientSettings", "RETRYABLE_ERRORS"]
