"""Assistant gateway: request construction and response-shape validation."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping, Protocol

from jsonschema import Draft7Validator

from . import prompts
from .commands import Command, build_command
from .errors import ErrorCode, GatewayError

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from .client import AIClient
    from .context import ConversationContext

LOGGER = logging.getLogger(__name__)

_CODE_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*(?P<body>.*?)\s*```\s*$", re.DOTALL | re.IGNORECASE)

REPLY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "reply": {"type": "string"},
        "commands": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "kind": {"type": "string", "minLength": 1},
                    "parameters": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["kind"],
            },
        },
    },
    "required": ["reply"],
}

_VALIDATOR = Draft7Validator(REPLY_SCHEMA)


@dataclass(slots=True, frozen=True)
class AssistantReply:
    """Validated assistant response: prose plus zero or more commands."""

    reply_text: str
    commands: tuple[Command, ...] = ()


class AssistantGateway(Protocol):
    """Boundary to the external assistant."""

    async def send(self, utterance: str, context: "ConversationContext") -> AssistantReply:
        ...


def parse_assistant_reply(payload: str | Mapping[str, Any]) -> AssistantReply:
    """Validate a raw assistant response and convert it into an :class:`AssistantReply`.

    Any deviation from the expected shape raises a single :class:`GatewayError`;
    a response is never partially accepted.
    """

    data: Any = payload
    if isinstance(payload, str):
        data = _decode_json(payload)
    if not isinstance(data, Mapping):
        raise GatewayError(
            error_code=ErrorCode.MALFORMED_RESPONSE,
            message="Assistant response was not a JSON object",
        )
    errors = sorted(_VALIDATOR.iter_errors(data), key=lambda err: list(err.path))
    if errors:
        first = errors[0]
        location = "/".join(str(part) for part in first.path) or "<root>"
        raise GatewayError(
            error_code=ErrorCode.MALFORMED_RESPONSE,
            message=f"Assistant response is malformed at {location}: {first.message}",
            details={"error_count": len(errors)},
        )
    commands: list[Command] = []
    for index, entry in enumerate(data.get("commands") or []):
        try:
            commands.append(build_command(entry["kind"], entry.get("parameters")))
        except ValueError as exc:
            raise GatewayError(
                error_code=ErrorCode.MALFORMED_RESPONSE,
                message=f"Assistant response is malformed at commands/{index}: {exc}",
            ) from exc
    return AssistantReply(reply_text=str(data["reply"]), commands=tuple(commands))


def _context_payload(utterance: str, context: "ConversationContext") -> dict[str, Any]:
    """Context payload minus the trailing history entry that repeats ``utterance``."""

    payload = context.to_payload()
    history = payload["recent_history"]
    if history and history[-1] == {"role": "user", "text": utterance}:
        payload["recent_history"] = history[:-1]
    return payload


class OpenAIAssistantGateway:
    """:class:`AssistantGateway` backed by an OpenAI-compatible chat model."""

    def __init__(self, client: "AIClient", *, temperature: float | None = 0.2) -> None:
        self._client = client
        self._temperature = temperature

    async def send(self, utterance: str, context: "ConversationContext") -> AssistantReply:
        messages = [
            {"role": "system", "content": prompts.system_prompt()},
            {"role": "user", "content": prompts.user_prompt(utterance, _context_payload(utterance, context))},
        ]
        try:
            raw = await self._client.complete(
                messages,
                temperature=self._temperature,
                json_mode=True,
            )
        except Exception as exc:
            LOGGER.warning("Assistant request failed: %s", exc)
            raise GatewayError(message=f"The assistant request failed: {exc}") from exc
        reply = parse_assistant_reply(raw)
        LOGGER.debug(
            "Assistant replied (%s chars, %s command(s))",
            len(reply.reply_text),
            len(reply.commands),
        )
        return reply

    async def aclose(self) -> None:
        await self._client.aclose()


def _decode_json(text: str) -> Any:
    body = text.strip()
    fenced = _CODE_FENCE_RE.match(body)
    if fenced:
        body = fenced.group("body")
    try:
        return json.loads(body)
    except json.JSONDecodeError as exc:
        raise GatewayError(
            error_code=ErrorCode.MALFORMED_RESPONSE,
            message=f"Assistant response was not valid JSON: {exc.msg}",
        ) from exc


__all__ = [
    "AssistantGateway",
    "AssistantReply",
    "OpenAIAssistantGateway",
    "REPLY_SCHEMA",
    "parse_assistant_reply",
]
