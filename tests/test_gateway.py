"""Tests for assistant response validation and the OpenAI-backed gateway."""

from __future__ import annotations

import json
from typing import Any, cast

import pytest

from arbor.ai.client import AIClient
from arbor.chat.message_model import ConversationTurn, TurnRole
from arbor.ai.commands import CommandKind
from arbor.ai.context import ConversationContext
from arbor.ai.errors import ErrorCode, GatewayError
from arbor.ai.gateway import OpenAIAssistantGateway, parse_assistant_reply


class TestParseAssistantReply:
    def test_valid_reply_with_commands(self) -> None:
        payload = json.dumps(
            {
                "reply": "Creating it now.",
                "commands": [
                    {"kind": "CreateNode", "parameters": ["Intro"]},
                    {"kind": "research", "parameters": ["owls"]},
                ],
            }
        )

        reply = parse_assistant_reply(payload)

        assert reply.reply_text == "Creating it now."
        assert [command.kind for command in reply.commands] == [
            CommandKind.CREATE_NODE,
            CommandKind.RESEARCH,
        ]
        assert reply.commands[0].parameters == ("Intro",)

    def test_commands_are_optional(self) -> None:
        reply = parse_assistant_reply({"reply": "Just chatting."})
        assert reply.commands == ()

    def test_parameters_default_to_empty(self) -> None:
        reply = parse_assistant_reply({"reply": "Bye", "commands": [{"kind": "DeleteNode"}]})
        assert reply.commands[0].parameters == ()

    def test_code_fenced_json_is_accepted(self) -> None:
        reply = parse_assistant_reply('```json\n{"reply": "fenced"}\n```')
        assert reply.reply_text == "fenced"

    @pytest.mark.parametrize(
        "payload",
        [
            "not json at all",
            "[1, 2, 3]",
            '{"commands": []}',
            '{"reply": 42}',
            '{"reply": "x", "commands": "CreateNode"}',
            '{"reply": "x", "commands": [{"parameters": ["a"]}]}',
            '{"reply": "x", "commands": [{"kind": "CreateNode", "parameters": [1]}]}',
        ],
    )
    def test_malformed_payloads_raise_gateway_error(self, payload: str) -> None:
        with pytest.raises(GatewayError) as excinfo:
            parse_assistant_reply(payload)
        assert excinfo.value.error_code == ErrorCode.MALFORMED_RESPONSE

    def test_unknown_command_kind_rejects_whole_reply(self) -> None:
        payload = {
            "reply": "x",
            "commands": [
                {"kind": "CreateNode", "parameters": ["ok"]},
                {"kind": "Teleport", "parameters": []},
            ],
        }
        with pytest.raises(GatewayError) as excinfo:
            parse_assistant_reply(payload)
        assert "commands/1" in excinfo.value.message


class _StubClient:
    def __init__(self, response: str | None = None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    async def complete(self, messages: Any, **kwargs: Any) -> str:
        self.calls.append({"messages": list(messages), **kwargs})
        if self.error is not None:
            raise self.error
        assert self.response is not None
        return self.response

    async def aclose(self) -> None:
        self.closed = True


@pytest.mark.asyncio
async def test_gateway_sends_context_and_parses_reply() -> None:
    stub = _StubClient(response='{"reply": "Hello", "commands": []}')
    gateway = OpenAIAssistantGateway(cast(AIClient, stub))

    reply = await gateway.send("Hi", ConversationContext(current_node_id="n-1"))

    assert reply.reply_text == "Hello"
    call = stub.calls[0]
    assert call["json_mode"] is True
    assert call["messages"][0]["role"] == "system"
    user_message = call["messages"][1]["content"]
    assert "Hi" in user_message
    assert "n-1" in user_message


@pytest.mark.asyncio
async def test_gateway_does_not_repeat_current_utterance_in_history() -> None:
    stub = _StubClient(response='{"reply": "Sure", "commands": []}')
    gateway = OpenAIAssistantGateway(cast(AIClient, stub))
    context = ConversationContext(
        recent_history=(
            ConversationTurn(TurnRole.USER, "Add a chapter", sequence=1),
            ConversationTurn(TurnRole.ASSISTANT, "Added.", sequence=2),
            ConversationTurn(TurnRole.USER, "Rename it to Prologue", sequence=3),
        )
    )

    await gateway.send("Rename it to Prologue", context)

    user_message = stub.calls[0]["messages"][1]["content"]
    assert user_message.count("Rename it to Prologue") == 1
    assert "Add a chapter" in user_message
    assert "Added." in user_message


@pytest.mark.asyncio
async def test_gateway_wraps_transport_failures() -> None:
    stub = _StubClient(error=ConnectionError("network down"))
    gateway = OpenAIAssistantGateway(cast(AIClient, stub))

    with pytest.raises(GatewayError) as excinfo:
        await gateway.send("Hi", ConversationContext())

    assert excinfo.value.error_code == ErrorCode.GATEWAY_ERROR
    assert "network down" in excinfo.value.message


@pytest.mark.asyncio
async def test_gateway_rejects_malformed_model_output() -> None:
    stub = _StubClient(response="Sure! I created the node.")
    gateway = OpenAIAssistantGateway(cast(AIClient, stub))

    with pytest.raises(GatewayError) as excinfo:
        await gateway.send("Hi", ConversationContext())

    assert excinfo.value.error_code == ErrorCode.MALFORMED_RESPONSE


@pytest.mark.asyncio
async def test_gateway_aclose_closes_client() -> None:
    stub = _StubClient(response="{}")
    gateway = OpenAIAssistantGateway(cast(AIClient, stub))
    await gateway.aclose()
    assert stub.closed
