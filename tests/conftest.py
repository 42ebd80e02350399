"""Shared pytest fixtures and collaborator fakes."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Iterable, Sequence

import pytest

from arbor.ai.commands import build_command
from arbor.ai.context import ContextAssembler, ConversationContext
from arbor.ai.gateway import AssistantReply
from arbor.ai.orchestration.dispatcher import CommandDispatcher
from arbor.ai.orchestration.orchestrator import ConversationOrchestrator
from arbor.ai.orchestration.protocols import GenerationOptions, NodeSelection, ResearchResult
from arbor.chat.history import HistoryLedger
from arbor.documents.tree_store import InMemoryTreeStore


def reply(text: str, *commands: tuple[str, Sequence[str]]) -> AssistantReply:
    """Build an assistant reply from ``(kind, parameters)`` pairs."""

    return AssistantReply(
        reply_text=text,
        commands=tuple(build_command(kind, params) for kind, params in commands),
    )


class ScriptedGateway:
    """Gateway fake returning queued replies (or raising queued exceptions)."""

    def __init__(self, responses: Iterable[AssistantReply | BaseException] = ()) -> None:
        self.responses: list[AssistantReply | BaseException] = list(responses)
        self.calls: list[tuple[str, ConversationContext]] = []
        self.gate: asyncio.Event | None = None

    async def send(self, utterance: str, context: ConversationContext) -> AssistantReply:
        self.calls.append((utterance, context))
        if self.gate is not None:
            await self.gate.wait()
        if not self.responses:
            return AssistantReply(reply_text="ok")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


class FakeGenerator:
    def __init__(self, text: str = "Generated text", error: Exception | None = None) -> None:
        self.text = text
        self.error = error
        self.prompts: list[tuple[str, GenerationOptions]] = []

    async def generate_text(self, prompt: str, options: GenerationOptions) -> str:
        self.prompts.append((prompt, options))
        if self.error is not None:
            raise self.error
        return self.text


class FakeResearcher:
    def __init__(self, results: Sequence[ResearchResult] = (), error: Exception | None = None) -> None:
        self.results = list(results)
        self.error = error
        self.queries: list[str] = []

    async def research(self, query: str) -> list[ResearchResult]:
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return list(self.results)


class FakeConfirmer:
    def __init__(self, answer: bool = True) -> None:
        self.answer = answer
        self.prompts: list[tuple[str, str]] = []

    def confirm(self, title: str, message: str) -> bool:
        self.prompts.append((title, message))
        return self.answer


@pytest.fixture
def store() -> InMemoryTreeStore:
    return InMemoryTreeStore()


@pytest.fixture
def ledger() -> HistoryLedger:
    return HistoryLedger()


@pytest.fixture
def selection() -> NodeSelection:
    return NodeSelection()


@pytest.fixture
def gateway() -> ScriptedGateway:
    return ScriptedGateway()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def researcher() -> FakeResearcher:
    return FakeResearcher([ResearchResult(title="Owls", snippet="Nocturnal birds", url="https://example.org/owls")])


@pytest.fixture
def confirmer() -> FakeConfirmer:
    return FakeConfirmer()


@pytest.fixture
def dispatcher(
    store: InMemoryTreeStore,
    generator: FakeGenerator,
    researcher: FakeResearcher,
    confirmer: FakeConfirmer,
) -> CommandDispatcher:
    return CommandDispatcher(store, generator=generator, researcher=researcher, confirmer=confirmer)


@pytest.fixture
def make_orchestrator(
    gateway: ScriptedGateway,
    dispatcher: CommandDispatcher,
    store: InMemoryTreeStore,
    ledger: HistoryLedger,
) -> Callable[..., ConversationOrchestrator]:
    def _factory(**kwargs: Any) -> ConversationOrchestrator:
        assembler = ContextAssembler(store, ledger)
        return ConversationOrchestrator(gateway, dispatcher, assembler, ledger, **kwargs)

    return _factory
