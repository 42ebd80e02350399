"""Tests for :mod:`arbor.ai.orchestration.dispatcher`."""

from __future__ import annotations

import asyncio
import threading
from typing import Any, cast

import pytest

from conftest import FakeConfirmer, FakeGenerator, FakeResearcher

from arbor.ai.commands import build_command
from arbor.ai.errors import ErrorCode
from arbor.ai.orchestration.dispatcher import CommandDispatcher
from arbor.ai.orchestration.protocols import GenerationOptions, NodeSelection, ResearchResult
from arbor.documents.tree_store import InMemoryTreeStore


class _BrokenStore(InMemoryTreeStore):
    def create_node(self, parent_id, title):  # type: ignore[no-untyped-def]
        raise OSError("disk unavailable")


class _GatedConfirmer:
    """Blocks in ``confirm`` until another task opens the gate."""

    def __init__(self) -> None:
        self.gate = threading.Event()

    def confirm(self, title: str, message: str) -> bool:
        return self.gate.wait(timeout=2.0)


class TestCreateNode:
    @pytest.mark.asyncio
    async def test_creates_root_node_and_selects_it(
        self, dispatcher: CommandDispatcher, store: InMemoryTreeStore, selection: NodeSelection
    ) -> None:
        outcome = await dispatcher.execute(build_command("CreateNode", ["Intro"]), selection)

        assert outcome.success
        assert len(store) == 1
        node = store.get_node(selection.node_id or "")
        assert node is not None
        assert node.title == "Intro"
        assert node.parent_id is None
        assert outcome.node_id == node.id

    @pytest.mark.asyncio
    async def test_creates_child_of_current_node(
        self, dispatcher: CommandDispatcher, store: InMemoryTreeStore, selection: NodeSelection
    ) -> None:
        parent = store.create_node(None, "Book")
        selection.select(parent.id)

        outcome = await dispatcher.execute(build_command("CreateNode", ["Chapter 1"]), selection)

        assert outcome.success
        child = store.get_node(selection.node_id or "")
        assert child is not None
        assert child.parent_id == parent.id
        assert [node.title for node in store.children(parent.id)] == ["Chapter 1"]

    @pytest.mark.asyncio
    async def test_missing_title_is_rejected_without_mutation(
        self, dispatcher: CommandDispatcher, store: InMemoryTreeStore, selection: NodeSelection
    ) -> None:
        outcome = await dispatcher.execute(build_command("CreateNode", []), selection)

        assert not outcome.success
        assert outcome.error_code == ErrorCode.MISSING_PARAMETER
        assert outcome.message.startswith("Precondition not met")
        assert len(store) == 0
        assert selection.node_id is None

    @pytest.mark.asyncio
    async def test_store_failure_becomes_failed_outcome(self, selection: NodeSelection) -> None:
        dispatcher = CommandDispatcher(_BrokenStore())

        outcome = await dispatcher.execute(build_command("CreateNode", ["Intro"]), selection)

        assert not outcome.success
        assert outcome.error_code == ErrorCode.COLLABORATOR_ERROR
        assert "disk unavailable" in outcome.message
        assert selection.node_id is None


class TestUpdateNode:
    @pytest.mark.asyncio
    async def test_replaces_content_of_current_node(
        self, dispatcher: CommandDispatcher, store: InMemoryTreeStore, selection: NodeSelection
    ) -> None:
        node = store.create_node(None, "Intro")
        selection.select(node.id)

        outcome = await dispatcher.execute(build_command("UpdateNode", ["Hello world"]), selection)

        assert outcome.success
        assert store.get_node(node.id).content == "Hello world"  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_requires_selection(
        self, dispatcher: CommandDispatcher, store: InMemoryTreeStore, selection: NodeSelection
    ) -> None:
        store.create_node(None, "Intro")

        outcome = await dispatcher.execute(build_command("UpdateNode", ["Hello"]), selection)

        assert not outcome.success
        assert outcome.error_code == ErrorCode.PRECONDITION_NOT_MET
        assert all(node.content == "" for _, node in store.walk())

    @pytest.mark.asyncio
    async def test_missing_content_parameter(
        self, dispatcher: CommandDispatcher, store: InMemoryTreeStore, selection: NodeSelection
    ) -> None:
        node = store.create_node(None, "Intro")
        selection.select(node.id)

        outcome = await dispatcher.execute(build_command("UpdateNode"), selection)

        assert outcome.error_code == ErrorCode.MISSING_PARAMETER
        assert store.get_node(node.id).content == ""  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_empty_content_clears_node(
        self, dispatcher: CommandDispatcher, store: InMemoryTreeStore, selection: NodeSelection
    ) -> None:
        node = store.create_node(None, "Intro")
        store.update_node(node.id, "old text")
        selection.select(node.id)

        outcome = await dispatcher.execute(build_command("UpdateNode", [""]), selection)

        assert outcome.success
        assert store.get_node(node.id).content == ""  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_vanished_node_is_collaborator_error(
        self, dispatcher: CommandDispatcher, selection: NodeSelection
    ) -> None:
        selection.select("n-gone")

        outcome = await dispatcher.execute(build_command("UpdateNode", ["text"]), selection)

        assert not outcome.success
        assert outcome.error_code == ErrorCode.COLLABORATOR_ERROR


class TestDeleteNode:
    @pytest.mark.asyncio
    async def test_confirmed_delete_removes_subtree_and_clears_selection(
        self,
        dispatcher: CommandDispatcher,
        store: InMemoryTreeStore,
        selection: NodeSelection,
        confirmer: FakeConfirmer,
    ) -> None:
        parent = store.create_node(None, "Drafts")
        store.create_node(parent.id, "Old draft")
        selection.select(parent.id)

        outcome = await dispatcher.execute(build_command("DeleteNode"), selection)

        assert outcome.success
        assert len(store) == 0
        assert selection.node_id is None
        assert confirmer.prompts and "Drafts" in confirmer.prompts[0][1]

    @pytest.mark.asyncio
    async def test_declined_delete_is_cancelled(
        self, store: InMemoryTreeStore, selection: NodeSelection
    ) -> None:
        dispatcher = CommandDispatcher(store, confirmer=FakeConfirmer(answer=False))
        node = store.create_node(None, "Keep me")
        selection.select(node.id)

        outcome = await dispatcher.execute(build_command("DeleteNode"), selection)

        assert not outcome.success
        assert outcome.error_code == ErrorCode.OPERATION_CANCELLED
        assert node.id in store
        assert selection.node_id == node.id

    @pytest.mark.asyncio
    async def test_no_confirmer_means_no_delete(
        self, store: InMemoryTreeStore, selection: NodeSelection
    ) -> None:
        dispatcher = CommandDispatcher(store)
        node = store.create_node(None, "Keep me")
        selection.select(node.id)

        outcome = await dispatcher.execute(build_command("DeleteNode"), selection)

        assert outcome.error_code == ErrorCode.OPERATION_CANCELLED
        assert node.id in store

    @pytest.mark.asyncio
    async def test_requires_selection(
        self, dispatcher: CommandDispatcher, selection: NodeSelection, confirmer: FakeConfirmer
    ) -> None:
        outcome = await dispatcher.execute(build_command("DeleteNode"), selection)

        assert outcome.error_code == ErrorCode.PRECONDITION_NOT_MET
        assert confirmer.prompts == []

    @pytest.mark.asyncio
    async def test_blocking_confirmer_does_not_stall_event_loop(
        self, store: InMemoryTreeStore, selection: NodeSelection
    ) -> None:
        confirmer = _GatedConfirmer()
        dispatcher = CommandDispatcher(store, confirmer=confirmer)
        node = store.create_node(None, "Drafts")
        selection.select(node.id)
        ticks: list[int] = []

        async def other_work() -> None:
            for tick in range(3):
                await asyncio.sleep(0.01)
                ticks.append(tick)
            confirmer.gate.set()

        worker = asyncio.create_task(other_work())
        outcome = await dispatcher.execute(build_command("DeleteNode"), selection)
        await worker

        assert outcome.success
        assert ticks == [0, 1, 2]
        assert node.id not in store


class TestGenerateContent:
    @pytest.mark.asyncio
    async def test_text_generation_updates_current_node(
        self,
        store: InMemoryTreeStore,
        selection: NodeSelection,
    ) -> None:
        generator = FakeGenerator(text="A short poem")
        options = GenerationOptions(temperature=0.5, max_tokens=200)
        dispatcher = CommandDispatcher(store, generator=generator, generation_options=options)
        node = store.create_node(None, "Poem")
        selection.select(node.id)

        outcome = await dispatcher.execute(
            build_command("GenerateContent", ["Text", "Write a poem about owls"]), selection
        )

        assert outcome.success
        assert store.get_node(node.id).content == "A short poem"  # type: ignore[union-attr]
        assert generator.prompts == [("Write a poem about owls", options)]

    def test_default_generation_options(self, dispatcher: CommandDispatcher) -> None:
        assert dispatcher.generation_options == GenerationOptions(temperature=0.7, max_tokens=1000)

    @pytest.mark.asyncio
    async def test_image_generation_is_unsupported(
        self,
        dispatcher: CommandDispatcher,
        store: InMemoryTreeStore,
        selection: NodeSelection,
        generator: FakeGenerator,
    ) -> None:
        node = store.create_node(None, "Cover")
        selection.select(node.id)

        outcome = await dispatcher.execute(build_command("GenerateContent", ["Image", "A cat"]), selection)

        assert not outcome.success
        assert outcome.error_code == ErrorCode.UNSUPPORTED
        assert outcome.message == "Image generation is not yet supported"
        assert generator.prompts == []
        assert store.get_node(node.id).content == ""  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_unknown_type_is_rejected(
        self, dispatcher: CommandDispatcher, store: InMemoryTreeStore, selection: NodeSelection
    ) -> None:
        selection.select(store.create_node(None, "Clip").id)

        outcome = await dispatcher.execute(build_command("GenerateContent", ["Video", "A cat"]), selection)

        assert outcome.error_code == ErrorCode.UNSUPPORTED

    @pytest.mark.asyncio
    async def test_text_requires_selection(
        self, dispatcher: CommandDispatcher, selection: NodeSelection, generator: FakeGenerator
    ) -> None:
        outcome = await dispatcher.execute(build_command("GenerateContent", ["Text", "Hi"]), selection)

        assert outcome.error_code == ErrorCode.PRECONDITION_NOT_MET
        assert generator.prompts == []

    @pytest.mark.asyncio
    async def test_generator_failure_leaves_content_unchanged(
        self, store: InMemoryTreeStore, selection: NodeSelection
    ) -> None:
        dispatcher = CommandDispatcher(store, generator=FakeGenerator(error=TimeoutError("slow model")))
        node = store.create_node(None, "Poem")
        store.update_node(node.id, "draft")
        selection.select(node.id)

        outcome = await dispatcher.execute(build_command("GenerateContent", ["Text", "Hi"]), selection)

        assert outcome.error_code == ErrorCode.COLLABORATOR_ERROR
        assert "slow model" in outcome.message
        assert store.get_node(node.id).content == "draft"  # type: ignore[union-attr]


class TestResearch:
    @pytest.mark.asyncio
    async def test_research_returns_follow_up(
        self, dispatcher: CommandDispatcher, selection: NodeSelection, researcher: FakeResearcher
    ) -> None:
        outcome = await dispatcher.execute(build_command("Research", ["owls"]), selection)

        assert outcome.success
        assert researcher.queries == ["owls"]
        assert outcome.follow_up is not None
        assert outcome.follow_up.startswith('Research results for "owls":')
        assert "- Owls: Nocturnal birds (https://example.org/owls)" in outcome.follow_up

    @pytest.mark.asyncio
    async def test_empty_results_are_reported(self, selection: NodeSelection, store: InMemoryTreeStore) -> None:
        dispatcher = CommandDispatcher(store, researcher=FakeResearcher([]))

        outcome = await dispatcher.execute(build_command("Research", ["zzz"]), selection)

        assert outcome.success
        assert outcome.follow_up is not None and "(no results found)" in outcome.follow_up

    @pytest.mark.asyncio
    async def test_follow_up_is_truncated(self, selection: NodeSelection, store: InMemoryTreeStore) -> None:
        results = [ResearchResult(title=f"Result {index}", snippet="x" * 200) for index in range(10)]
        dispatcher = CommandDispatcher(store, researcher=FakeResearcher(results), max_follow_up_length=300)

        outcome = await dispatcher.execute(build_command("Research", ["many"]), selection)

        assert outcome.follow_up is not None
        assert len(outcome.follow_up) == 300

    @pytest.mark.asyncio
    async def test_research_failure(self, selection: NodeSelection, store: InMemoryTreeStore) -> None:
        dispatcher = CommandDispatcher(store, researcher=FakeResearcher(error=RuntimeError("offline")))

        outcome = await dispatcher.execute(build_command("Research", ["owls"]), selection)

        assert not outcome.success
        assert outcome.error_code == ErrorCode.COLLABORATOR_ERROR
        assert outcome.follow_up is None

    @pytest.mark.asyncio
    async def test_missing_query(self, dispatcher: CommandDispatcher, selection: NodeSelection) -> None:
        outcome = await dispatcher.execute(build_command("Research", []), selection)
        assert outcome.error_code == ErrorCode.MISSING_PARAMETER

    @pytest.mark.asyncio
    async def test_no_researcher_configured(self, store: InMemoryTreeStore, selection: NodeSelection) -> None:
        outcome = await CommandDispatcher(store).execute(build_command("Research", ["owls"]), selection)
        assert outcome.error_code == ErrorCode.COLLABORATOR_ERROR


@pytest.mark.asyncio
async def test_non_command_entry_becomes_failed_outcome(
    dispatcher: CommandDispatcher, store: InMemoryTreeStore, selection: NodeSelection
) -> None:
    outcome = await dispatcher.execute(cast(Any, "garbage"), selection)

    assert not outcome.success
    assert outcome.error_code == ErrorCode.COLLABORATOR_ERROR
    assert len(store) == 0
