"""Turn orchestration: the state machine, command dispatch and collaborator contracts."""

from .dispatcher import CommandDispatcher
from .orchestrator import ConversationOrchestrator
from .protocols import (
    Confirmer,
    CurrentNodeRef,
    GenerationOptions,
    NodeSelection,
    ResearchResult,
    Researcher,
    TextGenerator,
    TreeStore,
)

__all__ = [
    "CommandDispatcher",
    "Confirmer",
    "ConversationOrchestrator",
    "CurrentNodeRef",
    "GenerationOptions",
    "NodeSelection",
    "ResearchResult",
    "Researcher",
    "TextGenerator",
    "TreeStore",
]
