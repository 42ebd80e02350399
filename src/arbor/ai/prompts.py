"""Prompt templates for the document assistant."""

from __future__ import annotations

import json
from typing import Any, Mapping

from .commands import CommandKind


def system_prompt() -> str:
    """Return the system prompt describing the response contract."""

    kinds = ", ".join(kind.value for kind in CommandKind)
    return f"""You are the writing assistant embedded in a document editor.
Documents are trees of named nodes. Each node has a title and text content.

## Response format

Always answer with a single JSON object and nothing else:

{{"reply": "<prose shown to the user>", "commands": [{{"kind": "<kind>", "parameters": ["..."]}}]}}

`commands` may be empty. Allowed kinds: {kinds}.

## Commands

- **CreateNode** ["<title>"] - create a child of the current node (or a root node when none is selected). The new node becomes current.
- **UpdateNode** ["<content>"] - replace the content of the current node.
- **DeleteNode** [] - delete the current node after the user confirms.
- **GenerateContent** ["Text" | "Image", "<prompt>"] - generate content for the current node.
- **Research** ["<query>"] - look something up; results come back as a follow-up message.

## Rules

- Commands run in order, so a CreateNode followed by UpdateNode edits the new node.
- UpdateNode, DeleteNode and GenerateContent of type Text need a selected node.
- All parameters are strings.
"""


def user_prompt(utterance: str, context_payload: Mapping[str, Any]) -> str:
    """Combine the utterance with the serialized context block."""

    context_json = json.dumps(context_payload, ensure_ascii=False, indent=2)
    return f"Context:\n```json\n{context_json}\n```\n\nRequest:\n{utterance}"


def generation_system_prompt() -> str:
    return (
        "You write content for a node of a structured document. "
        "Return only the content itself, without preamble or commentary."
    )


__all__ = ["system_prompt", "user_prompt", "generation_system_prompt"]
