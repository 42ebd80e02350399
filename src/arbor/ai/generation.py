"""Text generation collaborator backed by the AI client."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from . import prompts
from .orchestration.protocols import GenerationOptions

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from .client import AIClient

LOGGER = logging.getLogger(__name__)


class OpenAITextGenerator:
    """Generates node content with a single chat completion."""

    def __init__(self, client: "AIClient") -> None:
        self._client = client

    async def generate_text(self, prompt: str, options: GenerationOptions) -> str:
        messages = [
            {"role": "system", "content": prompts.generation_system_prompt()},
            {"role": "user", "content": prompt},
        ]
        text = await self._client.complete(
            messages,
            temperature=options.temperature,
            max_tokens=options.max_tokens,
        )
        LOGGER.debug("Generated %s chars for prompt of %s chars", len(text), len(prompt))
        return text.strip()


__all__ = ["OpenAITextGenerator"]
