"""Research collaborator backed by a JSON instant-answer endpoint."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

import httpx

from ..ai.orchestration.protocols import ResearchResult

LOGGER = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api.duckduckgo.com/"
_USER_AGENT = "arbor-editor/0.1"


class WebResearchClient:
    """Queries a DuckDuckGo-compatible instant answer API.

    The endpoint receives ``q``/``format=json`` parameters and is expected to
    return ``Heading``/``AbstractText``/``AbstractURL`` plus a
    ``RelatedTopics`` list; topic groups are flattened.
    """

    def __init__(
        self,
        *,
        endpoint: str = DEFAULT_ENDPOINT,
        max_results: int = 5,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._max_results = max(1, int(max_results))
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": _USER_AGENT},
            follow_redirects=True,
        )

    async def research(self, query: str) -> list[ResearchResult]:
        params = {"q": query, "format": "json", "no_html": "1", "skip_disambig": "1"}
        LOGGER.debug("Research query %r via %s", query, self._endpoint)
        response = await self._client.get(self._endpoint, params=params)
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, Mapping):
            raise ValueError("Research endpoint returned a non-object payload")
        results = list(self._parse(payload))[: self._max_results]
        LOGGER.info("Research for %r returned %s result(s)", query, len(results))
        return results

    def _parse(self, payload: Mapping[str, Any]) -> Iterable[ResearchResult]:
        abstract = str(payload.get("AbstractText") or "").strip()
        if abstract:
            yield ResearchResult(
                title=str(payload.get("Heading") or "Summary").strip(),
                snippet=abstract,
                url=payload.get("AbstractURL") or None,
            )
        answer = str(payload.get("Answer") or "").strip()
        if answer:
            yield ResearchResult(title="Answer", snippet=answer)
        yield from self._parse_topics(payload.get("RelatedTopics") or [])

    def _parse_topics(self, topics: Iterable[Any]) -> Iterable[ResearchResult]:
        for topic in topics:
            if not isinstance(topic, Mapping):
                continue
            nested = topic.get("Topics")
            if isinstance(nested, list):
                yield from self._parse_topics(nested)
                continue
            text = str(topic.get("Text") or "").strip()
            if not text:
                continue
            title, _, snippet = text.partition(" - ")
            yield ResearchResult(
                title=title.strip(),
                snippet=snippet.strip(),
                url=topic.get("FirstURL") or None,
            )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["WebResearchClient", "DEFAULT_ENDPOINT"]
