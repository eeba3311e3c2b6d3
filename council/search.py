"""Search augmentation service (Perplexity) for providers without native grounding."""

import logging
import os
from dataclasses import dataclass, field

import httpx

from council.models import Citation

logger = logging.getLogger(__name__)

PERPLEXITY_URL = "https://api.perplexity.ai/chat/completions"
_MODEL = "sonar"
_SYSTEM = "You are a search engine. Return a concise summary of facts with citations."


@dataclass
class SearchResult:
    text: str
    citations: list[Citation] = field(default_factory=list)


class SearchAugmentationService:
    """Thin call-out to Perplexity. Never raises: degrades to a placeholder result."""

    def __init__(
        self,
        api_key_env: str = "PERPLEXITY_API_KEY",
        http_client: httpx.AsyncClient | None = None,
        timeout_sec: float = 30.0,
    ) -> None:
        self._api_key = os.environ.get(api_key_env, "").strip()
        self._http_client = http_client
        self._timeout_sec = timeout_sec

    async def search(self, query: str) -> SearchResult:
        if not self._api_key:
            return SearchResult(text="Error: Perplexity API Key not configured.")

        client = self._http_client or httpx.AsyncClient(timeout=self._timeout_sec)
        try:
            response = await client.post(
                PERPLEXITY_URL,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={
                    "model": _MODEL,
                    "messages": [
                        {"role": "system", "content": _SYSTEM},
                        {"role": "user", "content": query},
                    ],
                },
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Perplexity search failed for %r: %s", query, exc)
            return SearchResult(text="Failed to perform search.")
        finally:
            if self._http_client is None:
                await client.aclose()

        if not isinstance(data, dict):
            logger.error("Perplexity search for %r returned a %s payload", query, type(data).__name__)
            return SearchResult(text="Failed to perform search.")

        choices = data.get("choices") or [{}]
        first = choices[0] if isinstance(choices, list) and isinstance(choices[0], dict) else {}
        message = first.get("message")
        content = (message.get("content") if isinstance(message, dict) else None) or "No results found."
        raw_citations = data.get("citations")
        citations = [
            Citation(title="Source", uri=str(uri))
            for uri in (raw_citations if isinstance(raw_citations, list) else [])
        ]
        logger.info("Perplexity search %r: %d citations", query, len(citations))
        return SearchResult(text=str(content), citations=citations)
