"""OpenAI Responses API client for web-grounded nutrition advice."""

from dataclasses import dataclass

from openai import AsyncOpenAI

from fit_buddy.domain.errors import ConfigurationError
from fit_buddy.services.advice import AdviceClient

_INSTRUCTIONS = (
    "You are a friendly nutrition assistant. Give practical, concise meal "
    "advice that fits the user's remaining targets."
)


@dataclass
class OpenAIAdviceClient(AdviceClient):
    """Advice client backed by OpenAI Responses API with web search."""

    client: AsyncOpenAI

    @classmethod
    def create(cls, api_key: str | None) -> "OpenAIAdviceClient":
        """Create an OpenAI advice client."""
        if not api_key:
            raise ConfigurationError("OPENAI_API_KEY is not set.")
        return cls(client=AsyncOpenAI(api_key=api_key))

    async def generate(self, *, model: str, prompt: str) -> dict[str, object]:
        """Call the Responses API with the web search tool enabled."""
        response = await self.client.responses.create(
            model=model,
            instructions=_INSTRUCTIONS,
            input=prompt,
            tools=[{"type": "web_search"}],
        )
        return {
            "text": response.output_text or "",
            "citations": _extract_citations(response),
        }

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.client.close()


def _extract_citations(response: object) -> list[dict[str, object]]:
    """Collect url_citation annotations as ``{"web": {uri, title}}`` chunks."""
    citations: list[dict[str, object]] = []
    seen: set[str] = set()
    for item in getattr(response, "output", None) or []:
        if getattr(item, "type", None) != "message":
            continue
        for content in getattr(item, "content", None) or []:
            for annotation in getattr(content, "annotations", None) or []:
                if getattr(annotation, "type", None) != "url_citation":
                    continue
                url = getattr(annotation, "url", None)
                if not url or url in seen:
                    continue
                seen.add(url)
                citations.append(
                    {"web": {"uri": url, "title": getattr(annotation, "title", None)}}
                )
    return citations
