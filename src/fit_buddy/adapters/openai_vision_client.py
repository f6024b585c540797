"""OpenAI Responses API client for meal image analysis."""

import json
from dataclasses import dataclass

from openai import AsyncOpenAI

from fit_buddy.domain.errors import AnalysisError, ConfigurationError
from fit_buddy.services.vision import VisionClient

_SCHEMA_NAME = "meal_analysis"


def _photo_input(image_data_url: str, prompt: str) -> list[dict[str, object]]:
    content = [
        {"type": "input_text", "text": prompt},
        {"type": "input_image", "image_url": image_data_url, "detail": "auto"},
    ]
    return [{"role": "user", "content": content}]


@dataclass
class OpenAIVisionClient(VisionClient):
    """Meal photo analysis through Responses API structured outputs."""

    client: AsyncOpenAI

    @classmethod
    def create(cls, api_key: str | None) -> "OpenAIVisionClient":
        if not api_key:
            raise ConfigurationError("OPENAI_API_KEY is not set.")
        return cls(client=AsyncOpenAI(api_key=api_key))

    async def extract(  # noqa: PLR0913
        self,
        *,
        model: str,
        reasoning_effort: str | None,
        store: bool,
        image_data_url: str,
        schema: dict[str, object],
        prompt: str,
    ) -> dict[str, object]:
        """Return the JSON object the model produced for the photo."""
        options: dict[str, object] = {"store": store}
        if reasoning_effort:
            options["reasoning"] = {"effort": reasoning_effort}
        response = await self.client.responses.create(
            model=model,
            input=_photo_input(image_data_url, prompt),
            text={
                "format": {
                    "type": "json_schema",
                    "name": _SCHEMA_NAME,
                    "strict": True,
                    "schema": schema,
                }
            },
            **options,
        )
        text = (response.output_text or "").strip()
        if not text:
            raise AnalysisError("The analyzer returned an empty response.")
        return json.loads(text)

    async def close(self) -> None:
        await self.client.close()
