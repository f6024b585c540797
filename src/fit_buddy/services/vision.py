"""Meal image analysis using a vision-capable LLM."""

import base64
import json
import logging
from dataclasses import dataclass
from typing import Protocol

from pydantic import ValidationError

from fit_buddy.domain.errors import AnalysisError
from fit_buddy.domain.vision import MealEstimate

MEAL_ANALYSIS_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "mealName": {
            "type": "string",
            "description": "A short, descriptive name for the meal in the image.",
        },
        "calories": {
            "type": "number",
            "description": "Estimated number of calories in the meal.",
        },
        "protein": {
            "type": "number",
            "description": "Estimated grams of protein in the meal.",
        },
        "carbs": {
            "type": "number",
            "description": "Estimated grams of carbohydrates in the meal.",
        },
        "fat": {
            "type": "number",
            "description": "Estimated grams of fat in the meal.",
        },
    },
    "required": ["mealName", "calories", "protein", "carbs", "fat"],
    "additionalProperties": False,
}

_PROMPT = (
    "Analyze the meal in this image. Provide the meal name and estimate the "
    "nutritional content (calories, protein, carbs, fat)."
)

_logger = logging.getLogger(__name__)


class VisionClient(Protocol):
    """Interface for LLM vision extraction."""

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
        """Return structured extraction data."""


@dataclass
class MealVisionService:
    """Service that prepares meal analysis prompts and validates results."""

    client: VisionClient
    model: str
    reasoning_effort: str | None
    store: bool

    async def analyze(
        self, image_bytes: bytes, media_type: str | None = None
    ) -> MealEstimate:
        """Estimate the meal name and nutrients shown in an image."""
        if not image_bytes:
            raise AnalysisError("No image provided.")
        data_url = _to_data_url(image_bytes, media_type)
        try:
            raw = await self.client.extract(
                model=self.model,
                reasoning_effort=self.reasoning_effort,
                store=self.store,
                image_data_url=data_url,
                schema=MEAL_ANALYSIS_SCHEMA,
                prompt=_PROMPT,
            )
            return MealEstimate.model_validate(raw)
        except AnalysisError:
            raise
        except (ValidationError, json.JSONDecodeError) as exc:
            _logger.warning("Meal analysis returned malformed data: %s", exc)
            raise AnalysisError() from exc
        except Exception as exc:
            _logger.exception("Error analyzing meal image")
            raise AnalysisError() from exc


def _to_data_url(image_bytes: bytes, media_type: str | None = None) -> str:
    """Convert bytes to a base64 data URL for image input."""
    mime_type = media_type if _is_image_type(media_type) else None
    encoded = base64.b64encode(image_bytes).decode("utf-8")
    return f"data:{mime_type or _detect_mime_type(image_bytes)};base64,{encoded}"


def _is_image_type(media_type: str | None) -> bool:
    return bool(media_type) and media_type.strip().lower().startswith("image/")


def _detect_mime_type(image_bytes: bytes) -> str:
    """Infer a basic image MIME type from file signatures."""
    if image_bytes.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if image_bytes.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"
