"""Request payloads accepted by the HTTP API."""

from datetime import date

from pydantic import BaseModel, ConfigDict, Field


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True, allow_inf_nan=False)


class WeightRequest(_Request):
    weight: float = Field(gt=0)


class SelectedDateRequest(_Request):
    day: date = Field(alias="date")


class AnalyzeMealRequest(_Request):
    """Base64 image as produced by a browser FileReader, minus the prefix."""

    image: str = Field(min_length=1)
    mime_type: str | None = Field(default=None, alias="mimeType")


class ChatRequest(_Request):
    message: str
    day: date | None = Field(default=None, alias="date")
