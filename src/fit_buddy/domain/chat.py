"""Domain models for the advisory chat."""

from enum import StrEnum
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, HttpUrl


class Sender(StrEnum):
    """Author of a chat message."""

    USER = "user"
    AI = "ai"


class WebSource(BaseModel):
    """A web page the assistant cited."""

    model_config = ConfigDict(frozen=True)

    uri: HttpUrl
    title: str | None = None


class Citation(BaseModel):
    """Grounding citation; only web sources are currently produced."""

    model_config = ConfigDict(frozen=True)

    web: WebSource | None = None

    @property
    def label(self) -> str | None:
        """Return the title, or the host name when no title is available."""
        if self.web is None:
            return None
        if self.web.title and self.web.title.strip():
            return self.web.title.strip()
        return urlparse(str(self.web.uri)).hostname or str(self.web.uri)


class Advice(BaseModel):
    """Text answer from the assistant plus its sources."""

    text: str
    citations: list[Citation] = Field(default_factory=list)


class ChatMessage(BaseModel):
    """Single entry in the in-memory chat transcript."""

    model_config = ConfigDict(frozen=True)

    id: str
    sender: Sender
    text: str
    citations: list[Citation] = Field(default_factory=list)
