"""Domain models for the realtime voice session."""

from dataclasses import dataclass
from enum import StrEnum


class VoiceSessionState(StrEnum):
    """Lifecycle of a live voice session."""

    IDLE = "idle"
    CONNECTING = "connecting"
    ACTIVE = "active"
    CLOSED = "closed"
    FAILED = "failed"


class TranscriptKind(StrEnum):
    """Which side of the conversation a transcript fragment belongs to."""

    INPUT = "input"
    OUTPUT = "output"


@dataclass(frozen=True)
class AudioFrame:
    """Outbound microphone frame: base64 PCM16 mono."""

    data: str
    sample_rate: int

    @property
    def mime_type(self) -> str:
        return f"audio/pcm;rate={self.sample_rate}"

    def to_wire(self) -> dict[str, str]:
        return {"data": self.data, "mimeType": self.mime_type}


@dataclass(frozen=True)
class TranscriptFragment:
    kind: TranscriptKind
    text: str


@dataclass(frozen=True)
class TurnComplete:
    pass


@dataclass(frozen=True)
class AudioFragment:
    """Inbound assistant speech: base64 PCM16 mono."""

    data: str


@dataclass(frozen=True)
class Interrupted:
    pass


@dataclass(frozen=True)
class SessionClosed:
    reason: str | None = None


@dataclass(frozen=True)
class SessionError:
    message: str


VoiceEvent = (
    TranscriptFragment
    | TurnComplete
    | AudioFragment
    | Interrupted
    | SessionClosed
    | SessionError
)


@dataclass(frozen=True)
class VoiceSnapshot:
    """Point-in-time view of a voice session for display."""

    state: VoiceSessionState
    status: str
    user_said: str
    ai_said: str
    dropped_frames: int = 0
