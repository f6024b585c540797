"""OpenAI Realtime API transport for the voice session."""

import base64
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

from openai import AsyncOpenAI

from fit_buddy.domain.errors import ConfigurationError, TransportError
from fit_buddy.domain.voice import (
    AudioFragment,
    AudioFrame,
    Interrupted,
    SessionClosed,
    SessionError,
    TranscriptFragment,
    TranscriptKind,
    TurnComplete,
    VoiceEvent,
)
from fit_buddy.services.audio import resample_pcm16
from fit_buddy.services.voice import TransportFactory, VoiceTransport

REALTIME_SAMPLE_RATE = 24000

_OUTPUT_TRANSCRIPT_EVENTS = {
    "response.output_audio_transcript.delta",
    "response.audio_transcript.delta",
}
_OUTPUT_AUDIO_EVENTS = {"response.output_audio.delta", "response.audio.delta"}

_logger = logging.getLogger(__name__)


def session_config(voice: str, instructions: str) -> dict[str, object]:
    """Build the realtime session configuration."""
    audio_format = {"type": "audio/pcm", "rate": REALTIME_SAMPLE_RATE}
    return {
        "type": "realtime",
        "output_modalities": ["audio"],
        "instructions": instructions,
        "audio": {
            "input": {
                "format": audio_format,
                "transcription": {"model": "whisper-1"},
                "turn_detection": {"type": "server_vad"},
            },
            "output": {"format": audio_format, "voice": voice},
        },
    }


def map_server_event(event: object) -> VoiceEvent | None:
    """Translate a realtime server event into a session event."""
    event_type = getattr(event, "type", None)
    if event_type == "conversation.item.input_audio_transcription.completed":
        return TranscriptFragment(
            kind=TranscriptKind.INPUT, text=getattr(event, "transcript", "") or ""
        )
    if event_type in _OUTPUT_TRANSCRIPT_EVENTS:
        return TranscriptFragment(
            kind=TranscriptKind.OUTPUT, text=getattr(event, "delta", "") or ""
        )
    if event_type in _OUTPUT_AUDIO_EVENTS:
        delta = getattr(event, "delta", None)
        return AudioFragment(data=delta) if delta else None
    if event_type == "input_audio_buffer.speech_started":
        return Interrupted()
    if event_type == "response.done":
        return TurnComplete()
    if event_type == "error":
        error = getattr(event, "error", None)
        message = getattr(error, "message", None) or TransportError.default_message
        return SessionError(message=message)
    return None


@dataclass
class OpenAIRealtimeTransport(VoiceTransport):
    """Voice transport over an OpenAI realtime connection."""

    connection: object
    client: AsyncOpenAI | None = None

    @classmethod
    async def connect(
        cls, *, client: AsyncOpenAI, model: str, voice: str, instructions: str
    ) -> "OpenAIRealtimeTransport":
        """Open a realtime connection and configure the session."""
        connection = None
        try:
            connection = await client.realtime.connect(model=model).enter()
            await connection.session.update(session=session_config(voice, instructions))
        except Exception as exc:
            _logger.exception("Failed to open realtime connection")
            await _release(connection, client)
            raise TransportError() from exc
        except BaseException:
            # Cancelled by the connect timeout or a stop while connecting.
            await _release(connection, client)
            raise
        return cls(connection=connection, client=client)

    @classmethod
    def factory(
        cls, *, api_key: str | None, model: str, voice: str, instructions: str
    ) -> TransportFactory:
        """Return a connect coroutine; a missing key fails at call time."""

        async def connect() -> VoiceTransport:
            if not api_key:
                raise ConfigurationError("API key not configured.")
            return await cls.connect(
                client=AsyncOpenAI(api_key=api_key),
                model=model,
                voice=voice,
                instructions=instructions,
            )

        return connect

    async def send_audio(self, frame: AudioFrame) -> None:
        """Append a microphone frame to the input audio buffer."""
        pcm = base64.b64decode(frame.data)
        if frame.sample_rate != REALTIME_SAMPLE_RATE:
            pcm = resample_pcm16(pcm, frame.sample_rate, REALTIME_SAMPLE_RATE)
        try:
            await self.connection.input_audio_buffer.append(
                audio=base64.b64encode(pcm).decode("ascii")
            )
        except Exception as exc:
            raise TransportError() from exc

    async def events(self) -> AsyncIterator[VoiceEvent]:
        """Yield mapped server events, then a close marker."""
        try:
            async for event in self.connection:
                mapped = map_server_event(event)
                if mapped is not None:
                    yield mapped
        except Exception as exc:
            raise TransportError() from exc
        yield SessionClosed(reason="server closed the connection")

    async def close(self) -> None:
        """Close the realtime connection."""
        try:
            await self.connection.close()
        finally:
            if self.client is not None:
                await self.client.close()


async def _release(connection: object | None, client: AsyncOpenAI) -> None:
    try:
        if connection is not None:
            await connection.close()
    except Exception:
        _logger.exception("Failed to close realtime connection")
    finally:
        await client.close()
