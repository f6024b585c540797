"""Tests for the OpenAI realtime voice transport."""

import asyncio
import base64
from types import SimpleNamespace

import numpy as np
import pytest

from fit_buddy.adapters.openai_realtime_transport import (
    OpenAIRealtimeTransport,
    map_server_event,
    session_config,
)
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
)


class _FakeInputBuffer:
    def __init__(self) -> None:
        self.appended: list[str] = []

    async def append(self, *, audio: str) -> None:
        self.appended.append(audio)


class _FakeSession:
    def __init__(self) -> None:
        self.updates: list[dict[str, object]] = []

    async def update(self, *, session: dict[str, object]) -> None:
        self.updates.append(session)


class _FakeConnection:
    def __init__(self, events: list[object] | None = None) -> None:
        self.input_audio_buffer = _FakeInputBuffer()
        self.session = _FakeSession()
        self.server_events = events or []
        self.closed = False

    def __aiter__(self):  # type: ignore[no-untyped-def]
        return self._iterate()

    async def _iterate(self):  # type: ignore[no-untyped-def]
        for event in self.server_events:
            if isinstance(event, Exception):
                raise event
            yield event

    async def close(self) -> None:
        self.closed = True


class _FakeConnectionManager:
    def __init__(self, connection: _FakeConnection) -> None:
        self.connection = connection

    async def enter(self) -> _FakeConnection:
        return self.connection


class _FakeRealtime:
    def __init__(self, connection: _FakeConnection) -> None:
        self.connection = connection
        self.models: list[str] = []

    def connect(self, *, model: str) -> _FakeConnectionManager:
        self.models.append(model)
        return _FakeConnectionManager(self.connection)


class _FakeOpenAI:
    def __init__(self, connection: _FakeConnection) -> None:
        self.realtime = _FakeRealtime(connection)
        self.closed = False

    async def close(self) -> None:
        self.closed = True


def _event(event_type: str, **fields: object) -> SimpleNamespace:
    return SimpleNamespace(type=event_type, **fields)


@pytest.mark.parametrize(
    ("event", "expected"),
    [
        (
            _event(
                "conversation.item.input_audio_transcription.completed",
                transcript="Hello",
            ),
            TranscriptFragment(TranscriptKind.INPUT, "Hello"),
        ),
        (
            _event("response.output_audio_transcript.delta", delta="Hi "),
            TranscriptFragment(TranscriptKind.OUTPUT, "Hi "),
        ),
        (_event("response.output_audio.delta", delta="AAAA"), AudioFragment("AAAA")),
        (_event("input_audio_buffer.speech_started"), Interrupted()),
        (_event("response.done"), TurnComplete()),
        (
            _event("error", error=SimpleNamespace(message="rate limited")),
            SessionError("rate limited"),
        ),
        (_event("session.updated"), None),
    ],
)
def test_map_server_event(event: object, expected: object) -> None:
    assert map_server_event(event) == expected


def test_session_config_requests_transcribed_audio() -> None:
    config = session_config("marin", "Be brief.")

    assert config["output_modalities"] == ["audio"]
    assert config["audio"]["input"]["format"] == {"type": "audio/pcm", "rate": 24000}
    assert config["audio"]["input"]["transcription"] == {"model": "whisper-1"}
    assert config["audio"]["output"]["voice"] == "marin"


def test_send_audio_resamples_to_realtime_rate() -> None:
    connection = _FakeConnection()
    transport = OpenAIRealtimeTransport(connection=connection)
    pcm = np.zeros(160, dtype="<i2").tobytes()
    frame = AudioFrame(data=base64.b64encode(pcm).decode("ascii"), sample_rate=16000)

    asyncio.run(transport.send_audio(frame))

    sent = base64.b64decode(connection.input_audio_buffer.appended[0])
    assert len(sent) == 240 * 2


def test_events_end_with_session_closed() -> None:
    connection = _FakeConnection(
        [_event("session.created"), _event("response.done")]
    )
    transport = OpenAIRealtimeTransport(connection=connection)

    async def collect() -> list[object]:
        return [event async for event in transport.events()]

    events = asyncio.run(collect())

    assert events[0] == TurnComplete()
    assert isinstance(events[-1], SessionClosed)


def test_events_wrap_connection_errors() -> None:
    connection = _FakeConnection([RuntimeError("socket closed")])
    transport = OpenAIRealtimeTransport(connection=connection)

    async def collect() -> list[object]:
        return [event async for event in transport.events()]

    with pytest.raises(TransportError):
        asyncio.run(collect())


def test_connect_configures_session_and_close_releases_client() -> None:
    connection = _FakeConnection()
    client = _FakeOpenAI(connection)

    async def scenario() -> OpenAIRealtimeTransport:
        transport = await OpenAIRealtimeTransport.connect(
            client=client, model="gpt-realtime", voice="marin", instructions="Hi"
        )
        await transport.close()
        return transport

    transport = asyncio.run(scenario())

    assert transport.connection is connection
    assert client.realtime.models == ["gpt-realtime"]
    assert connection.session.updates[0]["instructions"] == "Hi"
    assert connection.closed
    assert client.closed


def test_factory_without_api_key_fails_on_connect() -> None:
    connect = OpenAIRealtimeTransport.factory(
        api_key=None, model="gpt-realtime", voice="marin", instructions="Hi"
    )

    with pytest.raises(ConfigurationError):
        asyncio.run(connect())


class _StalledSession:
    async def update(self, *, session: dict[str, object]) -> None:
        await asyncio.sleep(10)


class _RejectingSession:
    async def update(self, *, session: dict[str, object]) -> None:
        raise RuntimeError("invalid session config")


def test_connect_timeout_releases_connection_and_client() -> None:
    connection = _FakeConnection()
    connection.session = _StalledSession()
    client = _FakeOpenAI(connection)

    async def scenario() -> None:
        await asyncio.wait_for(
            OpenAIRealtimeTransport.connect(
                client=client, model="gpt-realtime", voice="marin", instructions="Hi"
            ),
            0.05,
        )

    with pytest.raises(TimeoutError):
        asyncio.run(scenario())

    assert connection.closed
    assert client.closed


def test_connect_failure_releases_connection_and_client() -> None:
    connection = _FakeConnection()
    connection.session = _RejectingSession()
    client = _FakeOpenAI(connection)

    with pytest.raises(TransportError):
        asyncio.run(
            OpenAIRealtimeTransport.connect(
                client=client, model="gpt-realtime", voice="marin", instructions="Hi"
            )
        )

    assert connection.closed
    assert client.closed
