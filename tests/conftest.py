"""Shared test fixtures."""

import asyncio
import base64
from collections.abc import Callable, Hashable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

import numpy as np
import pytest

from fit_buddy.config import Settings
from fit_buddy.containers import AppContainer
from fit_buddy.domain.errors import MediaAccessError, PersistenceError
from fit_buddy.domain.voice import AudioFrame, VoiceEvent
from fit_buddy.services.advice import AdviceClient, AdviceService, ChatService
from fit_buddy.services.audio import AudioBuffer
from fit_buddy.services.ledger import LedgerService, LedgerStorage
from fit_buddy.services.vision import MealVisionService, VisionClient
from fit_buddy.services.voice import VoiceSession, VoiceTransport

FIXED_NOW = datetime(2024, 3, 1, 12, 30, tzinfo=UTC)


def fixed_clock() -> datetime:
    return FIXED_NOW


async def settle(rounds: int = 20) -> None:
    """Let pending callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def pcm_fragment(seconds: float, sample_rate: int = 24000) -> str:
    """Base64 PCM16 silence of the given length."""
    samples = np.zeros(round(seconds * sample_rate), dtype="<i2")
    return base64.b64encode(samples.tobytes()).decode("ascii")


@dataclass
class InMemoryLedgerStorage(LedgerStorage):
    """In-memory key/value storage for tests."""

    items: dict[str, str] = field(default_factory=dict)
    writes: list[str] = field(default_factory=list)
    fail_reads: bool = False
    fail_writes: bool = False

    def get_item(self, key: str) -> str | None:
        if self.fail_reads:
            raise PersistenceError("read failed")
        return self.items.get(key)

    def set_item(self, key: str, value: str) -> None:
        if self.fail_writes:
            raise PersistenceError("write failed")
        self.writes.append(key)
        self.items[key] = value


@dataclass
class FakeVisionClient(VisionClient):
    """Fake vision client returning a fixed payload."""

    payload: dict[str, object] = field(
        default_factory=lambda: {
            "mealName": "Chicken salad",
            "calories": 512.6,
            "protein": 41.2,
            "carbs": 18.5,
            "fat": 27.4,
        }
    )
    error: Exception | None = None
    calls: list[dict[str, object]] = field(default_factory=list)

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
        self.calls.append({"model": model, "image_data_url": image_data_url})
        if self.error is not None:
            raise self.error
        return self.payload


@dataclass
class FakeAdviceClient(AdviceClient):
    """Fake advice client returning a fixed answer."""

    payload: dict[str, object] = field(
        default_factory=lambda: {
            "text": "Try grilled fish with vegetables.",
            "citations": [
                {"web": {"uri": "https://www.nutrition.gov/topics", "title": None}},
                {"web": {"uri": "https://example.com/fish", "title": "Fish guide"}},
            ],
        }
    )
    error: Exception | None = None
    prompts: list[str] = field(default_factory=list)

    async def generate(self, *, model: str, prompt: str) -> dict[str, object]:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.payload


@dataclass
class FakeAudioOutput:
    """Audio output with a manually advanced clock."""

    now: float = 0.0
    plays: list[tuple[int, float, AudioBuffer]] = field(default_factory=list)
    stopped: list[Hashable] = field(default_factory=list)
    callbacks: dict[int, Callable[[Hashable], None]] = field(default_factory=dict)
    closed: bool = False

    def current_time(self) -> float:
        return self.now

    def play(
        self,
        buffer: AudioBuffer,
        start_at: float,
        on_finished: Callable[[Hashable], None],
    ) -> int:
        handle = len(self.plays) + 1
        self.plays.append((handle, start_at, buffer))
        self.callbacks[handle] = on_finished
        return handle

    def stop(self, handle: Hashable) -> None:
        self.stopped.append(handle)

    def close(self) -> None:
        self.closed = True

    def finish(self, handle: int) -> None:
        self.callbacks[handle](handle)


@dataclass
class FakeMicrophone:
    """Microphone whose blocks are pushed by the test."""

    on_block: Callable[[np.ndarray], None] | None = None
    stopped: bool = False

    def start(self, on_block: Callable[[np.ndarray], None]) -> None:
        self.on_block = on_block

    def stop(self) -> None:
        self.stopped = True

    def emit(self, samples: list[float]) -> None:
        assert self.on_block is not None
        self.on_block(np.array(samples, dtype=np.float32))


@dataclass
class FakeAudioBackend:
    """Hands out one fake microphone and output."""

    microphone: FakeMicrophone = field(default_factory=FakeMicrophone)
    output: FakeAudioOutput = field(default_factory=FakeAudioOutput)
    fail_microphone: bool = False
    opened: list[tuple[str, int]] = field(default_factory=list)

    def open_microphone(self, sample_rate: int, frame_size: int) -> FakeMicrophone:
        if self.fail_microphone:
            raise MediaAccessError()
        self.opened.append(("microphone", sample_rate))
        return self.microphone

    def open_output(self, sample_rate: int) -> FakeAudioOutput:
        self.opened.append(("output", sample_rate))
        return self.output


@dataclass
class FakeTransport(VoiceTransport):
    """Transport fed by the test through ``push``."""

    sent: list[AudioFrame] = field(default_factory=list)
    inbox: asyncio.Queue = field(default_factory=asyncio.Queue)
    closed: bool = False
    send_gate: asyncio.Event | None = None
    close_gate: asyncio.Event | None = None

    async def send_audio(self, frame: AudioFrame) -> None:
        if self.send_gate is not None:
            await self.send_gate.wait()
        self.sent.append(frame)

    async def events(self):  # type: ignore[no-untyped-def]
        while True:
            event = await self.inbox.get()
            if event is None:
                return
            yield event

    async def close(self) -> None:
        if self.close_gate is not None:
            await self.close_gate.wait()
        self.closed = True

    def push(self, event: VoiceEvent | None) -> None:
        self.inbox.put_nowait(event)


@dataclass
class FakeTransportFactory:
    """Counts connects and returns the prepared transport."""

    transport: FakeTransport = field(default_factory=FakeTransport)
    error: Exception | None = None
    block: bool = False
    calls: int = 0

    async def __call__(self) -> FakeTransport:
        self.calls += 1
        if self.error is not None:
            raise self.error
        if self.block:
            await asyncio.Event().wait()
        return self.transport


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(openai_api_key="openai-key", storage_dir=str(tmp_path / "data"))


@pytest.fixture
def storage() -> InMemoryLedgerStorage:
    return InMemoryLedgerStorage()


@pytest.fixture
def ledger(storage: InMemoryLedgerStorage) -> LedgerService:
    return LedgerService(storage, clock=fixed_clock)


@pytest.fixture
def vision_client() -> FakeVisionClient:
    return FakeVisionClient()


@pytest.fixture
def advice_client() -> FakeAdviceClient:
    return FakeAdviceClient()


@pytest.fixture
def transport_factory() -> FakeTransportFactory:
    return FakeTransportFactory(block=True)


@pytest.fixture
def audio_backend() -> FakeAudioBackend:
    return FakeAudioBackend()


@pytest.fixture
def container(
    settings: Settings,
    ledger: LedgerService,
    vision_client: FakeVisionClient,
    advice_client: FakeAdviceClient,
    transport_factory: FakeTransportFactory,
    audio_backend: FakeAudioBackend,
) -> AppContainer:
    vision_service = MealVisionService(
        client=vision_client,
        model=settings.openai_model,
        reasoning_effort=settings.openai_reasoning_effort,
        store=settings.openai_store,
    )
    chat_service = ChatService(
        advice_service=AdviceService(
            client=advice_client, model=settings.openai_advice_model
        ),
        ledger=ledger,
    )
    voice_session = VoiceSession(
        transport_factory=transport_factory,
        audio_backend=audio_backend,
    )

    async def close_resources() -> None:
        return None

    return AppContainer(
        settings=settings,
        ledger_service=ledger,
        vision_service=vision_service,
        chat_service=chat_service,
        voice_session=voice_session,
        close_resources=close_resources,
    )
