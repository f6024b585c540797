"""Realtime voice session: microphone capture, streaming and playback.

The session is a small state machine driven from the asyncio event loop::

    idle -> connecting -> active -> closed | failed
    closed | failed -> connecting

Microphone blocks arrive on the audio thread and are handed to the loop with
``call_soon_threadsafe``; a single sender task transmits them in capture
order. Playback completion callbacks also arrive on the audio thread and only
touch the lock-guarded ``PlaybackScheduler``.
"""

import asyncio
import binascii
import contextlib
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol

import numpy as np

from fit_buddy.domain.errors import FitBuddyError, TransportError
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
    VoiceSessionState,
    VoiceSnapshot,
)
from fit_buddy.services.audio import decode_fragment, encode_frame
from fit_buddy.services.playback import AudioOutput, PlaybackScheduler

STATUS_IDLE = "Tap to start"
STATUS_CONNECTING = "Connecting to AI..."
STATUS_LISTENING = "I'm listening..."
STATUS_CLOSED = "Connection closed."
STATUS_ENDED = "Session ended."
STATUS_TIMEOUT = "Connection timed out. Tap to retry."

_BUSY_STATES = {VoiceSessionState.CONNECTING, VoiceSessionState.ACTIVE}

_logger = logging.getLogger(__name__)


class VoiceTransport(Protocol):
    """Bidirectional stream to the voice service."""

    async def send_audio(self, frame: AudioFrame) -> None:
        """Transmit one microphone frame."""

    def events(self) -> AsyncIterator[VoiceEvent]:
        """Yield server events until the stream ends."""

    async def close(self) -> None:
        """Close the stream."""


class Microphone(Protocol):
    """Opened capture device."""

    def start(self, on_block: Callable[[np.ndarray], None]) -> None:
        """Begin delivering float32 mono blocks, usually on the audio thread."""

    def stop(self) -> None:
        """Stop capture and release the device."""


class AudioBackend(Protocol):
    """Opens the sound devices a session needs."""

    def open_microphone(self, sample_rate: int, frame_size: int) -> Microphone:
        """Open the input device or raise ``MediaAccessError``."""

    def open_output(self, sample_rate: int) -> AudioOutput:
        """Open the output device or raise ``MediaAccessError``."""


TransportFactory = Callable[[], Awaitable[VoiceTransport]]
SnapshotListener = Callable[[VoiceSnapshot], None]


@dataclass
class VoiceSession:
    """Live conversation with the voice assistant."""

    transport_factory: TransportFactory
    audio_backend: AudioBackend
    input_sample_rate: int = 16000
    output_sample_rate: int = 24000
    frame_size: int = 4096
    send_queue_size: int = 64
    connect_timeout: float | None = None
    state: VoiceSessionState = VoiceSessionState.IDLE
    status: str = STATUS_IDLE
    user_said: str = ""
    ai_said: str = ""
    dropped_frames: int = 0
    _listeners: list[SnapshotListener] = field(default_factory=list, repr=False)
    _changed: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    _main_task: asyncio.Task | None = field(default=None, repr=False)
    _tasks: set[asyncio.Task] = field(default_factory=set, repr=False)
    _transport: VoiceTransport | None = field(default=None, repr=False)
    _microphone: Microphone | None = field(default=None, repr=False)
    _output: AudioOutput | None = field(default=None, repr=False)
    _scheduler: PlaybackScheduler | None = field(default=None, repr=False)
    _frames: asyncio.Queue | None = field(default=None, repr=False)
    _closing: bool = field(default=False, repr=False)

    @property
    def scheduler(self) -> PlaybackScheduler | None:
        return self._scheduler

    def snapshot(self) -> VoiceSnapshot:
        """Return the current state and transcripts."""
        return VoiceSnapshot(
            state=self.state,
            status=self.status,
            user_said=self.user_said,
            ai_said=self.ai_said,
            dropped_frames=self.dropped_frames,
        )

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register a change listener; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return unsubscribe

    async def start(self) -> None:
        """Begin connecting; a no-op while connecting or active."""
        if self.state in _BUSY_STATES:
            return
        self.user_said = ""
        self.ai_said = ""
        self.dropped_frames = 0
        self._set_state(VoiceSessionState.CONNECTING, STATUS_CONNECTING)
        self._main_task = asyncio.create_task(self._run(), name="voice-session")

    async def stop(self) -> None:
        """Shut the session down. Safe to call in any state, any number of times."""
        main = self._main_task
        if main is None and self.state not in _BUSY_STATES:
            return
        self._main_task = None
        if main is not None and main is not asyncio.current_task() and not main.done():
            if self._closing:
                # Already shutting down; let it finish instead of cutting it off.
                await main
            else:
                main.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await main
        if self.state in _BUSY_STATES:
            await self._shutdown(VoiceSessionState.CLOSED, STATUS_ENDED)

    async def wait_for_state(
        self, *states: VoiceSessionState, timeout: float | None = None
    ) -> VoiceSessionState:
        """Wait until the session reaches one of ``states``."""

        async def _wait() -> None:
            while self.state not in states:
                await self._changed.wait()

        await asyncio.wait_for(_wait(), timeout)
        return self.state

    async def _run(self) -> None:
        try:
            await self._open()
            sender = asyncio.create_task(self._send_frames(), name="voice-send")
            receiver = asyncio.create_task(self._receive(), name="voice-receive")
            self._tasks = {sender, receiver}
            done, _ = await asyncio.wait(
                self._tasks, return_when=asyncio.FIRST_COMPLETED
            )
            for task in done:
                task.result()
            await self._shutdown(VoiceSessionState.CLOSED, STATUS_CLOSED)
        except FitBuddyError as exc:
            _logger.warning("Voice session failed: %s", exc.message)
            await self._shutdown(VoiceSessionState.FAILED, exc.message)
        except Exception:
            _logger.exception("Voice session transport error")
            await self._shutdown(VoiceSessionState.FAILED, TransportError.default_message)
        finally:
            if self._main_task is asyncio.current_task():
                self._main_task = None

    async def _open(self) -> None:
        self._output = self.audio_backend.open_output(self.output_sample_rate)
        self._scheduler = PlaybackScheduler(self._output)
        self._microphone = self.audio_backend.open_microphone(
            self.input_sample_rate, self.frame_size
        )
        try:
            self._transport = await asyncio.wait_for(
                self.transport_factory(), self.connect_timeout
            )
        except TimeoutError as exc:
            raise TransportError(STATUS_TIMEOUT) from exc
        self._frames = asyncio.Queue(maxsize=self.send_queue_size)
        self._set_state(VoiceSessionState.ACTIVE, STATUS_LISTENING)
        self._microphone.start(self._capture_callback(asyncio.get_running_loop()))

    def _capture_callback(
        self, loop: asyncio.AbstractEventLoop
    ) -> Callable[[np.ndarray], None]:
        frames = self._frames

        def on_block(block: np.ndarray) -> None:
            frame = encode_frame(block, self.input_sample_rate)
            try:
                loop.call_soon_threadsafe(self._enqueue_frame, frames, frame)
            except RuntimeError:
                # Loop already closed; the session is shutting down.
                return

        return on_block

    def _enqueue_frame(self, frames: asyncio.Queue, frame: AudioFrame) -> None:
        if frames is not self._frames:
            return
        try:
            frames.put_nowait(frame)
        except asyncio.QueueFull:
            self.dropped_frames += 1

    async def _send_frames(self) -> None:
        frames = self._frames
        transport = self._transport
        while True:
            frame = await frames.get()
            await transport.send_audio(frame)

    async def _receive(self) -> None:
        async for event in self._transport.events():
            if isinstance(event, SessionClosed):
                _logger.info("Voice session closed by server: %s", event.reason)
                return
            if isinstance(event, SessionError):
                raise TransportError(event.message or TransportError.default_message)
            self._handle_event(event)

    def _handle_event(self, event: VoiceEvent) -> None:
        if isinstance(event, TranscriptFragment):
            if event.kind is TranscriptKind.INPUT:
                self.user_said += event.text
            else:
                self.ai_said += event.text
            self._notify()
        elif isinstance(event, TurnComplete):
            self.user_said = ""
            self.ai_said = ""
            self._notify()
        elif isinstance(event, AudioFragment):
            self._play(event)
        elif isinstance(event, Interrupted):
            if self._scheduler is not None:
                stopped = self._scheduler.interrupt()
                _logger.debug("Interrupted, stopped %s buffers", stopped)
            # New utterance; drop a late transcript from the previous turn.
            if self.user_said:
                self.user_said = ""
                self._notify()

    def _play(self, event: AudioFragment) -> None:
        if self._scheduler is None:
            return
        try:
            buffer = decode_fragment(event.data, self.output_sample_rate)
        except (binascii.Error, ValueError):
            _logger.warning("Skipping undecodable audio fragment")
            return
        self._scheduler.schedule(buffer)

    async def _shutdown(self, state: VoiceSessionState, status: str) -> None:
        self._closing = True
        try:
            await self._release_resources()
        finally:
            self._closing = False
        self._set_state(state, status)

    async def _release_resources(self) -> None:
        microphone, self._microphone = self._microphone, None
        if microphone is not None:
            try:
                microphone.stop()
            except Exception:
                _logger.exception("Failed to stop microphone")

        current = asyncio.current_task()
        tasks = [task for task in self._tasks if task is not current]
        self._tasks = set()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        transport, self._transport = self._transport, None
        if transport is not None:
            try:
                await transport.close()
            except Exception:
                _logger.exception("Failed to close voice transport")

        scheduler, self._scheduler = self._scheduler, None
        if scheduler is not None:
            scheduler.interrupt()

        output, self._output = self._output, None
        if output is not None:
            try:
                output.close()
            except Exception:
                _logger.exception("Failed to close audio output")

        self._frames = None

    def _set_state(self, state: VoiceSessionState, status: str) -> None:
        if state is not self.state:
            _logger.info("Voice session %s -> %s", self.state, state)
        self.state = state
        self.status = status
        self._notify()

    def _notify(self) -> None:
        changed, self._changed = self._changed, asyncio.Event()
        changed.set()
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                _logger.exception("Voice session listener failed")
