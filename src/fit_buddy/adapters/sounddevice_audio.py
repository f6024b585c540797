"""Microphone and speaker access through PortAudio via sounddevice."""

import itertools
import logging
import threading
from collections.abc import Callable, Hashable
from dataclasses import dataclass, field
from types import ModuleType

import numpy as np

from fit_buddy.domain.errors import MediaAccessError
from fit_buddy.services.audio import AudioBuffer
from fit_buddy.services.voice import AudioBackend, Microphone

_logger = logging.getLogger(__name__)


def _sounddevice() -> ModuleType:
    """Import sounddevice; PortAudio is loaded at import time."""
    try:
        import sounddevice  # noqa: PLC0415
    except OSError as exc:
        raise MediaAccessError("Audio devices are unavailable.") from exc
    return sounddevice


@dataclass
class SoundDeviceMicrophone(Microphone):
    """Mono float32 capture stream."""

    stream: object | None = None
    _on_block: Callable[[np.ndarray], None] | None = None

    def start(self, on_block: Callable[[np.ndarray], None]) -> None:
        """Start delivering blocks to ``on_block``."""
        self._on_block = on_block
        if self.stream is not None:
            self.stream.start()

    def stop(self) -> None:
        """Stop and close the input stream."""
        self._on_block = None
        stream, self.stream = self.stream, None
        if stream is not None:
            stream.stop()
            stream.close()

    def handle_block(self, indata: np.ndarray, frames: int, time, status) -> None:  # noqa: ANN001
        """PortAudio input callback."""
        if status:
            _logger.debug("Input stream status: %s", status)
        callback = self._on_block
        if callback is not None:
            callback(np.array(indata[:frames, 0], dtype=np.float32, copy=True))


@dataclass
class _Voice:
    start_frame: int
    samples: np.ndarray
    on_finished: Callable[[Hashable], None]

    @property
    def end_frame(self) -> int:
        return self.start_frame + int(self.samples.shape[0])


@dataclass
class SoundDeviceOutput:
    """Mixes scheduled buffers into a mono output stream.

    The playback clock is the number of frames rendered so far, so buffer
    start times line up exactly with what the device has played.
    """

    sample_rate: int
    stream: object | None = None
    _voices: dict[int, _Voice] = field(default_factory=dict)
    _frames_rendered: int = 0
    _handles: itertools.count = field(default_factory=lambda: itertools.count(1))
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def current_time(self) -> float:
        """Return seconds of audio rendered so far."""
        with self._lock:
            return self._frames_rendered / self.sample_rate

    def play(
        self,
        buffer: AudioBuffer,
        start_at: float,
        on_finished: Callable[[Hashable], None],
    ) -> int:
        """Schedule ``buffer`` to start at ``start_at`` seconds."""
        samples = buffer.samples
        if samples.ndim > 1:
            samples = samples.mean(axis=1)
        handle = next(self._handles)
        with self._lock:
            start_frame = max(round(start_at * self.sample_rate), self._frames_rendered)
            self._voices[handle] = _Voice(
                start_frame=start_frame,
                samples=samples.astype(np.float32, copy=False),
                on_finished=on_finished,
            )
        return handle

    def stop(self, handle: Hashable) -> None:
        """Drop a buffer without calling its completion callback."""
        with self._lock:
            self._voices.pop(handle, None)

    def close(self) -> None:
        """Stop the stream and discard everything scheduled."""
        stream, self.stream = self.stream, None
        if stream is not None:
            stream.stop()
            stream.close()
        with self._lock:
            self._voices.clear()

    def render(self, outdata: np.ndarray, frames: int, time, status) -> None:  # noqa: ANN001
        """PortAudio output callback."""
        if status:
            _logger.debug("Output stream status: %s", status)
        mix = np.zeros(frames, dtype=np.float32)
        finished: list[tuple[int, _Voice]] = []
        with self._lock:
            block_start = self._frames_rendered
            block_end = block_start + frames
            for handle, voice in list(self._voices.items()):
                lo = max(block_start, voice.start_frame)
                hi = min(block_end, voice.end_frame)
                if hi > lo:
                    mix[lo - block_start : hi - block_start] += voice.samples[
                        lo - voice.start_frame : hi - voice.start_frame
                    ]
                if voice.end_frame <= block_end:
                    del self._voices[handle]
                    finished.append((handle, voice))
            self._frames_rendered = block_end
        outdata[:, 0] = np.clip(mix, -1.0, 1.0)
        # Callbacks run outside the lock; they take the scheduler's lock.
        for handle, voice in finished:
            voice.on_finished(handle)


@dataclass
class SoundDeviceBackend(AudioBackend):
    """Opens the default (or configured) sound devices."""

    input_device: int | str | None = None
    output_device: int | str | None = None

    def open_microphone(self, sample_rate: int, frame_size: int) -> SoundDeviceMicrophone:
        """Open a mono input stream; capture starts on ``start``."""
        sd = _sounddevice()
        microphone = SoundDeviceMicrophone()
        try:
            microphone.stream = sd.InputStream(
                samplerate=sample_rate,
                blocksize=frame_size,
                channels=1,
                dtype="float32",
                device=self.input_device,
                callback=microphone.handle_block,
            )
        except (sd.PortAudioError, ValueError) as exc:
            raise MediaAccessError() from exc
        return microphone

    def open_output(self, sample_rate: int) -> SoundDeviceOutput:
        """Open and start a mono output stream."""
        sd = _sounddevice()
        output = SoundDeviceOutput(sample_rate=sample_rate)
        try:
            stream = sd.OutputStream(
                samplerate=sample_rate,
                channels=1,
                dtype="float32",
                device=self.output_device,
                callback=output.render,
            )
            stream.start()
        except (sd.PortAudioError, ValueError) as exc:
            raise MediaAccessError() from exc
        output.stream = stream
        return output
