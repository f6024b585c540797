"""PCM16 conversion helpers for the voice pipeline."""

import base64
from dataclasses import dataclass

import numpy as np

from fit_buddy.domain.voice import AudioFrame

_PCM16_SCALE = 32768.0


@dataclass(frozen=True)
class AudioBuffer:
    """Decoded float32 samples, shape ``(frames,)`` or ``(frames, channels)``."""

    samples: np.ndarray
    sample_rate: int

    @property
    def frames(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration(self) -> float:
        """Length in seconds."""
        return self.frames / self.sample_rate


def float32_to_pcm16(samples: np.ndarray) -> bytes:
    """Convert float samples in [-1, 1] to little-endian int16 bytes."""
    scaled = np.asarray(samples, dtype=np.float32) * _PCM16_SCALE
    return np.clip(scaled, -32768, 32767).astype("<i2").tobytes()


def pcm16_to_float32(data: bytes, channels: int = 1) -> np.ndarray:
    """Convert little-endian int16 bytes to float samples in [-1, 1)."""
    usable = len(data) - (len(data) % (2 * channels))
    samples = np.frombuffer(data[:usable], dtype="<i2").astype(np.float32)
    samples /= _PCM16_SCALE
    if channels > 1:
        return samples.reshape(-1, channels)
    return samples


def encode_frame(samples: np.ndarray, sample_rate: int) -> AudioFrame:
    """Encode a captured block as a transport frame."""
    pcm = float32_to_pcm16(samples)
    return AudioFrame(data=base64.b64encode(pcm).decode("ascii"), sample_rate=sample_rate)


def decode_fragment(data: str, sample_rate: int, channels: int = 1) -> AudioBuffer:
    """Decode a base64 PCM16 fragment into a playable buffer."""
    pcm = base64.b64decode(data, validate=True)
    return AudioBuffer(samples=pcm16_to_float32(pcm, channels), sample_rate=sample_rate)


def resample_pcm16(data: bytes, source_rate: int, target_rate: int) -> bytes:
    """Linearly resample mono PCM16 bytes."""
    if source_rate == target_rate or not data:
        return data
    samples = pcm16_to_float32(data)
    if samples.size == 0:
        return b""
    target_len = max(1, round(samples.size * target_rate / source_rate))
    source_positions = np.arange(samples.size, dtype=np.float64)
    target_positions = np.linspace(0, samples.size - 1, num=target_len)
    resampled = np.interp(target_positions, source_positions, samples)
    return float32_to_pcm16(resampled)
