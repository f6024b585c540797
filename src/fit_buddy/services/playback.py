"""Gapless playback scheduling for streamed assistant audio."""

import logging
import threading
from collections.abc import Callable, Hashable
from dataclasses import dataclass, field
from typing import Protocol

from fit_buddy.services.audio import AudioBuffer

_logger = logging.getLogger(__name__)


class AudioOutput(Protocol):
    """Speaker output with its own playback clock."""

    def current_time(self) -> float:
        """Return the playback clock in seconds."""

    def play(
        self,
        buffer: AudioBuffer,
        start_at: float,
        on_finished: Callable[[Hashable], None],
    ) -> Hashable:
        """Schedule a buffer at a clock time and return its handle.

        ``on_finished`` may be called from the audio thread.
        """

    def stop(self, handle: Hashable) -> None:
        """Stop a scheduled or playing buffer."""

    def close(self) -> None:
        """Release the output device."""


@dataclass
class PlaybackScheduler:
    """Queues buffers back to back on the output clock.

    The pending set is shared with the output's completion callback, so all
    access goes through ``_lock``.
    """

    output: AudioOutput
    _next_start_time: float = 0.0
    _pending: set[Hashable] = field(default_factory=set)
    _lock: threading.RLock = field(default_factory=threading.RLock)

    @property
    def next_start_time(self) -> float:
        with self._lock:
            return self._next_start_time

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def schedule(self, buffer: AudioBuffer) -> float:
        """Schedule a buffer right after the previous one; return its start."""
        with self._lock:
            start = max(self._next_start_time, self.output.current_time())
            if buffer.frames == 0:
                return start
            self._next_start_time = start + buffer.duration
            handle = self.output.play(buffer, start, self._on_finished)
            self._pending.add(handle)
            return start

    def interrupt(self) -> int:
        """Stop everything queued and drop the backlog; return stopped count."""
        with self._lock:
            handles = list(self._pending)
            self._pending.clear()
            for handle in handles:
                try:
                    self.output.stop(handle)
                except Exception:
                    _logger.exception("Failed to stop playback buffer")
            self._next_start_time = self.output.current_time()
        return len(handles)

    def _on_finished(self, handle: Hashable) -> None:
        with self._lock:
            self._pending.discard(handle)
