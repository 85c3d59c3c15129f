from typing import Protocol

from transcription_gate.domain.models import AudioFormat, AudioFrame


class AudioStreamReader(Protocol):
    """Read handle for consuming frames from an audio stream.

    Each reader keeps its own queue, so several engines or sessions can read
    the same stream independently.
    """

    def read(self, timeout_seconds: float | None = None) -> AudioFrame | None:
        """Read the next frame.

        Args:
            timeout_seconds: Maximum time to wait for a frame.
                If None, blocks indefinitely.

        Returns:
            AudioFrame if available, None on timeout or once closed.
        """
        ...

    def close(self) -> None:
        """Detach from the stream. After closing, read() returns None."""
        ...


class AudioStreamPort(Protocol):
    """Microphone (or other) capture source with pub-sub readers."""

    def start(self) -> None:
        ...

    def stop(self) -> None:
        ...

    def is_running(self) -> bool:
        ...

    def available(self) -> bool:
        """Whether an input device exists to capture from."""
        ...

    def audio_format(self) -> AudioFormat:
        ...

    def subscribe(self, *, name: str, max_frames: int = 1024) -> AudioStreamReader:
        """Create a reader that receives every frame captured after subscription.

        Args:
            name: Identifier for this subscriber, used in logs.
            max_frames: Frames buffered before the oldest is dropped.
        """
        ...
