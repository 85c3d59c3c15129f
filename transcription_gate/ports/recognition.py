from typing import Protocol

from transcription_gate.domain.errors import RecognitionRuntimeError
from transcription_gate.domain.models import GateConfiguration, TranscriptEvent


class RecognitionListener(Protocol):
    """Callbacks an engine delivers to its single owner.

    Engines must invoke these on the owner's event loop thread.
    """

    def on_engine_start(self) -> None:
        """The engine acknowledged a start request and is now capturing."""
        ...

    def on_engine_stop(self) -> None:
        """The engine stopped, either on request or on its own."""
        ...

    def on_transcript(self, event: TranscriptEvent) -> None:
        ...

    def on_engine_error(self, error: RecognitionRuntimeError) -> None:
        ...


class RecognitionEnginePort(Protocol):
    """Speech-to-text engine driven through asynchronous start/stop requests.

    ``start`` and ``stop`` only request a transition; the outcome arrives later
    through ``on_engine_start`` / ``on_engine_stop``.
    """

    def is_available(self) -> bool:
        """Whether the platform can recognise speech at all."""
        ...

    def attach(self, listener: RecognitionListener) -> None:
        """Register the sole listener.

        Raises:
            EngineUnavailableError: If a listener is already attached or
                the engine was released.
        """
        ...

    def start(self, config: GateConfiguration) -> None:
        """Request a recognition session using ``config`` options.

        Raises:
            RecognitionRuntimeError: If a session is already running.
            EngineUnavailableError: If the engine was released.
        """
        ...

    def stop(self) -> None:
        """Request the current session to end. Safe when not running."""
        ...

    def release(self) -> None:
        """Stop and free the engine permanently."""
        ...
