from typing import Protocol

from transcription_gate.domain.models import AudioFrame, VadEvent


class VadPort(Protocol):
    """Voice Activity Detection interface.

    Speech start/end transitions are signalled via VadEvent.
    """

    def process(self, frame: AudioFrame) -> VadEvent | None:
        """Feed a frame.

        Returns:
            VadEvent(detected=True) when speech starts, VadEvent(detected=False)
            when it ends, None if nothing changed.
        """
        ...

    def reset(self) -> None:
        """Forget any in-progress speech. Call between sessions and utterances."""
        ...
