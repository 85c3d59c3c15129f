from collections import deque
from typing import Iterator

import numpy as np
from silero_vad import load_silero_vad  # type: ignore
from silero_vad.utils_vad import VADIterator  # type: ignore

from transcription_gate.core.logger import get_logger
from transcription_gate.domain.models import AudioFrame, VadEvent
from transcription_gate.ports.vad import VadPort

logger = get_logger("adapters.audio.silerovad")


_SILERO_FRAME_SIZE = 512


class SileroVadAdapter(VadPort):
    """Voice Activity Detection with the Silero model.

    Input frames of any size are buffered into the 512-sample windows
    Silero requires at 16 kHz.
    """

    def __init__(
        self,
        *,
        threshold: float = 0.5,
        min_silence_duration_ms: int = 400,
        speech_pad_ms: int = 30,
        sampling_rate: int = 16000,
    ) -> None:
        try:
            model = load_silero_vad()
        except Exception:
            logger.exception("Failed to load Silero VAD model")
            raise

        self._iterator = VADIterator(
            model,
            threshold=float(threshold),
            sampling_rate=int(sampling_rate),
            min_silence_duration_ms=int(min_silence_duration_ms),
            speech_pad_ms=int(speech_pad_ms),
        )
        self._pending: deque[np.ndarray] = deque()
        self._pending_samples = 0

        logger.info(
            "SileroVAD adapter initialized: threshold=%.2f, min_silence=%dms, sample_rate=%d",
            threshold,
            min_silence_duration_ms,
            sampling_rate,
        )

    def reset(self) -> None:
        self._iterator.reset_states()
        self._pending.clear()
        self._pending_samples = 0

    def process(self, frame: AudioFrame) -> VadEvent | None:
        mono = frame.to_mono_float32()
        self._pending.append(mono)
        self._pending_samples += mono.shape[0]

        # an end inside this frame wins over a later start
        result: VadEvent | None = None
        for window in self._windows():
            event = self._iterator(window, return_seconds=False)
            if not event:
                continue
            if "end" in event:
                logger.debug("Speech end at frame seq=%d", frame.sequence)
                result = VadEvent(detected=False)
            elif "start" in event and result is None:
                logger.debug("Speech start at frame seq=%d", frame.sequence)
                result = VadEvent(detected=True)
        return result

    def _windows(self) -> Iterator[np.ndarray]:
        if self._pending_samples < _SILERO_FRAME_SIZE:
            return
        combined = np.concatenate(list(self._pending))
        self._pending.clear()
        usable = (combined.shape[0] // _SILERO_FRAME_SIZE) * _SILERO_FRAME_SIZE
        remainder = combined[usable:]
        self._pending_samples = remainder.shape[0]
        if self._pending_samples:
            self._pending.append(remainder)
        for offset in range(0, usable, _SILERO_FRAME_SIZE):
            yield combined[offset:offset + _SILERO_FRAME_SIZE]
