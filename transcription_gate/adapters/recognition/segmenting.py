import threading
import time

import numpy as np

from transcription_gate.adapters.recognition.base import ThreadedRecognitionEngine
from transcription_gate.core.logger import get_logger
from transcription_gate.domain.errors import RecognitionRuntimeError
from transcription_gate.domain.models import AudioFrame, GateConfiguration, TranscriptEvent
from transcription_gate.ports.audiostream import AudioStreamPort
from transcription_gate.ports.stt import SpeechToTextPort
from transcription_gate.ports.vad import VadPort

logger = get_logger("adapters.recognition.segmenting")


class SegmentingRecognitionEngine(ThreadedRecognitionEngine):
    """Utterance-at-a-time recognition: VAD cuts speech, STT transcribes it.

    Emits one final TranscriptEvent per utterance (no partial results).
    A session ends on its own after ``silence_timeout_seconds`` without
    speech, or after the first utterance when the configuration is not
    continuous.
    """

    name = "segmenting"

    def __init__(
        self,
        *,
        stream: AudioStreamPort,
        vad: VadPort,
        stt: SpeechToTextPort,
        silence_timeout_seconds: float = 8.0,
        max_utterance_seconds: float = 20.0,
        read_timeout_seconds: float = 0.1,
    ) -> None:
        super().__init__()
        self.stream = stream
        self.vad = vad
        self.stt = stt
        self.silence_timeout_seconds = silence_timeout_seconds
        self.max_utterance_seconds = max_utterance_seconds
        self.read_timeout_seconds = read_timeout_seconds

    def is_available(self) -> bool:
        return self.stream.available()

    def _run_session(self, config: GateConfiguration, stop_event: threading.Event) -> None:
        if not self.stream.is_running():
            raise RecognitionRuntimeError("Audio stream is not running")

        reader = self.stream.subscribe(name=self.name, max_frames=4096)
        self.vad.reset()
        utterance: list[AudioFrame] = []
        utterance_samples = 0
        max_samples = int(self.max_utterance_seconds * self.stream.audio_format().sample_rate)
        last_speech = time.monotonic()
        in_speech = False
        logger.info("Recognition session started (locale=%s, continuous=%s)", config.locale, config.continuous)

        try:
            while not stop_event.is_set():
                frame = reader.read(self.read_timeout_seconds)
                if frame is None:
                    if not in_speech and time.monotonic() - last_speech > self.silence_timeout_seconds:
                        logger.info("No speech for %.1fs, ending session", self.silence_timeout_seconds)
                        return
                    continue

                vad_event = self.vad.process(frame)
                if vad_event is not None and vad_event.detected and not in_speech:
                    in_speech = True
                    utterance = []
                    utterance_samples = 0

                if in_speech:
                    utterance.append(frame)
                    utterance_samples += frame.num_samples
                    last_speech = time.monotonic()

                utterance_done = in_speech and (
                    (vad_event is not None and not vad_event.detected) or utterance_samples >= max_samples
                )
                if utterance_done:
                    in_speech = False
                    self.vad.reset()
                    emitted = self._transcribe(utterance, config, stop_event)
                    utterance = []
                    utterance_samples = 0
                    if emitted and not config.continuous:
                        logger.info("Single-utterance session complete")
                        return
                elif not in_speech and time.monotonic() - last_speech > self.silence_timeout_seconds:
                    logger.info("No speech for %.1fs, ending session", self.silence_timeout_seconds)
                    return
        finally:
            reader.close()

    def _transcribe(self, frames: list[AudioFrame], config: GateConfiguration, stop_event: threading.Event) -> bool:
        if not frames or stop_event.is_set():
            return False
        fmt = frames[0].format
        audio = np.concatenate([f.to_mono_float32() for f in frames], axis=0)
        try:
            result = self.stt.transcribe(audio, fmt.sample_rate, language=config.language)
        except Exception as exc:
            raise RecognitionRuntimeError(f"Transcription failed: {exc}") from exc
        text = result.text.strip()
        if not text:
            logger.debug("Utterance of %.2fs produced no text", audio.shape[0] / fmt.sample_rate)
            return False
        self._emit_transcript(TranscriptEvent(text=text, is_final=True, confidence=result.confidence))
        return True
