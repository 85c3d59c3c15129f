import json
import threading
import time
from pathlib import Path
from typing import Any

from vosk import KaldiRecognizer, Model, SetLogLevel  # type: ignore

from transcription_gate.adapters.recognition.base import ThreadedRecognitionEngine
from transcription_gate.core.logger import get_logger
from transcription_gate.domain.errors import EngineUnavailableError, RecognitionRuntimeError
from transcription_gate.domain.models import GateConfiguration, TranscriptEvent
from transcription_gate.ports.audiostream import AudioStreamPort

logger = get_logger("adapters.recognition.vosk")


class VoskRecognitionEngine(ThreadedRecognitionEngine):
    """Streaming offline recognition with a Vosk (Kaldi) model.

    Partial hypotheses are reported as interim events when the configuration
    asks for partial results, completed utterances as final events.
    """

    name = "vosk"

    def __init__(
        self,
        *,
        stream: AudioStreamPort,
        model_path: Path,
        silence_timeout_seconds: float = 8.0,
        read_timeout_seconds: float = 0.1,
    ) -> None:
        super().__init__()
        self.stream = stream
        self.model_path = Path(model_path)
        self.silence_timeout_seconds = silence_timeout_seconds
        self.read_timeout_seconds = read_timeout_seconds
        self._model: Any = None

    def is_available(self) -> bool:
        if not self.model_path.exists():
            logger.warning("Vosk model not found at %s", self.model_path)
            return False
        return self.stream.available()

    def _lazy_model(self) -> Any:
        if self._model is None:
            SetLogLevel(-1)
            try:
                self._model = Model(str(self.model_path))
            except Exception as exc:
                logger.exception("Failed to load Vosk model from %s", self.model_path)
                raise EngineUnavailableError(f"Cannot load Vosk model: {exc}") from exc
            logger.info("Vosk model loaded from %s", self.model_path)
        return self._model

    def _new_recognizer(self, config: GateConfiguration) -> Any:
        recognizer = KaldiRecognizer(self._lazy_model(), self.stream.audio_format().sample_rate)
        recognizer.SetWords(True)
        if config.max_alternatives > 1:
            recognizer.SetMaxAlternatives(config.max_alternatives)
        return recognizer

    def _run_session(self, config: GateConfiguration, stop_event: threading.Event) -> None:
        if not self.stream.is_running():
            raise RecognitionRuntimeError("Audio stream is not running")

        recognizer = self._new_recognizer(config)
        reader = self.stream.subscribe(name=self.name, max_frames=4096)
        last_partial = ""
        last_speech = time.monotonic()
        logger.info("Recognition session started (locale=%s, continuous=%s)", config.locale, config.continuous)

        try:
            while not stop_event.is_set():
                if not last_partial and time.monotonic() - last_speech > self.silence_timeout_seconds:
                    logger.info("No speech for %.1fs, ending session", self.silence_timeout_seconds)
                    return

                frame = reader.read(self.read_timeout_seconds)
                if frame is None:
                    continue

                pcm = frame.to_mono_int16().tobytes()
                if recognizer.AcceptWaveform(pcm):
                    last_partial = ""
                    event = parse_final_result(recognizer.Result())
                    if event is None:
                        continue
                    last_speech = time.monotonic()
                    self._emit_transcript(event)
                    if not config.continuous:
                        logger.info("Single-utterance session complete")
                        return
                    continue

                partial = str(json.loads(recognizer.PartialResult()).get("partial", "")).strip()
                if partial and partial != last_partial:
                    last_partial = partial
                    last_speech = time.monotonic()
                    if config.partial_results:
                        self._emit_transcript(TranscriptEvent(text=partial, is_final=False))
        finally:
            reader.close()


def parse_final_result(raw: str) -> TranscriptEvent | None:
    """Build a final TranscriptEvent from a Vosk ``Result()`` JSON string.

    Handles both the single-hypothesis shape (``text`` + per-word ``conf``)
    and the n-best shape (``alternatives``). Returns None for empty text.
    """
    data: dict[str, Any] = json.loads(raw)
    alternatives = data.get("alternatives")
    if alternatives:
        texts = [str(alt.get("text", "")).strip() for alt in alternatives]
        text = texts[0]
        confidence = _normalise_score(alternatives[0].get("confidence"))
        extra = tuple(t for t in texts[1:] if t)
    else:
        text = str(data.get("text", "")).strip()
        words = data.get("result") or []
        confs = [float(w["conf"]) for w in words if "conf" in w]
        confidence = sum(confs) / len(confs) if confs else None
        extra = ()
    if not text:
        return None
    return TranscriptEvent(text=text, is_final=True, confidence=confidence, alternatives=extra)


def _normalise_score(value: Any) -> float | None:
    # n-best scores are unnormalised likelihoods, only [0, 1] values are kept
    if value is None:
        return None
    score = float(value)
    return score if 0.0 <= score <= 1.0 else None
