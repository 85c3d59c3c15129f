from __future__ import annotations

import queue
import threading

import numpy as np
import pytest

from transcription_gate.domain.errors import EngineUnavailableError, RecognitionRuntimeError
from transcription_gate.domain.models import (
    AudioFormat,
    AudioFrame,
    GateConfiguration,
    GateEvent,
    SpeechResult,
    TranscriptEvent,
    VadEvent,
)
from transcription_gate.services.gate import TranscriptionGate


class FakeEngine:
    """Engine whose acknowledgements are driven by the test."""

    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.listener = None
        self.start_calls: list[GateConfiguration] = []
        self.stop_calls = 0
        self.released = False
        self.fail_next_start: Exception | None = None

    def is_available(self) -> bool:
        return self.available

    def attach(self, listener) -> None:  # noqa: ANN001
        if self.listener is not None:
            raise EngineUnavailableError("already attached")
        self.listener = listener

    def start(self, config: GateConfiguration) -> None:
        if self.fail_next_start is not None:
            exc, self.fail_next_start = self.fail_next_start, None
            raise exc
        self.start_calls.append(config)

    def stop(self) -> None:
        self.stop_calls += 1

    def release(self) -> None:
        self.released = True

    # test drivers

    def ack_start(self) -> None:
        self.listener.on_engine_start()

    def ack_stop(self) -> None:
        self.listener.on_engine_stop()

    def say(self, text: str, is_final: bool = True, confidence: float | None = None) -> None:
        self.listener.on_transcript(TranscriptEvent(text=text, is_final=is_final, confidence=confidence))

    def fail(self, message: str) -> None:
        self.listener.on_engine_error(RecognitionRuntimeError(message))


class FakeAudioStream:
    """Stream fed by the test through ``feed``."""

    def __init__(self, audio_format: AudioFormat | None = None, running: bool = True) -> None:
        self.format = audio_format or AudioFormat(sample_rate=16000, channels=1, blocksize=160, dtype="int16")
        self.running = running
        self.has_device = True
        self.readers: list[FakeReader] = []

    def start(self) -> None:
        self.running = True

    def stop(self) -> None:
        self.running = False

    def is_running(self) -> bool:
        return self.running

    def available(self) -> bool:
        return self.has_device

    def audio_format(self) -> AudioFormat:
        return self.format

    def subscribe(self, *, name: str, max_frames: int = 1024) -> "FakeReader":
        reader = FakeReader(self)
        self.readers.append(reader)
        return reader

    def frame(self, value: int = 0, sequence: int = 0) -> AudioFrame:
        data = np.full(self.format.blocksize, value, dtype=np.int16)
        return AudioFrame(data=data, format=self.format, sequence=sequence)

    def feed(self, *frames: AudioFrame) -> None:
        for reader in list(self.readers):
            for frame in frames:
                reader.frames.put(frame)


class FakeReader:
    def __init__(self, stream: FakeAudioStream) -> None:
        self.stream = stream
        self.frames: queue.Queue[AudioFrame] = queue.Queue()
        self.closed = False

    def read(self, timeout_seconds: float | None = None) -> AudioFrame | None:
        if self.closed:
            return None
        try:
            return self.frames.get(timeout=timeout_seconds)
        except queue.Empty:
            return None

    def close(self) -> None:
        self.closed = True
        if self in self.stream.readers:
            self.stream.readers.remove(self)


class ScriptedVad:
    """Speech starts on frames with a positive sample value, ends on the first zero frame after."""

    def __init__(self) -> None:
        self.in_speech = False
        self.resets = 0

    def process(self, frame: AudioFrame) -> VadEvent | None:
        loud = bool(frame.data.any())
        if loud and not self.in_speech:
            self.in_speech = True
            return VadEvent(detected=True)
        if not loud and self.in_speech:
            self.in_speech = False
            return VadEvent(detected=False)
        return None

    def reset(self) -> None:
        self.in_speech = False
        self.resets += 1


class FakeStt:
    def __init__(self, texts: list[str] | None = None, confidence: float | None = 0.8) -> None:
        self.texts = list(texts or [])
        self.confidence = confidence
        self.calls: list[tuple[int, int, str | None]] = []
        self.error: Exception | None = None
        self.lock = threading.Lock()

    def transcribe(self, audio: np.ndarray, sample_rate: int, language: str | None = None) -> SpeechResult:
        with self.lock:
            self.calls.append((int(audio.shape[0]), sample_rate, language))
            if self.error is not None:
                raise self.error
            text = self.texts.pop(0) if self.texts else ""
        return SpeechResult(text=text, confidence=self.confidence)


class RecordingListener:
    """RecognitionListener that records every callback in order."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, object]] = []

    def on_engine_start(self) -> None:
        self.calls.append(("start", None))

    def on_engine_stop(self) -> None:
        self.calls.append(("stop", None))

    def on_transcript(self, event: TranscriptEvent) -> None:
        self.calls.append(("transcript", event))

    def on_engine_error(self, error: RecognitionRuntimeError) -> None:
        self.calls.append(("error", error))

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def events() -> list[GateEvent]:
    return []


@pytest.fixture
def gate(engine: FakeEngine, events: list[GateEvent]) -> TranscriptionGate:
    g = TranscriptionGate(engine=engine, restart_delay_seconds=0.01)
    g.subscribe(events.append)
    return g


@pytest.fixture
def armed_gate(gate: TranscriptionGate, engine: FakeEngine, events: list[GateEvent]) -> TranscriptionGate:
    gate.start()
    engine.ack_start()
    events.clear()
    return gate


@pytest.fixture
def active_gate(armed_gate: TranscriptionGate, engine: FakeEngine, events: list[GateEvent]) -> TranscriptionGate:
    engine.say("hi")
    events.clear()
    return armed_gate


@pytest.fixture
def audio_stream() -> FakeAudioStream:
    return FakeAudioStream()
