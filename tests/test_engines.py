import asyncio
import threading
import time
from collections.abc import Callable

import pytest

from transcription_gate.adapters.recognition.segmenting import SegmentingRecognitionEngine
from transcription_gate.domain.errors import EngineUnavailableError, RecognitionRuntimeError
from transcription_gate.domain.models import GateConfiguration, GateEventType, GateState
from transcription_gate.services.gate import TranscriptionGate

from conftest import FakeAudioStream, FakeStt, RecordingListener, ScriptedVad


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def _engine(stream: FakeAudioStream, stt: FakeStt, **kwargs) -> SegmentingRecognitionEngine:  # noqa: ANN003
    kwargs.setdefault("silence_timeout_seconds", 5.0)
    return SegmentingRecognitionEngine(stream=stream, vad=ScriptedVad(), stt=stt, read_timeout_seconds=0.02, **kwargs)


def _speak(stream: FakeAudioStream) -> None:
    stream.feed(stream.frame(1000, 0), stream.frame(1000, 1), stream.frame(0, 2))


@pytest.mark.asyncio
async def test_utterance_is_transcribed_as_final_event(audio_stream: FakeAudioStream) -> None:
    stt = FakeStt(["Hello there"], confidence=0.9)
    engine = _engine(audio_stream, stt)
    listener = RecordingListener()
    engine.attach(listener)

    engine.start(GateConfiguration(locale="de-DE"))
    await _wait_until(lambda: bool(audio_stream.readers))
    _speak(audio_stream)
    await _wait_until(lambda: "transcript" in listener.names())

    engine.stop()
    await _wait_until(lambda: "stop" in listener.names())

    assert listener.names() == ["start", "transcript", "stop"]
    event = listener.calls[1][1]
    assert event.text == "Hello there"
    assert event.is_final is True
    assert event.confidence == 0.9
    # two loud frames plus the silent frame that closed the utterance
    assert stt.calls == [(480, 16000, "de")]
    assert audio_stream.readers == []
    engine.release()


@pytest.mark.asyncio
async def test_single_utterance_session_ends_on_its_own(audio_stream: FakeAudioStream) -> None:
    engine = _engine(audio_stream, FakeStt(["one"]))
    listener = RecordingListener()
    engine.attach(listener)

    engine.start(GateConfiguration(continuous=False))
    await _wait_until(lambda: bool(audio_stream.readers))
    _speak(audio_stream)
    await _wait_until(lambda: "stop" in listener.names())

    assert listener.names() == ["start", "transcript", "stop"]
    engine.release()


@pytest.mark.asyncio
async def test_silence_timeout_ends_session(audio_stream: FakeAudioStream) -> None:
    engine = _engine(audio_stream, FakeStt(), silence_timeout_seconds=0.1)
    listener = RecordingListener()
    engine.attach(listener)

    engine.start(GateConfiguration())
    await _wait_until(lambda: "stop" in listener.names())

    assert listener.names() == ["start", "stop"]
    engine.release()


@pytest.mark.asyncio
async def test_empty_transcription_is_dropped(audio_stream: FakeAudioStream) -> None:
    stt = FakeStt(["   "])
    engine = _engine(audio_stream, stt)
    listener = RecordingListener()
    engine.attach(listener)

    engine.start(GateConfiguration())
    await _wait_until(lambda: bool(audio_stream.readers))
    _speak(audio_stream)
    await _wait_until(lambda: len(stt.calls) == 1)
    engine.stop()
    await _wait_until(lambda: "stop" in listener.names())

    assert listener.names() == ["start", "stop"]
    engine.release()


@pytest.mark.asyncio
async def test_transcription_failure_is_reported_and_ends_session(audio_stream: FakeAudioStream) -> None:
    stt = FakeStt()
    stt.error = RuntimeError("model exploded")
    engine = _engine(audio_stream, stt)
    listener = RecordingListener()
    engine.attach(listener)

    engine.start(GateConfiguration())
    await _wait_until(lambda: bool(audio_stream.readers))
    _speak(audio_stream)
    await _wait_until(lambda: "stop" in listener.names())

    assert listener.names() == ["start", "error", "stop"]
    error = listener.calls[1][1]
    assert isinstance(error, RecognitionRuntimeError)
    assert "model exploded" in str(error)
    engine.release()


@pytest.mark.asyncio
async def test_stopped_stream_fails_session() -> None:
    stream = FakeAudioStream(running=False)
    engine = _engine(stream, FakeStt())
    listener = RecordingListener()
    engine.attach(listener)

    engine.start(GateConfiguration())
    await _wait_until(lambda: "stop" in listener.names())

    assert listener.names() == ["start", "error", "stop"]
    engine.release()


@pytest.mark.asyncio
async def test_second_start_while_running_is_rejected(audio_stream: FakeAudioStream) -> None:
    engine = _engine(audio_stream, FakeStt())
    engine.attach(RecordingListener())
    engine.start(GateConfiguration())
    with pytest.raises(RecognitionRuntimeError):
        engine.start(GateConfiguration())
    engine.release()


def test_engine_accepts_a_single_listener(audio_stream: FakeAudioStream) -> None:
    engine = _engine(audio_stream, FakeStt())
    first = RecordingListener()
    engine.attach(first)
    engine.attach(first)
    with pytest.raises(EngineUnavailableError):
        engine.attach(RecordingListener())


def test_start_without_listener_fails(audio_stream: FakeAudioStream) -> None:
    engine = _engine(audio_stream, FakeStt())
    with pytest.raises(RecognitionRuntimeError):
        engine.start(GateConfiguration())


def test_released_engine_cannot_be_used(audio_stream: FakeAudioStream) -> None:
    engine = _engine(audio_stream, FakeStt())
    engine.release()
    with pytest.raises(EngineUnavailableError):
        engine.attach(RecordingListener())
    with pytest.raises(EngineUnavailableError):
        engine.start(GateConfiguration())


def test_availability_follows_audio_device(audio_stream: FakeAudioStream) -> None:
    engine = _engine(audio_stream, FakeStt())
    assert engine.is_available() is True
    audio_stream.has_device = False
    assert engine.is_available() is False


@pytest.mark.asyncio
async def test_gate_over_segmenting_engine(audio_stream: FakeAudioStream) -> None:
    stt = FakeStt(["Hi", "the weather is nice today", "bye"])
    gate = TranscriptionGate(engine=_engine(audio_stream, stt), restart_delay_seconds=0.01)
    events = []
    gate.subscribe(events.append)

    gate.start()
    await _wait_until(lambda: gate.state == GateState.ARMED and bool(audio_stream.readers))

    for _ in range(3):
        seen = len(stt.calls)
        _speak(audio_stream)
        await _wait_until(lambda: len(stt.calls) == seen + 1)
        await asyncio.sleep(0.02)

    await _wait_until(lambda: gate.state == GateState.ARMED and len(events) >= 4)
    kinds = [e.type for e in events if e.type != GateEventType.STATUS_CHANGE]
    assert kinds == [GateEventType.WAKE_DETECTED, GateEventType.TRANSCRIPT, GateEventType.SLEEP_DETECTED]
    assert [e.transcript.text for e in events if e.transcript] == ["the weather is nice today"]

    gate.stop()
    await _wait_until(lambda: gate.state == GateState.IDLE)
    gate.dispose()


@pytest.mark.asyncio
async def test_start_stop_start_before_ack_over_threaded_engine(audio_stream: FakeAudioStream) -> None:
    gate = TranscriptionGate(engine=_engine(audio_stream, FakeStt()), restart_delay_seconds=0.01)
    events = []
    gate.subscribe(events.append)

    gate.start()
    gate.stop()
    gate.start()
    await _wait_until(lambda: gate.state == GateState.ARMED)

    assert [e for e in events if e.type == GateEventType.ERROR] == []
    assert gate.get_status().listening is True

    gate.stop()
    await _wait_until(lambda: gate.state == GateState.IDLE)
    gate.dispose()


class _BlockingStt(FakeStt):
    def __init__(self) -> None:
        super().__init__(["late"])
        self.entered = threading.Event()
        self.release = threading.Event()

    def transcribe(self, audio, sample_rate, language=None):  # noqa: ANN001, ANN201
        self.entered.set()
        self.release.wait(timeout=5.0)
        return super().transcribe(audio, sample_rate, language)


@pytest.mark.asyncio
async def test_release_does_not_wait_for_a_busy_transcription(audio_stream: FakeAudioStream) -> None:
    stt = _BlockingStt()
    engine = _engine(audio_stream, stt)
    listener = RecordingListener()
    engine.attach(listener)

    engine.start(GateConfiguration())
    await _wait_until(lambda: bool(audio_stream.readers))
    _speak(audio_stream)
    await _wait_until(stt.entered.is_set)

    began = time.monotonic()
    engine.release()
    elapsed = time.monotonic() - began
    stt.release.set()

    assert elapsed < engine.release_join_timeout_seconds + 0.5
    await asyncio.sleep(0.1)
    assert "transcript" not in listener.names()
