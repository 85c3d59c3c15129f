import queue
import threading
from typing import Any

import numpy as np
import sounddevice as sd  # type: ignore

from transcription_gate.core.logger import get_logger
from transcription_gate.domain.models import AudioFormat, AudioFrame
from transcription_gate.ports.audiostream import AudioStreamPort, AudioStreamReader

logger = get_logger("adapters.audio.sddevice")


class _QueueReader(AudioStreamReader):
    """Bounded per-subscriber queue; drops the oldest frame when full."""

    def __init__(self, owner: "SoundDeviceAudioStreamAdapter", name: str, max_frames: int) -> None:
        self._owner = owner
        self.name = name
        self._queue: queue.Queue[AudioFrame] = queue.Queue(maxsize=max(1, max_frames))
        self._closed = threading.Event()
        self.dropped = 0

    def push(self, frame: AudioFrame) -> None:
        while True:
            try:
                self._queue.put_nowait(frame)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    pass

    def read(self, timeout_seconds: float | None = None) -> AudioFrame | None:
        if self._closed.is_set():
            return None
        try:
            return self._queue.get(timeout=timeout_seconds)
        except queue.Empty:
            return None

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        self._owner._unsubscribe(self)
        if self.dropped:
            logger.warning("Reader %s dropped %d frames", self.name, self.dropped)


class SoundDeviceAudioStreamAdapter(AudioStreamPort):
    """Microphone capture through a single sounddevice.RawInputStream.

    Device selection: the configured device, else the default input.
    """

    def __init__(self, *, audio_format: AudioFormat, device: int | str | None = None) -> None:
        self._format = audio_format
        self._requested_device = device
        self._stream: sd.RawInputStream | None = None
        self._readers: list[_QueueReader] = []
        self._lock = threading.Lock()
        self._sequence = 0

    def audio_format(self) -> AudioFormat:
        return self._format

    def is_running(self) -> bool:
        return self._stream is not None

    def available(self) -> bool:
        try:
            devices: list[dict[str, Any]] = list(sd.query_devices())  # type: ignore
        except Exception:
            logger.exception("Could not query audio devices")
            return False
        return any(dev.get("max_input_channels", 0) > 0 for dev in devices)

    def start(self) -> None:
        if self._stream:
            return
        fmt = self._format
        self._stream = sd.RawInputStream(
            samplerate=fmt.sample_rate,
            channels=fmt.channels,
            blocksize=fmt.blocksize,
            dtype=fmt.dtype,
            device=self._requested_device,
            callback=self._callback,
        )
        self._stream.start()
        logger.info(
            "Audio stream started: device=%s, rate=%d, channels=%d, blocksize=%d, dtype=%s",
            self._requested_device,
            fmt.sample_rate,
            fmt.channels,
            fmt.blocksize,
            fmt.dtype,
        )

    def stop(self) -> None:
        stream = self._stream
        if stream is None:
            return
        self._stream = None
        try:
            stream.stop()
        finally:
            stream.close()
        logger.info("Audio stream stopped")

    def subscribe(self, *, name: str, max_frames: int = 1024) -> AudioStreamReader:
        reader = _QueueReader(self, name, max_frames)
        with self._lock:
            self._readers.append(reader)
        logger.debug("Reader %s subscribed (max_frames=%d)", name, max_frames)
        return reader

    def _unsubscribe(self, reader: _QueueReader) -> None:
        with self._lock:
            if reader in self._readers:
                self._readers.remove(reader)

    def _callback(self, indata: bytes, frames: int, time: Any, status: Any) -> None:
        if status:
            logger.warning("sounddevice status: %s", status)
        fmt = self._format
        array = np.frombuffer(indata, dtype=np.dtype(fmt.dtype)).copy()
        if fmt.channels > 1:
            array = array.reshape(-1, fmt.channels)
        self._sequence += 1
        frame = AudioFrame(data=array, format=fmt, sequence=self._sequence)
        with self._lock:
            readers = list(self._readers)
        for reader in readers:
            reader.push(frame)
