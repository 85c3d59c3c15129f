from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal
import time

import numpy as np

from transcription_gate.domain.errors import ConfigurationError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


AudioDtype = Literal["float32", "int16", "float64"]


class GateState(str, Enum):
    """Gate state machine states."""

    IDLE = "IDLE"
    ARMED = "ARMED"
    ACTIVE = "ACTIVE"


class GateEventType(str, Enum):
    STATUS_CHANGE = "status_change"
    WAKE_DETECTED = "wake_detected"
    SLEEP_DETECTED = "sleep_detected"
    TRANSCRIPT = "transcript"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class GateConfiguration:
    """Trigger phrases and recognition options.

    Immutable; replace it wholesale with ``with_changes`` or a new instance.
    Phrases are kept trimmed but with their original casing, matching is done
    on ``wake_key`` / ``sleep_key``.
    """

    wake_phrase: str = "hi"
    sleep_phrase: str = "bye"
    locale: str = "en-US"
    continuous: bool = True
    partial_results: bool = True
    max_alternatives: int = 1

    def __post_init__(self) -> None:
        wake = self._clean_phrase("wake_phrase", self.wake_phrase)
        sleep = self._clean_phrase("sleep_phrase", self.sleep_phrase)
        if wake.lower() == sleep.lower():
            raise ConfigurationError(
                f"wake_phrase and sleep_phrase must differ, both are {wake!r}"
            )
        if not isinstance(self.locale, str) or not self.locale.strip():
            raise ConfigurationError("locale must be a non-empty string")
        if isinstance(self.max_alternatives, bool) or not isinstance(self.max_alternatives, int):
            raise ConfigurationError("max_alternatives must be an integer")
        if self.max_alternatives < 1:
            raise ConfigurationError(f"max_alternatives must be >= 1, got {self.max_alternatives}")

        # frozen: normalised values go through object.__setattr__
        object.__setattr__(self, "wake_phrase", wake)
        object.__setattr__(self, "sleep_phrase", sleep)
        object.__setattr__(self, "locale", self.locale.strip())

    @staticmethod
    def _clean_phrase(name: str, value: Any) -> str:
        if not isinstance(value, str):
            raise ConfigurationError(f"{name} must be a string, got {type(value).__name__}")
        cleaned = value.strip()
        if not cleaned:
            raise ConfigurationError(f"{name} must not be empty")
        return cleaned

    @property
    def wake_key(self) -> str:
        return self.wake_phrase.lower()

    @property
    def sleep_key(self) -> str:
        return self.sleep_phrase.lower()

    @property
    def language(self) -> str:
        """Primary language subtag of the locale ("en-US" -> "en")."""
        return self.locale.replace("_", "-").split("-", 1)[0].lower()

    def with_changes(self, **changes: Any) -> "GateConfiguration":
        """Return a validated copy with the given fields replaced."""
        unknown = set(changes) - set(self.__dataclass_fields__)
        if unknown:
            raise ConfigurationError(f"Unknown configuration fields: {sorted(unknown)}")
        return replace(self, **changes)


@dataclass(frozen=True, slots=True)
class TranscriptEvent:
    """Raw recognition result as reported by an engine. Read-only for the gate."""

    text: str
    is_final: bool
    confidence: float | None = None
    timestamp: datetime = field(default_factory=_utcnow)
    alternatives: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class GatedTranscript:
    """Transcript forwarded to consumers while the gate is ACTIVE."""

    text: str
    is_final: bool
    confidence: float | None
    emitted_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def from_event(cls, event: TranscriptEvent) -> "GatedTranscript":
        return cls(text=event.text, is_final=event.is_final, confidence=event.confidence)


@dataclass(frozen=True, slots=True)
class GateStatus:
    state: GateState
    wake_phrase: str
    sleep_phrase: str
    listening: bool
    locale: str


@dataclass(frozen=True, slots=True)
class GateEvent:
    """Notification emitted by the gate to its subscribers."""

    type: GateEventType
    state: GateState | None = None
    phrase: str | None = None
    transcript: GatedTranscript | None = None
    error: str | None = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True, slots=True)
class AudioFormat:
    """Describes audio stream parameters. Single source of truth for frame config."""

    sample_rate: int
    channels: int
    blocksize: int
    dtype: AudioDtype

    def __post_init__(self) -> None:
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.channels <= 0:
            raise ValueError(f"channels must be positive, got {self.channels}")
        if self.blocksize <= 0:
            raise ValueError(f"blocksize must be positive, got {self.blocksize}")


@dataclass(slots=True)
class AudioFrame:
    """A single chunk of captured audio."""

    data: np.ndarray
    format: AudioFormat
    timestamp_ns: int = field(default_factory=lambda: time.monotonic_ns())
    sequence: int = 0

    def to_mono_float32(self) -> np.ndarray:
        """Mono float32 in [-1.0, 1.0], the input VAD and Whisper expect."""
        arr = self.data
        if arr.dtype == np.int16:
            arr = arr.astype(np.float32) / 32768.0
        elif arr.dtype != np.float32:
            arr = arr.astype(np.float32, copy=False)
        if arr.ndim == 2:
            arr = arr.mean(axis=1, dtype=np.float32)
        return arr

    def to_mono_int16(self) -> np.ndarray:
        """Mono int16 PCM, the input Kaldi recognisers expect."""
        if self.data.ndim == 1 and self.data.dtype == np.int16:
            return self.data
        mono = self.to_mono_float32()
        return (np.clip(mono, -1.0, 1.0) * 32767).astype(np.int16)

    @property
    def num_samples(self) -> int:
        return int(self.data.shape[0])

    @property
    def duration_seconds(self) -> float:
        return self.num_samples / self.format.sample_rate


@dataclass(frozen=True, slots=True)
class VadEvent:
    detected: bool


@dataclass(frozen=True, slots=True)
class SpeechResult:
    """Text recognised from one utterance."""

    text: str
    confidence: float | None = None
