from typing import Protocol

import numpy as np

from transcription_gate.domain.models import SpeechResult


class SpeechToTextPort(Protocol):

	def transcribe(self, audio: np.ndarray, sample_rate: int, language: str | None = None) -> SpeechResult:
		"""Transcribe one complete utterance of mono audio."""
		...
