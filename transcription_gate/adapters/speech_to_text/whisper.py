import math
from pathlib import Path
from typing import Any

import numpy as np
import whisper  # type: ignore

from transcription_gate.core.logger import get_logger
from transcription_gate.domain.models import SpeechResult
from transcription_gate.ports.stt import SpeechToTextPort

logger = get_logger("adapters.speech_to_text.whisper")

WHISPER_SAMPLE_RATE = 16000


class WhisperAdapter(SpeechToTextPort):

	def __init__(
		self,
		*,
		model_name: str = "base",
		device: str = "cpu",
		download_root: Path | None = None,
	) -> None:
		self.model_name = model_name
		self.device = device
		self.download_root = str(download_root) if download_root else None
		self._model: Any = None

	def load(self) -> None:
		"""Load the model up front instead of on the first utterance."""
		self._lazy_model()

	def transcribe(self, audio: np.ndarray, sample_rate: int, language: str | None = None) -> SpeechResult:
		prepared = self._prepare_audio(audio, sample_rate)
		if prepared.size == 0:
			return SpeechResult(text="")
		model = self._lazy_model()
		result = model.transcribe(prepared, fp16=False, language=language)
		text = self._extract_text(result)
		confidence = self._confidence(result)
		logger.debug("Whisper transcribed %.2fs: %r (confidence=%s)", prepared.shape[0] / WHISPER_SAMPLE_RATE, text, confidence)
		return SpeechResult(text=text, confidence=confidence)

	def _lazy_model(self) -> Any:
		if self._model is None:
			try:
				self._model = whisper.load_model(
					name=self.model_name,
					device=self.device,
					download_root=self.download_root,
				)
			except Exception:
				logger.exception("Failed to load Whisper model %s on %s", self.model_name, self.device)
				raise
			logger.info("Whisper model loaded: %s on %s", self.model_name, self.device)
		return self._model

	@staticmethod
	def _prepare_audio(audio: np.ndarray, sample_rate: int) -> np.ndarray:
		arr = np.asarray(audio)
		if arr.dtype == np.int16:
			arr = arr.astype(np.float32) / 32768.0
		else:
			arr = arr.astype(np.float32, copy=False)
		if arr.ndim > 1:
			arr = arr.mean(axis=tuple(range(1, arr.ndim)))
		if sample_rate != WHISPER_SAMPLE_RATE:
			arr = WhisperAdapter._resample_linear(arr, sample_rate, WHISPER_SAMPLE_RATE)
		return arr.astype(np.float32, copy=False)

	@staticmethod
	def _resample_linear(audio: np.ndarray, orig_sr: int, target_sr: int) -> np.ndarray:
		if audio.size == 0 or orig_sr == target_sr:
			return audio

		duration = audio.shape[0] / float(orig_sr)
		target_len = int(duration * target_sr)
		if target_len <= 1:
			return np.zeros(1, dtype=np.float32)

		x_old = np.linspace(0.0, duration, num=audio.shape[0], endpoint=False)
		x_new = np.linspace(0.0, duration, num=target_len, endpoint=False)
		return np.interp(x_new, x_old, audio).astype(np.float32)

	@staticmethod
	def _extract_text(result: dict[str, Any]) -> str:
		segments = result.get("segments")
		if segments:
			stitched = " ".join(str(seg.get("text", "")).strip() for seg in segments)
			return stitched.strip()
		return str(result.get("text", "")).strip()

	@staticmethod
	def _confidence(result: dict[str, Any]) -> float | None:
		"""exp(mean avg_logprob) over segments, clamped to [0, 1]."""
		logprobs = [
			float(seg["avg_logprob"])
			for seg in result.get("segments") or []
			if seg.get("avg_logprob") is not None
		]
		if not logprobs:
			return None
		return max(0.0, min(1.0, math.exp(sum(logprobs) / len(logprobs))))
