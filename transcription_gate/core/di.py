from functools import lru_cache

from transcription_gate.adapters.audio.sddevice import SoundDeviceAudioStreamAdapter
from transcription_gate.core.settings import AppConfig, load_config
from transcription_gate.ports.audiostream import AudioStreamPort
from transcription_gate.ports.recognition import RecognitionEnginePort
from transcription_gate.services.gate import TranscriptionGate


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Get singleton AppConfig instance."""
    return load_config()


@lru_cache(maxsize=1)
def get_audio_stream() -> AudioStreamPort:
    """Get singleton microphone stream adapter."""
    cfg = get_config()
    return SoundDeviceAudioStreamAdapter(audio_format=cfg.audio_format(), device=cfg.audio.device)


def build_engine(cfg: AppConfig, stream: AudioStreamPort) -> RecognitionEnginePort:
    """Create the recognition engine selected by ``engine.backend``.

    Model-heavy adapters are imported here so only the chosen backend's
    libraries are loaded.
    """
    if cfg.engine.backend == "vosk":
        from transcription_gate.adapters.recognition.vosk import VoskRecognitionEngine

        if cfg.vosk.model_path is None:
            raise ValueError("Missing required value 'vosk.model_path' for the vosk backend")
        return VoskRecognitionEngine(
            stream=stream,
            model_path=cfg.vosk.model_path,
            silence_timeout_seconds=cfg.engine.silence_timeout_seconds,
        )

    from transcription_gate.adapters.audio.silerovad import SileroVadAdapter
    from transcription_gate.adapters.recognition.segmenting import SegmentingRecognitionEngine
    from transcription_gate.adapters.speech_to_text.whisper import WhisperAdapter

    return SegmentingRecognitionEngine(
        stream=stream,
        vad=SileroVadAdapter(
            threshold=cfg.vad.threshold,
            min_silence_duration_ms=cfg.vad.min_silence_ms,
            speech_pad_ms=cfg.vad.speech_pad_ms,
            sampling_rate=cfg.audio.samplerate,
        ),
        stt=WhisperAdapter(
            model_name=cfg.whisper.model,
            device=cfg.whisper.device,
            download_root=cfg.whisper.download_root,
        ),
        silence_timeout_seconds=cfg.engine.silence_timeout_seconds,
        max_utterance_seconds=cfg.engine.max_utterance_seconds,
    )


@lru_cache(maxsize=1)
def get_engine() -> RecognitionEnginePort:
    """Get singleton recognition engine, owned by the gate."""
    return build_engine(get_config(), get_audio_stream())


@lru_cache(maxsize=1)
def get_gate() -> TranscriptionGate:
    """Get singleton TranscriptionGate."""
    cfg = get_config()
    return TranscriptionGate(
        engine=get_engine(),
        config=cfg.gate_configuration(),
        restart_delay_seconds=cfg.gate.restart_delay_seconds,
    )
