import os
from pathlib import Path
from typing import Any, Literal, Mapping, cast

import dotenv
import yaml
from pydantic import BaseModel, ConfigDict, Field

from transcription_gate.domain.models import AudioDtype, AudioFormat, GateConfiguration

REPO_ROOT = Path(__file__).resolve().parents[2]


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, protected_namespaces=())


class GateSettings(_Section):
    wake_phrase: str = "hi"
    sleep_phrase: str = "bye"
    locale: str = "en-US"
    continuous: bool = True
    partial_results: bool = True
    max_alternatives: int = Field(default=1, ge=1)
    restart_delay_seconds: float = Field(default=0.1, ge=0.0)


class AudioConfig(_Section):
    samplerate: int = Field(default=16000, gt=0)
    channels: int = Field(default=1, gt=0)
    blocksize: int = Field(default=512, gt=0)
    dtype: AudioDtype = "int16"
    device: int | str | None = None


class EngineConfig(_Section):
    backend: Literal["segmenting", "vosk"] = "segmenting"
    silence_timeout_seconds: float = Field(default=8.0, gt=0.0)
    max_utterance_seconds: float = Field(default=20.0, gt=0.0)


class WhisperConfig(_Section):
    model: str = "base"
    device: str = "cpu"
    download_root: Path | None = None


class VadConfig(_Section):
    threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    min_silence_ms: int = Field(default=400, ge=0)
    speech_pad_ms: int = Field(default=30, ge=0)


class VoskConfig(_Section):
    model_path: Path | None = None


class LoggingConfig(_Section):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: str = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
    json_output: bool = False
    rotate_max_bytes: int = Field(default=5_000_000, gt=0)
    rotate_backup_count: int = Field(default=3, ge=0)


class PathsConfig(_Section):
    config_path: Path
    fs_dir: Path


class ServerConfig(_Section):
    addr: str
    port: int = Field(gt=0, lt=65536)


class AppConfig(_Section):
    paths: PathsConfig
    server: ServerConfig
    gate: GateSettings = GateSettings()
    audio: AudioConfig = AudioConfig()
    engine: EngineConfig = EngineConfig()
    whisper: WhisperConfig = WhisperConfig()
    vad: VadConfig = VadConfig()
    vosk: VoskConfig = VoskConfig()
    logging: LoggingConfig = LoggingConfig()

    def gate_configuration(self) -> GateConfiguration:
        """Domain configuration for the gate; raises ConfigurationError if invalid."""
        gate = self.gate
        return GateConfiguration(
            wake_phrase=gate.wake_phrase,
            sleep_phrase=gate.sleep_phrase,
            locale=gate.locale,
            continuous=gate.continuous,
            partial_results=gate.partial_results,
            max_alternatives=gate.max_alternatives,
        )

    def audio_format(self) -> AudioFormat:
        return AudioFormat(
            sample_rate=self.audio.samplerate,
            channels=self.audio.channels,
            blocksize=self.audio.blocksize,
            dtype=self.audio.dtype,
        )


def load_config(env_file: Path | None = None) -> AppConfig:
    """Load ``.env`` then the YAML file named by CONFIG_PATH.

    Raises:
        ValueError: If a required env var is missing or the YAML root
            is not a mapping.
        FileNotFoundError: If CONFIG_PATH does not exist.
        pydantic.ValidationError: If a section holds invalid values.
    """
    dotenv.load_dotenv(env_file or REPO_ROOT / ".env")

    config_path = Path(_require_env("CONFIG_PATH")).expanduser()
    raw = _load_yaml(config_path)

    sections: dict[str, Any] = {
        key: _optional_mapping(raw, key)
        for key in ("gate", "audio", "engine", "whisper", "vad", "vosk", "logging")
    }
    if sections["whisper"].get("download_root"):
        sections["whisper"]["download_root"] = Path(str(sections["whisper"]["download_root"])).expanduser()
    if sections["vosk"].get("model_path"):
        sections["vosk"]["model_path"] = Path(str(sections["vosk"]["model_path"])).expanduser()

    return AppConfig(
        paths=PathsConfig(
            config_path=config_path,
            fs_dir=Path(_require_env("FS_DIR")).expanduser(),
        ),
        server=ServerConfig(
            addr=_require_env("SERVER_ADDR"),
            port=int(_require_env("SERVER_PORT")),
        ),
        **sections,
    )


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("Config root must be a mapping")
    return cast(dict[str, Any], data)


def _optional_mapping(raw: Mapping[str, Any], key: str) -> dict[str, Any]:
    value = raw.get(key, {})
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"Section '{key}' must be a mapping")
    return dict(cast(Mapping[str, Any], value))


def _require_env(name: str) -> str:
    value = os.getenv(name)
    if value is None or value == "":
        raise ValueError(f"Missing required env var: {name}")
    return value
