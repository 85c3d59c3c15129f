"""Error kinds raised or reported by the transcription gate."""


class TranscriptionGateError(Exception):
    """Base class for all gate errors."""


class ConfigurationError(TranscriptionGateError, ValueError):
    """Invalid wake/sleep phrase or other configuration value.

    Fatal to the call that raised it; the gate keeps its previous configuration.
    """


class EngineUnavailableError(TranscriptionGateError):
    """The platform has no usable recognition capability."""


class RecognitionRuntimeError(TranscriptionGateError):
    """Mid-session failure reported by a recognition engine.

    Never raised out of the gate; delivered to consumers as an error event.
    """


class DisposedError(TranscriptionGateError, RuntimeError):
    """Operation invoked on a gate or engine after it was disposed."""
