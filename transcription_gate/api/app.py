from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI

from transcription_gate.api import gate_router
from transcription_gate.core.logger import get_logger
from transcription_gate.ports.audiostream import AudioStreamPort
from transcription_gate.services.gate import TranscriptionGate

logger = get_logger("api.app")

GateFactory = Callable[[], TranscriptionGate]


def _default_components() -> tuple[AudioStreamPort, GateFactory]:
    from transcription_gate.core.di import get_audio_stream, get_gate

    return get_audio_stream(), get_gate


def create_app(
    *,
    gate_factory: GateFactory | None = None,
    stream: AudioStreamPort | None = None,
) -> FastAPI:
    """Build the API app.

    Without arguments the gate and audio stream come from ``core.di``.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Start the audio stream, own the gate, dispose it on shutdown."""
        if gate_factory is None:
            audio_stream, factory = _default_components()
        else:
            audio_stream, factory = stream, gate_factory

        if audio_stream is not None:
            audio_stream.start()
        gate = factory()
        app.state.gate = gate
        try:
            yield
        finally:
            if not gate.is_disposed:
                gate.dispose()
            if audio_stream is not None:
                audio_stream.stop()
            logger.info("API shut down")

    app = FastAPI(
        title="transcription-gate",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(gate_router.router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok"}

    return app
