import asyncio
import contextlib
from datetime import datetime, timezone
from typing import cast

from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from transcription_gate.api.response_models import (
    ConfigurationUpdateRequest,
    GateStatusResponse,
    WsCommand,
    WsConnectedEvent,
    WsErrorEvent,
    WsStatusEvent,
    ws_event_from_gate_event,
)
from transcription_gate.core.logger import get_logger
from transcription_gate.domain.errors import ConfigurationError, DisposedError
from transcription_gate.services.gate import TranscriptionGate

logger = get_logger("api.gate_router")

router = APIRouter(prefix="/gate", tags=["gate"])


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _gate_from_state(state: object) -> TranscriptionGate:
    gate = getattr(state, "gate", None)
    if gate is None:
        raise RuntimeError("Transcription gate not initialized")
    return cast(TranscriptionGate, gate)


def get_gate(request: Request) -> TranscriptionGate:
    return _gate_from_state(request.app.state)


def _disposed(exc: DisposedError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@router.post("/start", response_model=GateStatusResponse)
async def start_gate(gate: TranscriptionGate = Depends(get_gate)) -> GateStatusResponse:
    """Start listening for the wake phrase.

    The gate reports ARMED once the engine acknowledges the start, so the
    returned status may still read IDLE. Starting a running gate is a no-op.
    """
    try:
        gate.start()
        return GateStatusResponse.from_status(gate.get_status())
    except DisposedError as exc:
        raise _disposed(exc) from exc


@router.post("/stop", response_model=GateStatusResponse)
async def stop_gate(gate: TranscriptionGate = Depends(get_gate)) -> GateStatusResponse:
    """Stop listening. Safe to call repeatedly."""
    try:
        gate.stop()
        return GateStatusResponse.from_status(gate.get_status())
    except DisposedError as exc:
        raise _disposed(exc) from exc


@router.get("/status", response_model=GateStatusResponse)
async def get_gate_status(gate: TranscriptionGate = Depends(get_gate)) -> GateStatusResponse:
    try:
        return GateStatusResponse.from_status(gate.get_status())
    except DisposedError as exc:
        raise _disposed(exc) from exc


@router.put("/config", response_model=GateStatusResponse)
async def update_gate_config(
    payload: ConfigurationUpdateRequest,
    gate: TranscriptionGate = Depends(get_gate),
) -> GateStatusResponse:
    """Merge the given fields into the current configuration.

    Raises:
        HTTPException 422: If the merged configuration is invalid.
        HTTPException 409: If the gate has been disposed.
    """
    try:
        gate.update_configuration(gate.config.with_changes(**payload.changes()))
        return GateStatusResponse.from_status(gate.get_status())
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except DisposedError as exc:
        raise _disposed(exc) from exc


@router.websocket("/ws")
async def websocket_gate(websocket: WebSocket) -> None:
    """WebSocket endpoint streaming gate events.

    Incoming messages:
        {"action": "start"}  - Start listening for the wake phrase
        {"action": "stop"}   - Stop listening
        {"action": "status"} - Reply with the current status

    Outgoing events:
        {"type": "connected", "message": "..."}
        {"type": "status", "status": {...}}
        {"type": "status_change", "state": "IDLE|ARMED|ACTIVE", "timestamp": "..."}
        {"type": "wake_detected" | "sleep_detected", "phrase": "...", "timestamp": "..."}
        {"type": "transcript", "text": "...", "is_final": true, "confidence": 0.9, "timestamp": "..."}
        {"type": "error", "message": "...", "timestamp": "..."}
    """
    await websocket.accept()
    gate = _gate_from_state(websocket.app.state)
    await websocket.send_json(WsConnectedEvent().model_dump(mode="json"))

    forwarder = asyncio.create_task(_forward_events(websocket, gate))
    try:
        while True:
            data = await websocket.receive_json()
            try:
                command = WsCommand.model_validate(data)
            except ValidationError as e:
                await _send_error(websocket, f"Invalid command: {e.errors()}")
                continue

            try:
                if command.action == "start":
                    gate.start()
                elif command.action == "stop":
                    gate.stop()
                else:
                    reply = WsStatusEvent(status=GateStatusResponse.from_status(gate.get_status()))
                    await websocket.send_json(reply.model_dump(mode="json"))
            except DisposedError as e:
                await _send_error(websocket, str(e))
    except WebSocketDisconnect:
        logger.info("WebSocket client disconnected")
    finally:
        forwarder.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await forwarder


async def _forward_events(websocket: WebSocket, gate: TranscriptionGate) -> None:
    try:
        async for event in gate.events():
            await websocket.send_json(ws_event_from_gate_event(event).model_dump(mode="json"))
    except DisposedError:
        logger.debug("Gate disposed, event forwarding ended")
    except (WebSocketDisconnect, RuntimeError) as exc:
        logger.debug("WebSocket closed while forwarding events: %s", exc)


async def _send_error(websocket: WebSocket, message: str) -> None:
    error = WsErrorEvent(message=message, timestamp=_utcnow())
    await websocket.send_json(error.model_dump(mode="json"))
