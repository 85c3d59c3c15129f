from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from transcription_gate.domain.models import GateEvent, GateEventType, GateStatus


class GateStatusResponse(BaseModel):
	model_config = ConfigDict(extra="forbid")

	state: Literal["IDLE", "ARMED", "ACTIVE"]
	wake_phrase: str
	sleep_phrase: str
	listening: bool
	locale: str

	@classmethod
	def from_status(cls, status: GateStatus) -> "GateStatusResponse":
		return cls(
			state=status.state.value,
			wake_phrase=status.wake_phrase,
			sleep_phrase=status.sleep_phrase,
			listening=status.listening,
			locale=status.locale,
		)


class ConfigurationUpdateRequest(BaseModel):
	"""Partial configuration update; omitted fields keep their current value."""
	model_config = ConfigDict(extra="forbid")

	wake_phrase: str | None = None
	sleep_phrase: str | None = None
	locale: str | None = None
	continuous: bool | None = None
	partial_results: bool | None = None
	max_alternatives: int | None = Field(default=None, ge=1)

	def changes(self) -> dict[str, object]:
		return self.model_dump(exclude_none=True)


# WebSocket message models

class WsCommand(BaseModel):
	"""Incoming WebSocket command from client."""
	model_config = ConfigDict(extra="forbid")

	action: Literal["start", "stop", "status"]


class WsConnectedEvent(BaseModel):
	model_config = ConfigDict(extra="forbid")

	type: Literal["connected"] = "connected"
	message: str = "WebSocket connected. Send {\"action\": \"start\"} to begin listening."


class WsStatusEvent(BaseModel):
	"""Reply to a status command."""
	model_config = ConfigDict(extra="forbid")

	type: Literal["status"] = "status"
	status: GateStatusResponse


class WsStateEvent(BaseModel):
	model_config = ConfigDict(extra="forbid")

	type: Literal["status_change"] = "status_change"
	state: str
	timestamp: datetime


class WsPhraseEvent(BaseModel):
	model_config = ConfigDict(extra="forbid")

	type: Literal["wake_detected", "sleep_detected"]
	phrase: str
	timestamp: datetime


class WsTranscriptEvent(BaseModel):
	"""Gated transcript forwarded while the gate is ACTIVE."""
	model_config = ConfigDict(extra="forbid")

	type: Literal["transcript"] = "transcript"
	text: str
	is_final: bool
	confidence: float | None = None
	timestamp: datetime


class WsErrorEvent(BaseModel):
	model_config = ConfigDict(extra="forbid")

	type: Literal["error"] = "error"
	message: str
	timestamp: datetime


WsGateEvent = WsStateEvent | WsPhraseEvent | WsTranscriptEvent | WsErrorEvent


def ws_event_from_gate_event(event: GateEvent) -> WsGateEvent:
	if event.type == GateEventType.STATUS_CHANGE and event.state is not None:
		return WsStateEvent(state=event.state.value, timestamp=event.timestamp)
	if event.type in (GateEventType.WAKE_DETECTED, GateEventType.SLEEP_DETECTED) and event.phrase is not None:
		return WsPhraseEvent(type=event.type.value, phrase=event.phrase, timestamp=event.timestamp)
	if event.type == GateEventType.TRANSCRIPT and event.transcript is not None:
		transcript = event.transcript
		return WsTranscriptEvent(
			text=transcript.text,
			is_final=transcript.is_final,
			confidence=transcript.confidence,
			timestamp=transcript.emitted_at,
		)
	if event.type == GateEventType.ERROR:
		return WsErrorEvent(message=event.error or "Unknown recognition error", timestamp=event.timestamp)
	raise ValueError(f"Gate event {event.type.value} is missing its payload")
