import asyncio
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

from transcription_gate.core.logger import get_logger
from transcription_gate.domain.errors import (
    ConfigurationError,
    DisposedError,
    EngineUnavailableError,
    RecognitionRuntimeError,
)
from transcription_gate.domain.models import (
    GateConfiguration,
    GatedTranscript,
    GateEvent,
    GateEventType,
    GateState,
    GateStatus,
    TranscriptEvent,
)
from transcription_gate.ports.recognition import RecognitionEnginePort

logger = get_logger("services.gate")

GateEventHandler = Callable[[GateEvent], None]

DEFAULT_RESTART_DELAY_SECONDS = 0.1


@dataclass(slots=True, eq=False)
class TranscriptionGate:
    """Wake/sleep phrase gate in front of a recognition engine.

    State machine:
    - IDLE: engine not running
    - ARMED: engine running, waiting for the wake phrase
    - ACTIVE: engine running, transcripts forwarded until the sleep phrase

    All methods, including the engine callbacks, must run on a single event
    loop thread. State changes only follow engine acknowledgements or an
    explicit stop/dispose. When the engine ends a session on its own, the gate
    restarts it after ``restart_delay_seconds`` and keeps its ARMED/ACTIVE state.
    """

    engine: RecognitionEnginePort
    config: GateConfiguration = field(default_factory=GateConfiguration)
    restart_delay_seconds: float = DEFAULT_RESTART_DELAY_SECONDS
    loop: asyncio.AbstractEventLoop | None = None

    _state: GateState = field(default=GateState.IDLE, init=False)
    _session_requested: bool = field(default=False, init=False)
    _engine_running: bool = field(default=False, init=False)
    _start_pending: bool = field(default=False, init=False)
    _stop_pending: bool = field(default=False, init=False)
    _restart_handle: asyncio.TimerHandle | None = field(default=None, init=False)
    _handlers: list[GateEventHandler] = field(default_factory=list, init=False)
    _disposed: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        if not isinstance(self.config, GateConfiguration):
            raise ConfigurationError("config must be a GateConfiguration")
        if self.restart_delay_seconds < 0:
            raise ConfigurationError("restart_delay_seconds must be >= 0")
        if not self.engine.is_available():
            raise EngineUnavailableError("Speech recognition is not available on this platform")
        self.engine.attach(self)
        logger.info(
            "Transcription gate ready: wake=%r, sleep=%r, locale=%s",
            self.config.wake_phrase,
            self.config.sleep_phrase,
            self.config.locale,
        )

    @property
    def state(self) -> GateState:
        return self._state

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    # ------------------------------------------------------------------
    # Consumer operations
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Ask the engine to start; the gate becomes ARMED on its acknowledgement.

        No-op while a session is already requested (ARMED, ACTIVE or
        awaiting the start acknowledgement).
        """
        self._ensure_usable()
        if self._session_requested:
            logger.debug("start() ignored, session already requested (state=%s)", self._state.value)
            return

        self._session_requested = True
        if self._stop_pending:
            # the stop acknowledgement moves to IDLE, then starts a fresh session
            logger.debug("start() while engine stop is pending, restarting after it")
            return
        if not self._request_engine_start():
            self._session_requested = False

    def stop(self) -> None:
        """Stop listening. Always safe; a stop with no session is a no-op.

        If the engine is running, or was asked to start and has not answered
        yet, it is stopped and the gate goes IDLE on the acknowledgement.
        """
        self._ensure_usable()
        self._cancel_restart()
        if not self._session_requested:
            logger.debug("stop() ignored, no session requested")
            return

        self._session_requested = False
        if self._engine_running or self._start_pending:
            self._stop_pending = True
            self.engine.stop()
        else:
            self._set_state(GateState.IDLE)

    def update_configuration(self, config: GateConfiguration) -> None:
        """Replace the configuration; used from the next transcript on."""
        self._ensure_usable()
        if not isinstance(config, GateConfiguration):
            raise ConfigurationError("update_configuration expects a GateConfiguration")
        self.config = config
        logger.info(
            "Configuration updated: wake=%r, sleep=%r, locale=%s, partial_results=%s",
            config.wake_phrase,
            config.sleep_phrase,
            config.locale,
            config.partial_results,
        )

    def get_status(self) -> GateStatus:
        self._ensure_usable()
        return GateStatus(
            state=self._state,
            wake_phrase=self.config.wake_phrase,
            sleep_phrase=self.config.sleep_phrase,
            listening=self._engine_running,
            locale=self.config.locale,
        )

    def subscribe(self, handler: GateEventHandler) -> Callable[[], None]:
        """Register a handler for every GateEvent. Returns an unsubscribe callable."""
        self._ensure_usable()
        self._handlers.append(handler)

        def unsubscribe() -> None:
            try:
                self._handlers.remove(handler)
            except ValueError:
                pass

        return unsubscribe

    async def events(self) -> AsyncIterator[GateEvent]:
        """Async iterator over gate events until the gate is disposed."""
        queue: asyncio.Queue[GateEvent] = asyncio.Queue()
        unsubscribe = self.subscribe(queue.put_nowait)
        try:
            while not self._disposed:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=0.5)
                except asyncio.TimeoutError:
                    continue
                yield event
        finally:
            unsubscribe()

    def dispose(self) -> None:
        """Release the engine permanently. Every later call raises DisposedError."""
        self._ensure_usable()
        self._cancel_restart()
        self._session_requested = False
        if self._engine_running or self._start_pending:
            self.engine.stop()
        self._set_state(GateState.IDLE)
        self._disposed = True
        self._handlers.clear()
        self._engine_running = False
        self._start_pending = False
        self._stop_pending = False
        self.engine.release()
        logger.info("Transcription gate disposed")

    # ------------------------------------------------------------------
    # Engine callbacks
    # ------------------------------------------------------------------

    def on_engine_start(self) -> None:
        if self._disposed:
            return
        self._engine_running = True
        self._start_pending = False
        if not self._session_requested and not self._stop_pending:
            logger.debug("Engine started without a requested session, stopping it")
            self._stop_pending = True
            self.engine.stop()
        if self._stop_pending:
            logger.debug("Engine started while a stop is pending, waiting for it to stop")
            return
        if self._state == GateState.IDLE:
            self._set_state(GateState.ARMED)
        else:
            logger.info("Engine restarted, resuming in %s", self._state.value)

    def on_engine_stop(self) -> None:
        if self._disposed:
            return
        self._engine_running = False
        self._start_pending = False
        if self._stop_pending:
            self._stop_pending = False
            self._set_state(GateState.IDLE)
            if self._session_requested:
                logger.info("Engine stopped, starting the session requested meanwhile")
                if not self._request_engine_start():
                    self._session_requested = False
            return
        if self._session_requested:
            self._schedule_restart()
        else:
            self._set_state(GateState.IDLE)

    def on_transcript(self, event: TranscriptEvent) -> None:
        if self._disposed:
            return
        if self._stop_pending:
            logger.debug("Dropped transcript while stopping: %r", event.text)
            return
        config = self.config
        text = event.text.strip().lower()

        if self._state == GateState.ARMED and config.wake_key in text:
            self._set_state(GateState.ACTIVE)
            logger.info("Wake phrase detected: %r", config.wake_phrase)
            self._emit(GateEvent(type=GateEventType.WAKE_DETECTED, phrase=config.wake_phrase))
            return

        if self._state == GateState.ACTIVE and config.sleep_key in text:
            self._set_state(GateState.ARMED)
            logger.info("Sleep phrase detected: %r", config.sleep_phrase)
            self._emit(GateEvent(type=GateEventType.SLEEP_DETECTED, phrase=config.sleep_phrase))
            return

        if self._state == GateState.ACTIVE:
            if not event.is_final and not config.partial_results:
                return
            self._emit(GateEvent(type=GateEventType.TRANSCRIPT, transcript=GatedTranscript.from_event(event)))
            return

        logger.debug("Dropped transcript in %s: %r", self._state.value, event.text)

    def on_engine_error(self, error: RecognitionRuntimeError) -> None:
        if self._disposed:
            return
        logger.warning("Recognition engine error: %s", error)
        self._emit(GateEvent(type=GateEventType.ERROR, error=str(error)))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_usable(self) -> None:
        if self._disposed:
            raise DisposedError("Transcription gate has been disposed")

    def _request_engine_start(self) -> bool:
        try:
            self.engine.start(self.config)
        except Exception as exc:
            logger.exception("Engine failed to start")
            self.on_engine_error(
                exc if isinstance(exc, RecognitionRuntimeError) else RecognitionRuntimeError(str(exc))
            )
            return False
        self._start_pending = True
        return True

    def _schedule_restart(self) -> None:
        self._cancel_restart()
        loop = self.loop or asyncio.get_running_loop()
        logger.info(
            "Engine ended on its own in %s, restarting in %.2fs",
            self._state.value,
            self.restart_delay_seconds,
        )
        self._restart_handle = loop.call_later(self.restart_delay_seconds, self._restart)

    def _restart(self) -> None:
        self._restart_handle = None
        if self._disposed or not self._session_requested:
            return
        if not self._request_engine_start():
            self._session_requested = False
            self._set_state(GateState.IDLE)

    def _cancel_restart(self) -> None:
        if self._restart_handle is not None:
            self._restart_handle.cancel()
            self._restart_handle = None
            logger.debug("Pending engine restart cancelled")

    def _set_state(self, new_state: GateState) -> None:
        if self._state == new_state:
            return
        old_state = self._state
        self._state = new_state
        logger.info("Gate state %s -> %s", old_state.value, new_state.value)
        self._emit(GateEvent(type=GateEventType.STATUS_CHANGE, state=new_state))

    def _emit(self, event: GateEvent) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("Gate event handler failed for %s", event.type.value)
