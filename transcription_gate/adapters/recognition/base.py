import asyncio
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable

from transcription_gate.core.logger import get_logger
from transcription_gate.domain.errors import EngineUnavailableError, RecognitionRuntimeError
from transcription_gate.domain.models import GateConfiguration, TranscriptEvent
from transcription_gate.ports.recognition import RecognitionEnginePort, RecognitionListener

logger = get_logger("adapters.recognition.base")


class ThreadedRecognitionEngine(RecognitionEnginePort, ABC):
    """Runs recognition sessions on a worker thread.

    Every listener callback is marshalled onto the event loop that called
    ``start`` so the listener never sees concurrent calls. A session always
    ends with exactly one ``on_engine_stop``, whether it was requested,
    failed, or ran out of speech.
    """

    name = "engine"
    # release() joins on the event loop thread

    release_join_timeout_seconds = 0.5

    def __init__(self) -> None:
        self._listener: RecognitionListener | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._session_open = False
        self._released = False

    def attach(self, listener: RecognitionListener) -> None:
        if self._released:
            raise EngineUnavailableError(f"{self.name} engine has been released")
        if self._listener is not None and self._listener is not listener:
            raise EngineUnavailableError(f"{self.name} engine already has a listener")
        self._listener = listener

    def start(self, config: GateConfiguration) -> None:
        if self._released:
            raise EngineUnavailableError(f"{self.name} engine has been released")
        if self._listener is None:
            raise RecognitionRuntimeError(f"{self.name} engine has no listener attached")
        if self._session_open:
            raise RecognitionRuntimeError(f"{self.name} engine is already running")

        self._loop = asyncio.get_running_loop()
        self._session_open = True
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._worker,
            args=(config, self._stop_event),
            name=f"{self.name}-recognition",
            daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.release_join_timeout_seconds)
            if thread.is_alive():
                logger.warning(
                    "%s recognition thread still busy after %.1fs, leaving it to exit on its own",
                    self.name,
                    self.release_join_timeout_seconds,
                )
        self._thread = None
        self._listener = None
        logger.info("%s engine released", self.name)

    @property
    def is_running(self) -> bool:
        return self._session_open

    @abstractmethod
    def _run_session(self, config: GateConfiguration, stop_event: threading.Event) -> None:
        """Recognise until ``stop_event`` is set or the session ends on its own.

        Runs on the worker thread; report results with ``_emit_transcript``.
        """

    def _emit_transcript(self, event: TranscriptEvent) -> None:
        listener = self._listener
        if listener is not None:
            self._dispatch(listener.on_transcript, event)

    def _worker(self, config: GateConfiguration, stop_event: threading.Event) -> None:
        listener = self._listener
        if listener is None:
            self._session_open = False
            return
        self._dispatch(listener.on_engine_start)
        try:
            self._run_session(config, stop_event)
        except RecognitionRuntimeError as exc:
            logger.warning("%s session failed: %s", self.name, exc)
            self._dispatch(listener.on_engine_error, exc)
        except Exception as exc:
            logger.exception("%s session crashed", self.name)
            self._dispatch(listener.on_engine_error, RecognitionRuntimeError(str(exc) or type(exc).__name__))
        finally:
            # the next session may start as soon as the listener hears about the stop
            self._session_open = False
            self._dispatch(listener.on_engine_stop)

    def _dispatch(self, callback: Callable[..., None], *args: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug("Event loop gone, dropping %s callback", getattr(callback, "__name__", callback))
            return
        try:
            loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # loop closed between the check and the call
            logger.debug("Event loop closed, dropping callback")
