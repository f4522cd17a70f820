import asyncio
import logging
from collections.abc import Callable
from enum import Enum, auto

from flowstream.domain.errors import ClassifiedError, ErrorKind, SessionSetupError
from flowstream.domain.session import SessionHandlers, StreamingSessionManager
from flowstream.domain.transcript import TranscriptAggregator

logger = logging.getLogger(__name__)

MAX_AUTO_RETRIES = 2
RECONNECT_DELAY_SECONDS = 1.0

ErrorListener = Callable[[ClassifiedError], None]


class RecordingStatus(Enum):
    IDLE = auto()
    RECORDING = auto()
    ERROR = auto()


class ReconnectionController:
    def __init__(
        self,
        manager: StreamingSessionManager,
        aggregator: TranscriptAggregator,
        max_auto_retries: int = MAX_AUTO_RETRIES,
        reconnect_delay_seconds: float = RECONNECT_DELAY_SECONDS,
    ) -> None:
        self._manager = manager
        self._aggregator = aggregator
        self._max_auto_retries = max_auto_retries
        self._reconnect_delay_seconds = reconnect_delay_seconds

        self._status = RecordingStatus.IDLE
        self._recording_intent = False
        self._retry_count = 0
        self._last_error: ClassifiedError | None = None
        self._retry_task: asyncio.Task | None = None
        self._error_listeners: list[ErrorListener] = []

    @property
    def status(self) -> RecordingStatus:
        return self._status

    @property
    def recording_intent(self) -> bool:
        return self._recording_intent

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def last_error(self) -> ClassifiedError | None:
        return self._last_error

    @property
    def reconnect_pending(self) -> bool:
        return self._retry_task is not None and not self._retry_task.done()

    def subscribe_errors(self, listener: ErrorListener) -> None:
        self._error_listeners.append(listener)

    async def start_recording(self) -> bool:
        if self._status == RecordingStatus.ERROR:
            logger.warning("Microphone is blocked until the error is acknowledged")
            return False

        self._cancel_retry()
        self._retry_count = 0
        self._last_error = None
        self._recording_intent = True
        self._set_status(RecordingStatus.RECORDING)
        self._aggregator.begin_recording()
        await self._connect()
        return self._status == RecordingStatus.RECORDING

    async def stop_recording(self) -> None:
        if self._status != RecordingStatus.RECORDING:
            return
        self._recording_intent = False
        self._cancel_retry()
        await self._manager.disconnect()
        self._aggregator.on_turn_complete()
        self._retry_count = 0
        self._set_status(RecordingStatus.IDLE)

    async def toggle(self) -> bool:
        if self._status == RecordingStatus.RECORDING:
            await self.stop_recording()
            return False
        return await self.start_recording()

    def acknowledge_error(self) -> None:
        self._last_error = None
        self._retry_count = 0
        if self._status == RecordingStatus.ERROR:
            self._set_status(RecordingStatus.IDLE)

    async def shutdown(self) -> None:
        self._recording_intent = False
        self._cancel_retry()
        await self._manager.disconnect()

    async def _connect(self) -> None:
        handlers = SessionHandlers(
            on_transcription_delta=self._aggregator.on_delta,
            on_turn_complete=self._aggregator.on_turn_complete,
            on_error=self._on_error,
        )
        try:
            await self._manager.connect(handlers)
        except SessionSetupError as exc:
            self._on_error(exc.error)

    def _on_error(self, error: ClassifiedError) -> None:
        self._last_error = error
        for listener in self._error_listeners:
            listener(error)

        if (
            error.kind == ErrorKind.NETWORK
            and self._recording_intent
            and self._retry_count < self._max_auto_retries
        ):
            if self.reconnect_pending:
                return
            self._retry_count += 1
            logger.warning(
                "Reconnecting in %.1fs (attempt %d/%d)",
                self._reconnect_delay_seconds,
                self._retry_count,
                self._max_auto_retries,
            )
            self._retry_task = asyncio.create_task(self._reconnect_after_delay())
            return

        logger.error("Recording stopped (%s): %s", error.kind.name, error.message)
        self._recording_intent = False
        self._cancel_retry()
        self._set_status(RecordingStatus.ERROR)

    async def _reconnect_after_delay(self) -> None:
        await asyncio.sleep(self._reconnect_delay_seconds)
        if not self._recording_intent:
            logger.info("Reconnect skipped, recording was stopped")
            return
        await self._connect()

    def _cancel_retry(self) -> None:
        if self._retry_task and not self._retry_task.done():
            if self._retry_task is not asyncio.current_task():
                self._retry_task.cancel()
        self._retry_task = None

    def _set_status(self, status: RecordingStatus) -> None:
        if status != self._status:
            logger.info("Status: %s -> %s", self._status.name, status.name)
        self._status = status
