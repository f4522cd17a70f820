import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from itertools import count
from typing import Any

from flowstream.domain.errors import (
    ClassifiedError,
    SessionSetupError,
    audio_init_failed,
    classify_close,
    classify_transport_failure,
    missing_credential,
    permission_denied,
)
from flowstream.domain.state import SessionState, reports_errors, validate_transition
from flowstream.domain.transcript import Speaker
from flowstream.ports.audio import AudioDeviceError, AudioPermissionError, AudioSource
from flowstream.ports.transport import (
    ServerMessage,
    SessionClosed,
    SessionOpened,
    StreamingTransport,
    TransportFailed,
)

logger = logging.getLogger(__name__)

AudioSourceFactory = Callable[[], AudioSource]
TransportFactory = Callable[[], StreamingTransport]


@dataclass(frozen=True)
class SessionHandlers:
    on_transcription_delta: Callable[[str, Speaker], None]
    on_turn_complete: Callable[[], None]
    on_error: Callable[[ClassifiedError], None]


class LiveSession:
    def __init__(self, session_id: int, audio: AudioSource) -> None:
        self.session_id = session_id
        self.audio = audio
        self.transport: StreamingTransport | None = None
        self.tasks: list[asyncio.Task] = []
        self.frames_forwarded = 0
        self.frames_dropped = 0
        self._state = SessionState.IDLE

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == SessionState.READY

    def transition_to(self, target: SessionState) -> None:
        validate_transition(self._state, target)
        logger.info("Session %d: %s -> %s", self.session_id, self._state.name, target.name)
        self._state = target


class StreamingSessionManager:
    """Runs at most one live transcription session at a time.

    Each session owns two tasks: one consuming the transport's event channel
    and one pumping captured audio frames. Both are cancelled on teardown, and
    both re-check that their session is still current before acting.
    """

    def __init__(
        self,
        api_key: str,
        audio_factory: AudioSourceFactory,
        transport_factory: TransportFactory,
    ) -> None:
        self._api_key = api_key
        self._audio_factory = audio_factory
        self._transport_factory = transport_factory
        self._session: LiveSession | None = None
        self._session_ids = count(1)

    @property
    def session(self) -> LiveSession | None:
        return self._session

    @property
    def state(self) -> SessionState:
        if self._session is None:
            return SessionState.IDLE
        return self._session.state

    async def connect(self, handlers: SessionHandlers) -> LiveSession:
        await self.disconnect()

        if not self._api_key:
            logger.error("No API key configured, not connecting")
            raise SessionSetupError(missing_credential())

        session = LiveSession(next(self._session_ids), audio=self._audio_factory())
        self._session = session
        session.transition_to(SessionState.CONNECTING)

        try:
            await session.audio.start()
        except AudioPermissionError as exc:
            logger.error("Microphone access denied: %s", exc)
            await self._abandon(session)
            raise SessionSetupError(permission_denied(exc)) from exc
        except AudioDeviceError as exc:
            logger.error("Audio engine failed to start: %s", exc)
            await self._abandon(session)
            raise SessionSetupError(audio_init_failed(exc)) from exc
        except Exception as exc:
            logger.exception("Audio engine failed to start")
            await self._abandon(session)
            raise SessionSetupError(audio_init_failed(exc)) from exc

        if not self._is_current(session):
            logger.info("Session %d superseded during setup", session.session_id)
            await self._stop_audio(session)
            return session

        session.transport = self._transport_factory()
        session.tasks = [
            asyncio.create_task(
                self._consume_events(session, handlers),
                name=f"flowstream-session-{session.session_id}-events",
            ),
            asyncio.create_task(
                self._pump_audio(session, handlers),
                name=f"flowstream-session-{session.session_id}-audio",
            ),
        ]
        return session

    async def disconnect(self) -> None:
        session, self._session = self._session, None
        if session is None:
            return
        await self._release(session)

    def _is_current(self, session: LiveSession) -> bool:
        return session is self._session

    async def _abandon(self, session: LiveSession) -> None:
        if self._is_current(session):
            self._session = None
        await self._release(session)

    async def _consume_events(self, session: LiveSession, handlers: SessionHandlers) -> None:
        try:
            async for event in session.transport.events():
                if not self._is_current(session):
                    return
                if isinstance(event, SessionOpened):
                    if session.state == SessionState.CONNECTING:
                        session.transition_to(SessionState.READY)
                elif isinstance(event, ServerMessage):
                    if session.is_ready:
                        self._dispatch(session, event.payload, handlers)
                    else:
                        logger.debug("Session %d: message before ready, dropped", session.session_id)
                elif isinstance(event, SessionClosed):
                    await self._fail(session, classify_close(event.code, event.reason), handlers)
                    return
                elif isinstance(event, TransportFailed):
                    await self._fail(session, classify_transport_failure(event.error), handlers)
                    return
            await self._fail(session, classify_close(None), handlers)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Session %d event loop failed", session.session_id)
            await self._fail(session, classify_transport_failure(exc), handlers)

    def _dispatch(
        self, session: LiveSession, payload: dict[str, Any], handlers: SessionHandlers
    ) -> None:
        if "goAway" in payload:
            logger.warning("Session %d: service will close soon: %s", session.session_id, payload["goAway"])

        content = payload.get("serverContent")
        if not content:
            return

        input_text = (content.get("inputTranscription") or {}).get("text")
        if input_text:
            logger.debug("Delta [USER]: %r", input_text)
            handlers.on_transcription_delta(input_text, Speaker.USER)

        output_text = (content.get("outputTranscription") or {}).get("text")
        if output_text:
            logger.debug("Delta [SYSTEM]: %r", output_text)
            handlers.on_transcription_delta(output_text, Speaker.SYSTEM)

        if content.get("turnComplete"):
            handlers.on_turn_complete()

    async def _fail(
        self, session: LiveSession, error: ClassifiedError, handlers: SessionHandlers
    ) -> None:
        try:
            if self._is_current(session) and reports_errors(session.state):
                logger.error("Session %d error (%s): %s", session.session_id, error.kind.name, error.message)
                self._session = None
                handlers.on_error(error)
            else:
                logger.debug("Session %d: suppressed error after teardown: %s", session.session_id, error.message)
        finally:
            await self._release(session)

    async def _pump_audio(self, session: LiveSession, handlers: SessionHandlers) -> None:
        try:
            async for frame in session.audio.frames():
                if not self._is_current(session) or not session.is_ready:
                    session.frames_dropped += 1
                    continue
                try:
                    await session.transport.send_audio(frame)
                except Exception:
                    logger.warning("Session %d: failed to forward audio frame", session.session_id, exc_info=True)
                    continue
                session.frames_forwarded += 1
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Session %d audio capture failed", session.session_id)
            await self._fail(session, audio_init_failed(exc), handlers)

    async def _release(self, session: LiveSession) -> None:
        if session.state in (SessionState.CLOSING, SessionState.CLOSED):
            return
        session.transition_to(SessionState.CLOSING)

        current = asyncio.current_task()
        pending = [task for task in session.tasks if task is not current and not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        await self._stop_audio(session)

        if session.transport is not None:
            try:
                await session.transport.close()
            except Exception:
                logger.warning("Session %d: transport close failed", session.session_id, exc_info=True)

        session.transition_to(SessionState.CLOSED)
        logger.info(
            "Session %d released (forwarded=%d, dropped=%d)",
            session.session_id,
            session.frames_forwarded,
            session.frames_dropped,
        )

    async def _stop_audio(self, session: LiveSession) -> None:
        try:
            await session.audio.stop()
        except Exception:
            logger.warning("Session %d: audio release failed", session.session_id, exc_info=True)
