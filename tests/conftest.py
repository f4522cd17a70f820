import asyncio
from collections.abc import AsyncIterator

import numpy as np
import pytest

from flowstream.domain.session import SessionHandlers, StreamingSessionManager
from flowstream.domain.transcript import Speaker, TranscriptAggregator
from flowstream.ports.transport import (
    ServerMessage,
    SessionClosed,
    SessionOpened,
    TransportEvent,
    TransportFailed,
)


SAMPLE_RATE = 16000
FRAME_SAMPLES = 4096


def generate_silence(num_samples: int = FRAME_SAMPLES) -> bytes:
    return np.zeros(num_samples, dtype=np.int16).tobytes()


def generate_sine_wave(
    frequency: float = 440.0,
    num_samples: int = FRAME_SAMPLES,
    amplitude: float = 0.8,
    sample_rate: int = SAMPLE_RATE,
) -> bytes:
    t = np.arange(num_samples) / sample_rate
    signal = np.sin(2 * np.pi * frequency * t) * amplitude
    return (signal * 32767).astype(np.int16).tobytes()


async def settle(iterations: int = 20) -> None:
    for _ in range(iterations):
        await asyncio.sleep(0)


def transcription_message(
    input_text: str | None = None,
    output_text: str | None = None,
    turn_complete: bool = False,
) -> dict:
    content: dict = {}
    if input_text is not None:
        content["inputTranscription"] = {"text": input_text}
    if output_text is not None:
        content["outputTranscription"] = {"text": output_text}
    if turn_complete:
        content["turnComplete"] = True
    return {"serverContent": content}


class FakeAudioSource:
    def __init__(
        self,
        start_error: Exception | None = None,
        stop_error: Exception | None = None,
    ) -> None:
        self._start_error = start_error
        self._stop_error = stop_error
        self._queue: asyncio.Queue[bytes | Exception | None] = asyncio.Queue()
        self.started = False
        self.start_calls = 0
        self.stop_calls = 0

    async def start(self) -> None:
        self.start_calls += 1
        if self._start_error:
            raise self._start_error
        self.started = True

    async def stop(self) -> None:
        self.stop_calls += 1
        if self.started:
            self.started = False
            self._queue.put_nowait(None)
        if self._stop_error:
            raise self._stop_error

    async def frames(self) -> AsyncIterator[bytes]:
        while True:
            frame = await self._queue.get()
            if frame is None:
                return
            if isinstance(frame, Exception):
                raise frame
            yield frame

    def push(self, frame: bytes) -> None:
        self._queue.put_nowait(frame)

    def break_capture(self, error: Exception) -> None:
        self._queue.put_nowait(error)


class FakeTransport:
    def __init__(
        self,
        send_error: Exception | None = None,
        close_error: Exception | None = None,
    ) -> None:
        self._events: asyncio.Queue[TransportEvent | None] = asyncio.Queue()
        self._send_error = send_error
        self._close_error = close_error
        self.sent: list[bytes] = []
        self.closed = False
        self.close_calls = 0

    async def events(self) -> AsyncIterator[TransportEvent]:
        while True:
            event = await self._events.get()
            if event is None:
                return
            yield event
            if isinstance(event, (SessionClosed, TransportFailed)):
                return

    async def send_audio(self, frame: bytes) -> None:
        if self._send_error:
            raise self._send_error
        self.sent.append(frame)

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True
        self._events.put_nowait(None)
        if self._close_error:
            raise self._close_error

    def open(self) -> None:
        self._events.put_nowait(SessionOpened())

    def message(self, payload: dict) -> None:
        self._events.put_nowait(ServerMessage(payload=payload))

    def drop(self, code: int | None = 1006, reason: str = "") -> None:
        self._events.put_nowait(SessionClosed(code=code, reason=reason))

    def fail(self, error: BaseException) -> None:
        self._events.put_nowait(TransportFailed(error=error))


class FakeAudioFactory:
    def __init__(self, **kwargs) -> None:
        self._kwargs = kwargs
        self.created: list[FakeAudioSource] = []

    def __call__(self) -> FakeAudioSource:
        source = FakeAudioSource(**self._kwargs)
        self.created.append(source)
        return source

    @property
    def latest(self) -> FakeAudioSource:
        return self.created[-1]


class FakeTransportFactory:
    def __init__(self, **kwargs) -> None:
        self._kwargs = kwargs
        self.created: list[FakeTransport] = []

    def __call__(self) -> FakeTransport:
        transport = FakeTransport(**self._kwargs)
        self.created.append(transport)
        return transport

    @property
    def latest(self) -> FakeTransport:
        return self.created[-1]


class FakeRefiner:
    def __init__(self, suffix: str = ".", fail: bool = False) -> None:
        self._suffix = suffix
        self._fail = fail
        self.calls: list[str] = []
        self.release = asyncio.Event()
        self.release.set()

    async def refine(self, text: str) -> str:
        self.calls.append(text)
        await self.release.wait()
        if self._fail:
            return text
        return text.capitalize() + self._suffix


class RecordingHandlers:
    def __init__(self) -> None:
        self.deltas: list[tuple[str, Speaker]] = []
        self.turns = 0
        self.errors = []

    @property
    def handlers(self) -> SessionHandlers:
        return SessionHandlers(
            on_transcription_delta=lambda text, speaker: self.deltas.append((text, speaker)),
            on_turn_complete=self._on_turn_complete,
            on_error=self.errors.append,
        )

    def _on_turn_complete(self) -> None:
        self.turns += 1


@pytest.fixture
def audio_factory():
    return FakeAudioFactory()


@pytest.fixture
def transport_factory():
    return FakeTransportFactory()


@pytest.fixture
def manager(audio_factory, transport_factory):
    return StreamingSessionManager(
        api_key="test-key",
        audio_factory=audio_factory,
        transport_factory=transport_factory,
    )


@pytest.fixture
def recording_handlers():
    return RecordingHandlers()


@pytest.fixture
def aggregator():
    return TranscriptAggregator()


@pytest.fixture
def fake_refiner():
    return FakeRefiner()
