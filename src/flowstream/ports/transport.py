from dataclasses import dataclass, field
from typing import Any, Protocol, AsyncIterator


@dataclass(frozen=True)
class TransportEvent:
    pass


@dataclass(frozen=True)
class SessionOpened(TransportEvent):
    pass


@dataclass(frozen=True)
class ServerMessage(TransportEvent):
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SessionClosed(TransportEvent):
    code: int | None = None
    reason: str = ""


@dataclass(frozen=True)
class TransportFailed(TransportEvent):
    error: BaseException | None = None


@dataclass(frozen=True)
class LiveSessionSetup:
    model: str
    system_instruction: str
    sample_rate: int = 16000
    response_modalities: tuple[str, ...] = ("AUDIO",)
    input_transcription: bool = True
    output_transcription: bool = True


class StreamingTransport(Protocol):
    def events(self) -> AsyncIterator[TransportEvent]: ...
    async def send_audio(self, frame: bytes) -> None: ...
    async def close(self) -> None: ...
