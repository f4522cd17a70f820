from typing import Protocol, AsyncIterator


class AudioPermissionError(Exception):
    pass


class AudioDeviceError(Exception):
    pass


class AudioSource(Protocol):
    async def start(self) -> None: ...
    async def stop(self) -> None: ...
    def frames(self) -> AsyncIterator[bytes]: ...
