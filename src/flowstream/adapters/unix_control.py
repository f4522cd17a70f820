import asyncio
import json
import logging
import os
from collections.abc import AsyncIterator
from pathlib import Path

from flowstream.ports.control import ControlCommand

logger = logging.getLogger(__name__)

DEFAULT_SOCKET_PATH = "/tmp/flowstream.sock"
REQUEST_TIMEOUT_SECONDS = 5.0
REPLY_TIMEOUT_SECONDS = 35.0


def encode_line(data: dict) -> bytes:
    return (json.dumps(data) + "\n").encode()


class UnixSocketControlServer:
    """JSON-lines control socket; each request is answered with its handler's result."""

    def __init__(
        self,
        socket_path: str = DEFAULT_SOCKET_PATH,
        reply_timeout: float = REPLY_TIMEOUT_SECONDS,
    ) -> None:
        self._socket_path = Path(socket_path)
        self._reply_timeout = reply_timeout
        self._server: asyncio.Server | None = None
        self._pending: asyncio.Queue[ControlCommand] = asyncio.Queue()

    async def start(self) -> None:
        self._socket_path.unlink(missing_ok=True)
        self._server = await asyncio.start_unix_server(self._serve, path=str(self._socket_path))
        os.chmod(self._socket_path, 0o600)
        logger.info("Control socket listening at %s", self._socket_path)

    async def stop(self) -> None:
        server, self._server = self._server, None
        if server:
            server.close()
            await server.wait_closed()
        self._socket_path.unlink(missing_ok=True)

    async def commands(self) -> AsyncIterator[ControlCommand]:
        while True:
            yield await self._pending.get()

    async def _serve(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            response = await self._answer(reader)
            if response is not None:
                writer.write(encode_line(response))
                await writer.drain()
        except (ConnectionError, asyncio.IncompleteReadError):
            logger.debug("Control client went away before the reply")
        finally:
            writer.close()
            await writer.wait_closed()

    async def _answer(self, reader: asyncio.StreamReader) -> dict | None:
        try:
            raw = await asyncio.wait_for(reader.readline(), timeout=REQUEST_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("Control client sent no request")
            return None
        if not raw:
            return None

        try:
            request = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Invalid JSON from control client")
            return {"status": "error", "message": "Invalid JSON"}
        if not isinstance(request, dict) or not request.get("action"):
            return {"status": "error", "message": "Missing action"}

        reply = asyncio.get_running_loop().create_future()
        await self._pending.put(
            ControlCommand(action=request["action"], payload=request.get("payload"), reply=reply)
        )
        try:
            return await asyncio.wait_for(reply, timeout=self._reply_timeout)
        except asyncio.TimeoutError:
            logger.warning("No reply to %s within %.0fs", request["action"], self._reply_timeout)
            return {"status": "error", "message": f"Timed out waiting for {request['action']}"}


class UnixSocketControlClient:
    def __init__(self, socket_path: str = DEFAULT_SOCKET_PATH) -> None:
        self._socket_path = socket_path

    async def send_command(self, action: str, payload: dict | None = None) -> dict:
        request = {"action": action, "payload": payload} if payload else {"action": action}
        reader, writer = await asyncio.open_unix_connection(self._socket_path)
        try:
            writer.write(encode_line(request))
            await writer.drain()
            raw = await asyncio.wait_for(reader.readline(), timeout=REPLY_TIMEOUT_SECONDS + 5.0)
        finally:
            writer.close()
            await writer.wait_closed()
        return json.loads(raw) if raw else {"status": "error", "message": "No reply"}
