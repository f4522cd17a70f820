import base64
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidStatus

from flowstream.ports.transport import (
    LiveSessionSetup,
    ServerMessage,
    SessionClosed,
    SessionOpened,
    TransportEvent,
    TransportFailed,
)

logger = logging.getLogger(__name__)

LIVE_ENDPOINT = (
    "wss://generativelanguage.googleapis.com/ws/"
    "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent"
)
OPEN_TIMEOUT_SECONDS = 10.0


def build_setup_message(setup: LiveSessionSetup) -> dict[str, Any]:
    model = setup.model if setup.model.startswith("models/") else f"models/{setup.model}"
    message: dict[str, Any] = {
        "model": model,
        "generationConfig": {"responseModalities": list(setup.response_modalities)},
        "systemInstruction": {"parts": [{"text": setup.system_instruction}]},
    }
    if setup.input_transcription:
        message["inputAudioTranscription"] = {}
    if setup.output_transcription:
        message["outputAudioTranscription"] = {}
    return {"setup": message}


def build_audio_message(frame: bytes, sample_rate: int) -> dict[str, Any]:
    return {
        "realtimeInput": {
            "mediaChunks": [
                {
                    "mimeType": f"audio/pcm;rate={sample_rate}",
                    "data": base64.b64encode(frame).decode("ascii"),
                }
            ]
        }
    }


class GeminiLiveTransport:
    def __init__(
        self,
        api_key: str,
        setup: LiveSessionSetup,
        endpoint: str = LIVE_ENDPOINT,
    ) -> None:
        self._api_key = api_key
        self._setup = setup
        self._endpoint = endpoint
        self._websocket = None
        self._closed = False

    async def events(self) -> AsyncIterator[TransportEvent]:
        try:
            async with websockets.connect(
                f"{self._endpoint}?key={self._api_key}",
                open_timeout=OPEN_TIMEOUT_SECONDS,
                max_size=None,
            ) as websocket:
                self._websocket = websocket
                if self._closed:
                    return
                await websocket.send(json.dumps(build_setup_message(self._setup)))
                logger.info("Live session requested (model=%s)", self._setup.model)

                async for raw in websocket:
                    try:
                        message = json.loads(raw)
                    except json.JSONDecodeError:
                        logger.warning("Invalid JSON from live session, skipped")
                        continue
                    if "setupComplete" in message:
                        yield SessionOpened()
                    else:
                        yield ServerMessage(payload=message)

                yield SessionClosed(code=websocket.close_code, reason=websocket.close_reason or "")
        except ConnectionClosed as exc:
            yield SessionClosed(
                code=exc.rcvd.code if exc.rcvd else None,
                reason=exc.rcvd.reason if exc.rcvd else "",
            )
        except InvalidStatus as exc:
            logger.error("Live session rejected with HTTP %d", exc.response.status_code)
            yield SessionClosed(
                code=exc.response.status_code,
                reason=exc.response.reason_phrase,
            )
        except (InvalidHandshake, OSError, TimeoutError) as exc:
            logger.error("Live session transport failure: %s", exc)
            yield TransportFailed(error=exc)
        finally:
            self._websocket = None

    async def send_audio(self, frame: bytes) -> None:
        websocket = self._websocket
        if websocket is None or self._closed:
            return
        try:
            await websocket.send(json.dumps(build_audio_message(frame, self._setup.sample_rate)))
        except ConnectionClosed:
            logger.debug("Audio frame not sent, connection closed")

    async def close(self) -> None:
        self._closed = True
        websocket, self._websocket = self._websocket, None
        if websocket is not None:
            await websocket.close()
