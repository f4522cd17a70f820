import asyncio
import logging
from collections.abc import AsyncIterator

import janus
import numpy as np
import sounddevice as sd

from flowstream.domain.pcm import FRAME_SAMPLES, SAMPLE_RATE, FrameAssembler
from flowstream.ports.audio import AudioDeviceError, AudioPermissionError

logger = logging.getLogger(__name__)

PERMISSION_MARKERS = ("permission", "denied", "not authorized", "not permitted")
QUEUE_MAX_FRAMES = 64


class SounddeviceAudioSource:
    def __init__(
        self,
        device: str | int | None = None,
        sample_rate: int = SAMPLE_RATE,
        frame_samples: int = FRAME_SAMPLES,
    ) -> None:
        self._device = device
        self._sample_rate = sample_rate
        self._frame_samples = frame_samples
        self._stream: sd.InputStream | None = None
        self._queue: janus.Queue[bytes] | None = None
        self._assembler: FrameAssembler | None = None

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def frame_samples(self) -> int:
        return self._frame_samples

    async def start(self) -> None:
        if self._stream is not None:
            return

        device = self._resolve_device()
        device_rate = self._pick_device_rate(device)
        self._assembler = FrameAssembler(
            source_rate=device_rate,
            target_rate=self._sample_rate,
            frame_samples=self._frame_samples,
        )
        self._queue = janus.Queue(maxsize=QUEUE_MAX_FRAMES)
        queue = self._queue
        assembler = self._assembler

        def audio_callback(indata: np.ndarray, frames: int, time_info, status) -> None:
            if status:
                logger.warning("Audio capture status: %s", status)
            for frame in assembler.push(indata[:, 0]):
                try:
                    queue.sync_q.put_nowait(frame)
                except janus.SyncQueueFull:
                    logger.debug("Capture queue full, frame dropped")
                except (janus.SyncQueueShutDown, RuntimeError):
                    return

        blocksize = int(round(self._frame_samples * device_rate / self._sample_rate))
        try:
            self._stream = sd.InputStream(
                device=device,
                samplerate=device_rate,
                channels=1,
                dtype="float32",
                blocksize=blocksize,
                callback=audio_callback,
            )
            self._stream.start()
        except PermissionError as exc:
            await self.stop()
            raise AudioPermissionError(str(exc)) from exc
        except (sd.PortAudioError, OSError, ValueError) as exc:
            await self.stop()
            if any(marker in str(exc).lower() for marker in PERMISSION_MARKERS):
                raise AudioPermissionError(str(exc)) from exc
            raise AudioDeviceError(str(exc)) from exc

        logger.info(
            "Audio capture started (device=%s, device_rate=%d, rate=%d, frame=%d samples)",
            device, device_rate, self._sample_rate, self._frame_samples,
        )

    async def stop(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                stream.stop()
            finally:
                stream.close()
            logger.info("Audio capture stopped")
        queue, self._queue = self._queue, None
        if queue is not None:
            queue.close()
            await queue.wait_closed()
        if self._assembler is not None:
            self._assembler.reset()
            self._assembler = None

    async def frames(self) -> AsyncIterator[bytes]:
        queue = self._queue
        if queue is None:
            return
        while True:
            try:
                frame = await asyncio.wait_for(queue.async_q.get(), timeout=1.0)
            except asyncio.TimeoutError:
                if self._queue is not queue:
                    break
                continue
            except (janus.AsyncQueueShutDown, RuntimeError):
                break
            yield frame

    def _pick_device_rate(self, device: str | int | None) -> int:
        try:
            sd.check_input_settings(
                device=device, samplerate=self._sample_rate, channels=1, dtype="float32"
            )
            return self._sample_rate
        except PermissionError as exc:
            raise AudioPermissionError(str(exc)) from exc
        except (sd.PortAudioError, ValueError):
            pass
        try:
            info = sd.query_devices(device, kind="input")
        except (sd.PortAudioError, ValueError) as exc:
            raise AudioDeviceError(str(exc)) from exc
        rate = int(info["default_samplerate"])
        logger.info("Device does not support %d Hz, capturing at %d Hz and resampling", self._sample_rate, rate)
        return rate

    def _resolve_device(self) -> str | int | None:
        if self._device is None or self._device == "":
            return None
        if isinstance(self._device, int):
            return self._device
        try:
            return int(self._device)
        except ValueError:
            pass
        try:
            devices = sd.query_devices()
        except sd.PortAudioError as exc:
            raise AudioDeviceError(str(exc)) from exc
        for i, dev in enumerate(devices):
            if self._device.lower() in dev["name"].lower() and dev["max_input_channels"] > 0:
                logger.info("Resolved device '%s' -> %d (%s)", self._device, i, dev["name"])
                return i
        raise AudioDeviceError(f"No input device matching '{self._device}'")
