import numpy as np

SAMPLE_RATE = 16000
FRAME_SAMPLES = 4096
BYTES_PER_SAMPLE = 2


def resample(samples: np.ndarray, source_rate: int, target_rate: int = SAMPLE_RATE) -> np.ndarray:
    if source_rate == target_rate or samples.size == 0:
        return samples.astype(np.float32, copy=False)
    target_length = int(round(samples.size * target_rate / source_rate))
    positions = np.arange(target_length) * (source_rate / target_rate)
    return np.interp(positions, np.arange(samples.size), samples).astype(np.float32)


def float_to_pcm16(samples: np.ndarray) -> bytes:
    clipped = np.clip(samples, -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 32768, clipped * 32767)
    return scaled.astype("<i2").tobytes()


class FrameAssembler:
    """Re-chunks arbitrary-size float blocks into fixed-size int16 PCM frames.

    Resampling is continuous across blocks: the last source sample and the
    fractional read position carry over to the next push.
    """

    def __init__(
        self,
        source_rate: int,
        target_rate: int = SAMPLE_RATE,
        frame_samples: int = FRAME_SAMPLES,
    ) -> None:
        self._source_rate = source_rate
        self._target_rate = target_rate
        self._frame_samples = frame_samples
        self._step = source_rate / target_rate
        self._pending = np.zeros(0, dtype=np.float32)
        self._tail = np.zeros(0, dtype=np.float32)
        self._phase = 0.0

    @property
    def frame_bytes(self) -> int:
        return self._frame_samples * BYTES_PER_SAMPLE

    def push(self, block: np.ndarray) -> list[bytes]:
        samples = np.asarray(block, dtype=np.float32).reshape(-1)
        if self._source_rate != self._target_rate:
            samples = self._resample_continuous(samples)
        self._pending = np.concatenate([self._pending, samples])

        frames = []
        while self._pending.size >= self._frame_samples:
            frames.append(float_to_pcm16(self._pending[: self._frame_samples]))
            self._pending = self._pending[self._frame_samples :]
        return frames

    def reset(self) -> None:
        self._pending = np.zeros(0, dtype=np.float32)
        self._tail = np.zeros(0, dtype=np.float32)
        self._phase = 0.0

    def _resample_continuous(self, samples: np.ndarray) -> np.ndarray:
        source = np.concatenate([self._tail, samples])
        last = source.size - 1
        if source.size == 0 or self._phase > last:
            self._tail = source[-1:]
            self._phase -= max(last, 0)
            return np.zeros(0, dtype=np.float32)

        count = int(np.floor((last - self._phase) / self._step)) + 1
        positions = self._phase + np.arange(count) * self._step
        converted = np.interp(positions, np.arange(source.size), source).astype(np.float32)

        # the kept tail sample becomes index 0 of the next source block
        self._phase = self._phase + count * self._step - last
        self._tail = source[-1:]
        return converted
