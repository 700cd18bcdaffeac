import numpy as np
from loguru import logger

from core.errors import CaptureError, CaptureErrorKind

# Target sample rate for Whisper and Silero-VAD
SAMPLE_RATE = 16000
CHANNELS = 1
CHUNK_SIZE = 1280  # 80ms at 16kHz
FORMAT_DTYPE = np.int16

# PortAudio host error codes surfaced through OSError.errno
_PA_INVALID_DEVICE = -9996
_PA_DEVICE_UNAVAILABLE = -9985
_PA_NO_DEFAULT_DEVICE = -9998

PERMISSION_DENIED_MESSAGE = (
    "Microphone permission denied. Please allow microphone access "
    "in your system settings and try again."
)
NO_DEVICE_MESSAGE = "No microphone found. Please connect a microphone and try again."
DEVICE_BUSY_MESSAGE = (
    "Microphone is being used by another application. "
    "Please close other apps using the microphone."
)
UNSUPPORTED_MESSAGE = "Speech recognition is not supported on this system."


def classify_microphone_error(exc: BaseException) -> CaptureError:
    """Map a failure to open the microphone onto a user-actionable error."""
    if isinstance(exc, CaptureError):
        return exc
    if isinstance(exc, ImportError):
        return CaptureError(CaptureErrorKind.UNSUPPORTED, UNSUPPORTED_MESSAGE)
    if isinstance(exc, PermissionError):
        return CaptureError(CaptureErrorKind.PERMISSION_DENIED, PERMISSION_DENIED_MESSAGE)
    if isinstance(exc, OSError):
        if exc.errno in (_PA_INVALID_DEVICE, _PA_NO_DEFAULT_DEVICE):
            return CaptureError(CaptureErrorKind.NO_DEVICE, NO_DEVICE_MESSAGE)
        if exc.errno == _PA_DEVICE_UNAVAILABLE:
            return CaptureError(CaptureErrorKind.DEVICE_BUSY, DEVICE_BUSY_MESSAGE)
    message = str(exc) or "Microphone access denied."
    return CaptureError(CaptureErrorKind.OTHER, message)


def probe_microphone() -> None:
    """Open the default input once and release it straight away.

    Acts as the permission check before a dictation session: the device is
    not held while the recognizer warms up. Raises ``CaptureError``.
    """
    try:
        import pyaudio

        pa = pyaudio.PyAudio()
        try:
            stream = pa.open(
                format=pyaudio.paInt16,
                channels=CHANNELS,
                rate=SAMPLE_RATE,
                input=True,
                frames_per_buffer=CHUNK_SIZE,
            )
            stream.close()
        finally:
            pa.terminate()
    except Exception as e:
        error = classify_microphone_error(e)
        logger.warning("Microphone probe failed ({}): {}", error.kind.value, e)
        raise error from e
    logger.debug("Microphone probe succeeded; device released.")


class AudioCapture:
    """Reads the microphone in fixed-size chunks at 16kHz.

    Tries 16kHz first, falls back to 44.1/48kHz with linear resampling.
    Opened per dictation session and closed as soon as it ends.
    """

    def __init__(self, sample_rate: int = SAMPLE_RATE, chunk_size: int = CHUNK_SIZE):
        self.sample_rate = sample_rate
        self.chunk_size = chunk_size
        self._stream = None
        self._pa = None
        self._capture_rate = sample_rate
        self._capture_chunk = chunk_size

    def open(self):
        if self._stream is not None:
            return

        try:
            import pyaudio
        except ImportError as e:
            raise classify_microphone_error(e) from e

        self._pa = pyaudio.PyAudio()
        last_error: Exception | None = None
        for rate in [self.sample_rate, 44100, 48000]:
            try:
                capture_chunk = (
                    self.chunk_size if rate == self.sample_rate
                    else int(self.chunk_size * rate / self.sample_rate)
                )
                self._stream = self._pa.open(
                    format=pyaudio.paInt16,
                    channels=CHANNELS,
                    rate=rate,
                    input=True,
                    frames_per_buffer=capture_chunk,
                )
                self._capture_rate = rate
                self._capture_chunk = capture_chunk
                logger.info("Audio capture opened at {}Hz (chunk={})", rate, capture_chunk)
                return
            except Exception as e:
                last_error = e
                logger.debug("Sample rate {}Hz not supported: {}", rate, e)

        self.close()
        raise classify_microphone_error(last_error or RuntimeError("No supported sample rate"))

    def _resample(self, chunk: np.ndarray) -> np.ndarray:
        if self._capture_rate == self.sample_rate:
            return chunk

        ratio = self.sample_rate / self._capture_rate
        indices = np.clip(np.arange(self.chunk_size) / ratio, 0, len(chunk) - 1)
        idx_floor = indices.astype(np.int32)
        idx_ceil = np.minimum(idx_floor + 1, len(chunk) - 1)
        frac = indices - idx_floor
        resampled = chunk[idx_floor] * (1 - frac) + chunk[idx_ceil] * frac
        return resampled.astype(FORMAT_DTYPE)

    def read_chunk(self) -> np.ndarray:
        """Blocking read of one chunk at 16kHz. Call from an executor."""
        self.open()
        raw = self._stream.read(self._capture_chunk, exception_on_overflow=False)
        return self._resample(np.frombuffer(raw, dtype=FORMAT_DTYPE))

    def close(self):
        if self._stream is not None:
            try:
                self._stream.stop_stream()
                self._stream.close()
            except OSError as e:
                logger.debug("Error closing capture stream: {}", e)
            self._stream = None
        if self._pa is not None:
            self._pa.terminate()
            self._pa = None
