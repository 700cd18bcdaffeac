import asyncio
from abc import ABC, abstractmethod
from pathlib import Path

import numpy as np
from loguru import logger

from audio.audio_capture import AudioCapture, classify_microphone_error
from audio.vad import VADDetector
from core.errors import CaptureError, CaptureErrorKind

# User-facing messages, keyed by recognition error code
RECOGNITION_ERROR_MESSAGES = {
    "no-speech": (CaptureErrorKind.NO_SPEECH, "No speech detected. Please try again."),
    "audio-capture": (
        CaptureErrorKind.NO_DEVICE,
        "Microphone not found or not accessible. Please check your microphone permissions.",
    ),
    "not-allowed": (
        CaptureErrorKind.PERMISSION_DENIED,
        "Microphone permission denied. Please allow microphone access in your system settings.",
    ),
    "network": (
        CaptureErrorKind.NETWORK,
        "Network error. Please check your internet connection.",
    ),
    "aborted": (CaptureErrorKind.ABORTED, "Speech recognition was aborted."),
    "service-not-allowed": (
        CaptureErrorKind.PERMISSION_DENIED,
        "Speech recognition service not allowed. Please check your settings.",
    ),
}


def recognition_error(code: str) -> CaptureError:
    """Build the CaptureError for a recognition error code."""
    kind, message = RECOGNITION_ERROR_MESSAGES.get(
        code,
        (CaptureErrorKind.OTHER, f"Speech recognition error: {code}. Please try again."),
    )
    return CaptureError(kind, message)


class RecognitionEngine(ABC):
    """One-shot speech recognizer: record a single utterance, return its text."""

    @abstractmethod
    async def recognize(self) -> str:
        """Capture and transcribe one utterance.

        Raises:
            CaptureError: classified failure (no speech, device lost, ...).
        """
        ...

    async def load(self):
        """Load models ahead of the first session."""
        pass


class WhisperRecognizer(RecognitionEngine):
    """Microphone -> Silero-VAD endpointing -> local Whisper (pywhispercpp)."""

    def __init__(
        self,
        model_dir: Path,
        model_name: str = "tiny",
        language: str = "en-US",
        max_duration: float = 15.0,
        n_threads: int = 4,
    ):
        self.model_dir = model_dir
        self.model_name = model_name
        # Whisper wants the bare ISO 639-1 code
        self.language = language.split("-")[0].lower()
        self.n_threads = n_threads
        self._vad = VADDetector(max_duration=max_duration)
        self._model = None

    async def load(self):
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._load_sync)

    def _load_sync(self):
        if self._model is not None:
            return
        from pywhispercpp.model import Model

        model_path = self.model_dir / f"ggml-{self.model_name}.bin"
        if model_path.exists():
            self._model = Model(str(model_path), n_threads=self.n_threads)
        else:
            logger.info("Whisper model not found at {}. Downloading.", model_path)
            self._model = Model(
                self.model_name, models_dir=str(self.model_dir), n_threads=self.n_threads
            )
        logger.info("Whisper STT loaded: {}", self.model_name)

    async def recognize(self) -> str:
        await self.load()

        capture = AudioCapture()
        try:
            capture.open()
            audio = await self._vad.capture_utterance(capture)
        except OSError as e:
            raise classify_microphone_error(e) from e
        finally:
            capture.close()

        if audio is None or len(audio) == 0:
            raise recognition_error("no-speech")

        loop = asyncio.get_running_loop()
        text = await loop.run_in_executor(None, self._transcribe_sync, audio)
        if not text:
            raise recognition_error("no-speech")
        return text

    def _transcribe_sync(self, audio: np.ndarray) -> str:
        audio_float = audio.astype(np.float32) / 32768.0
        segments = self._model.transcribe(audio_float, language=self.language)
        text = " ".join(seg.text.strip() for seg in segments).strip()
        logger.debug("STT result: '{}'", text)
        return text
