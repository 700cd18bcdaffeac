import asyncio
from typing import Optional

import numpy as np
from loguru import logger

from audio.audio_capture import SAMPLE_RATE, AudioCapture

# Silero-VAD requires exactly this many samples per call at 16kHz
_VAD_CHUNK_SAMPLES = 512


class VADDetector:
    """Ends a dictation when the speaker goes quiet (Silero-VAD).

    A dictation is a single utterance: it stops after ``silence_duration`` of
    non-speech following speech, after ``max_duration``, or after
    ``initial_wait`` with no speech at all.
    """

    def __init__(
        self,
        sample_rate: int = SAMPLE_RATE,
        silence_duration: float = 1.0,
        max_duration: float = 15.0,
        speech_threshold: float = 0.5,
    ):
        self.sample_rate = sample_rate
        self.silence_duration = silence_duration
        self.max_duration = max_duration
        self.speech_threshold = speech_threshold
        self._model = None

    def _ensure_model(self):
        if self._model is not None:
            return

        import torch
        model, _utils = torch.hub.load(
            repo_or_dir="snakers4/silero-vad",
            model="silero_vad",
            trust_repo=True,
        )
        self._model = model
        logger.info("Silero-VAD loaded.")

    async def capture_utterance(
        self, audio_capture: AudioCapture, initial_wait: float = 5.0
    ) -> Optional[np.ndarray]:
        """Record one utterance. Returns None if nobody spoke.

        Cancelling the awaiting task stops the recording between chunks.
        """
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._ensure_model)
        self._model.reset_states()

        frames = []
        speech_started = False
        silence_time = 0.0
        total_time = 0.0
        vad_buffer = np.array([], dtype=np.int16)

        while total_time < self.max_duration:
            chunk = await loop.run_in_executor(None, audio_capture.read_chunk)
            frames.append(chunk)
            total_time += len(chunk) / self.sample_rate
            vad_buffer = np.concatenate([vad_buffer, chunk])

            while len(vad_buffer) >= _VAD_CHUNK_SAMPLES:
                window = vad_buffer[:_VAD_CHUNK_SAMPLES]
                vad_buffer = vad_buffer[_VAD_CHUNK_SAMPLES:]

                is_speech = await loop.run_in_executor(None, self._is_speech, window)
                if is_speech:
                    speech_started = True
                    silence_time = 0.0
                elif speech_started:
                    silence_time += _VAD_CHUNK_SAMPLES / self.sample_rate
                    if silence_time >= self.silence_duration:
                        logger.debug("End of utterance after {:.1f}s", total_time)
                        return np.concatenate(frames)

            if total_time >= initial_wait and not speech_started:
                logger.debug("No speech within {:.1f}s.", initial_wait)
                return None

        return np.concatenate(frames) if speech_started else None

    def _is_speech(self, window: np.ndarray) -> bool:
        import torch

        audio_float = window.astype(np.float32) / 32768.0
        confidence = self._model(torch.from_numpy(audio_float), self.sample_rate).item()
        return confidence > self.speech_threshold
