import asyncio
import io
import json
import wave
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

import numpy as np
from loguru import logger

from core.errors import PlaybackErrorKind, SynthesisError

_NATURAL_LABELS = ("natural", "neural")


@dataclass(frozen=True)
class VoiceInfo:
    name: str
    language: str       # BCP-47 style, e.g. "en-US"
    local: bool = True  # Model files are on this machine
    path: Optional[Path] = None


def _primary_language(tag: str) -> str:
    return tag.replace("_", "-").split("-")[0].lower()


def select_voice(voices: Iterable[VoiceInfo], language: str) -> Optional[VoiceInfo]:
    """Pick the best voice for ``language``.

    Preference: a natural/neural-labeled voice in the language, then a local
    voice in the language, then any voice in the language. None means the
    engine default.
    """
    wanted = _primary_language(language)
    matching = [v for v in voices if _primary_language(v.language) == wanted]

    for voice in matching:
        if any(label in voice.name.lower() for label in _NATURAL_LABELS):
            return voice
    for voice in matching:
        if voice.local:
            return voice
    return matching[0] if matching else None


def discover_voices(model_dir: Path) -> list[VoiceInfo]:
    """List the Piper voices installed under ``model_dir``."""
    voices = []
    if not model_dir.exists():
        return voices

    for model_path in sorted(model_dir.glob("*.onnx")):
        config_path = model_path.with_suffix(".onnx.json")
        language = model_path.stem.split("-")[0]  # "en_US-lessac-medium" -> "en_US"
        if config_path.exists():
            try:
                config = json.loads(config_path.read_text())
                language = config.get("language", {}).get("code", language)
            except (OSError, ValueError) as e:
                logger.warning("Unreadable voice config {}: {}", config_path, e)
        voices.append(VoiceInfo(
            name=model_path.stem,
            language=language.replace("_", "-"),
            local=True,
            path=model_path,
        ))
    return voices


class TextToSpeech:
    """On-device text-to-speech using Piper voices."""

    def __init__(
        self,
        model_dir: Path,
        language: str = "en-US",
        default_voice: str = "en_US-lessac-medium",
    ):
        self.model_dir = model_dir
        self.language = language
        self.default_voice = default_voice
        self._piper = None
        self.voice: Optional[VoiceInfo] = None

    async def load(self):
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._load_sync)

    def _load_sync(self):
        if self._piper is not None:
            return
        from piper import PiperVoice

        self.voice = select_voice(discover_voices(self.model_dir), self.language)
        if self.voice is None:
            model_path = self.model_dir / f"{self.default_voice}.onnx"
            logger.info("No {} voice found, using default {}", self.language, self.default_voice)
        else:
            model_path = self.voice.path
            logger.info("Piper voice selected: {}", self.voice.name)

        if not model_path.exists():
            raise SynthesisError(
                PlaybackErrorKind.OTHER,
                "No speech voice is installed. Please download a Piper voice.",
            )
        self._piper = PiperVoice.load(
            str(model_path), config_path=str(model_path.with_suffix(".onnx.json"))
        )

    async def synthesize(self, text: str) -> bytes:
        """Synthesize ``text`` to WAV bytes."""
        if not text or not text.strip():
            return b""
        await self.load()
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._synthesize_sync, text)

    def _synthesize_sync(self, text: str) -> bytes:
        chunks = []
        sample_rate = 22050
        for chunk in self._piper.synthesize(text):
            sample_rate = getattr(chunk, "sample_rate", sample_rate)
            chunks.append((chunk.audio_float_array * 32767).astype(np.int16))

        if not chunks:
            logger.warning("TTS produced no audio for: '{}'", text[:50])
            return b""

        wav_buffer = io.BytesIO()
        with wave.open(wav_buffer, "wb") as wav:
            wav.setnchannels(1)
            wav.setsampwidth(2)  # 16-bit
            wav.setframerate(sample_rate)
            wav.writeframes(np.concatenate(chunks).tobytes())

        audio_bytes = wav_buffer.getvalue()
        logger.debug("TTS: synthesized {} bytes for '{}'", len(audio_bytes), text[:50])
        return audio_bytes
