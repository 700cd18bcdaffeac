import asyncio
import subprocess
import tempfile
from typing import Optional

from loguru import logger

from core.errors import PlaybackErrorKind, SynthesisError

# Command line player per media type. The file path is appended.
PLAYERS = {
    "audio/wav": ["paplay"],
    "audio/x-wav": ["paplay"],
    "audio/wave": ["paplay"],
    "audio/mpeg": ["mpg123", "-q"],
    "audio/mp3": ["mpg123", "-q"],
}

_SUFFIXES = {"audio/mpeg": ".mp3", "audio/mp3": ".mp3"}

# stderr fragments meaning the sound server refused us, not a bad file
_BLOCKED_MARKERS = ("connection refused", "connection failure", "no such device", "access denied")

PLAYBACK_TIMEOUT = 120


def normalize_media_type(content_type: Optional[str]) -> str:
    if not content_type:
        return ""
    return content_type.split(";")[0].strip().lower()


class AudioPlayer:
    """Plays an audio payload through PipeWire/PulseAudio.

    WAV goes through ``paplay``, MP3 through ``mpg123``. Failures are raised
    as ``SynthesisError`` with a playback classification. A playback killed by
    ``stop()`` returns normally.
    """

    def __init__(self, timeout: float = PLAYBACK_TIMEOUT):
        self.timeout = timeout
        self._current_process: subprocess.Popen | None = None

    @staticmethod
    def supports(media_type: str) -> bool:
        return normalize_media_type(media_type) in PLAYERS

    async def play(self, audio: bytes, media_type: str = "audio/wav") -> None:
        if not audio:
            raise SynthesisError(
                PlaybackErrorKind.EMPTY_PAYLOAD, "Empty audio response. Please try again."
            )

        media_type = normalize_media_type(media_type)
        if media_type not in PLAYERS:
            raise SynthesisError(
                PlaybackErrorKind.UNSUPPORTED_FORMAT,
                f"Audio format not supported ({media_type or 'unknown'}).",
            )

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._play_sync, audio, media_type)

    def _play_sync(self, audio: bytes, media_type: str) -> None:
        command = PLAYERS[media_type]
        suffix = _SUFFIXES.get(media_type, ".wav")
        with tempfile.NamedTemporaryFile(suffix=suffix, delete=True) as tmp:
            tmp.write(audio)
            tmp.flush()
            try:
                proc = subprocess.Popen(
                    [*command, tmp.name],
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.PIPE,
                )
            except FileNotFoundError:
                raise SynthesisError(
                    PlaybackErrorKind.UNSUPPORTED_FORMAT,
                    f"No audio player available for {media_type}. Install {command[0]}.",
                )

            self._current_process = proc
            try:
                proc.wait(timeout=self.timeout)
            except subprocess.TimeoutExpired:
                proc.kill()
                raise SynthesisError(PlaybackErrorKind.OTHER, "Audio playback timed out.")
            finally:
                if self._current_process is proc:
                    self._current_process = None

            if proc.returncode < 0:
                # Killed by stop()
                logger.debug("{} terminated by signal {}", command[0], -proc.returncode)
                return
            if proc.returncode != 0:
                stderr = proc.stderr.read().decode(errors="replace").strip()
                raise self._classify_failure(command[0], stderr)

    @staticmethod
    def _classify_failure(player: str, stderr: str) -> SynthesisError:
        logger.error("{} error: {}", player, stderr)
        lower = stderr.lower()
        if any(marker in lower for marker in _BLOCKED_MARKERS):
            return SynthesisError(
                PlaybackErrorKind.BLOCKED,
                "Audio playback blocked: no output device is available.",
            )
        return SynthesisError(
            PlaybackErrorKind.DECODE,
            "Audio format not supported or corrupted. The speech service may have "
            "returned invalid audio data.",
        )

    def stop(self) -> None:
        """Kill the current playback, if any. Returns immediately."""
        proc = self._current_process
        self._current_process = None
        if proc is None:
            return
        try:
            proc.kill()
            logger.info("Audio playback stopped.")
        except OSError as e:
            logger.debug("Error killing player: {}", e)

    @property
    def playing(self) -> bool:
        return self._current_process is not None
