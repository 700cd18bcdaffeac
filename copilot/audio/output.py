import asyncio
from typing import Optional

import httpx
from loguru import logger

from audio.audio_player import AudioPlayer, normalize_media_type
from audio.capability import Capability
from audio.tts import TextToSpeech
from core import events as ev
from core.errors import FallbackRequested, PlaybackErrorKind, SynthesisError
from core.machine import AssistantStateMachine
from core.state import OperationKind

SPEAK_FAILED_MESSAGE = "Failed to generate speech. Please try again."
SPEAK_NETWORK_MESSAGE = (
    "Failed to generate speech. Please check your internet connection and try again."
)
SPEAK_KEY_MISSING_MESSAGE = (
    "Text-to-speech API key not configured. Please set ELEVENLABS_API_KEY."
)
ABORTED_MESSAGE = "Audio playback was aborted."


class RemoteSynthesis:
    """Fetches synthesized audio from the ``/api/speak`` collaborator."""

    def __init__(self, base_url: str, timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def fetch(self, text: str) -> tuple[bytes, str]:
        """Return ``(audio, media_type)`` for ``text``.

        Raises:
            FallbackRequested: the service asked for local synthesis, or sent
                something that is not playable audio.
            SynthesisError: any other failure, with a user-facing message.
        """
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                resp = await client.post("/api/speak", json={"text": text})
        except httpx.HTTPError as e:
            logger.error("Speak request failed: {}", e)
            raise SynthesisError(PlaybackErrorKind.NETWORK, SPEAK_NETWORK_MESSAGE) from e

        if not resp.is_success:
            try:
                body = resp.json()
            except ValueError:
                body = {}
            if not isinstance(body, dict):
                body = {}
            logger.error("Speak API error {}: {}", resp.status_code, body)

            if body.get("useBrowserTTS"):
                raise FallbackRequested("Remote synthesis unavailable")
            message = body.get("error") or (
                SPEAK_KEY_MISSING_MESSAGE if resp.status_code == 401 else SPEAK_FAILED_MESSAGE
            )
            raise SynthesisError(PlaybackErrorKind.OTHER, message)

        media_type = normalize_media_type(resp.headers.get("content-type"))
        if "audio" not in media_type:
            logger.warning("Unexpected speak response type: {}", media_type or "none")
            raise FallbackRequested(f"Not audio: {media_type}")
        if not resp.content:
            logger.warning("Empty audio payload received")
            raise FallbackRequested("Empty audio payload")

        logger.debug("Remote audio: {} bytes of {}", len(resp.content), media_type)
        return resp.content, media_type


class LocalSynthesis:
    """On-device fallback: Piper voice, preferred per configured language."""

    def __init__(self, tts: Optional[TextToSpeech], capability: Capability = Capability.AVAILABLE):
        self.tts = tts
        self.capability = capability

    @property
    def available(self) -> bool:
        return self.tts is not None and self.capability == Capability.AVAILABLE

    async def synthesize(self, text: str) -> tuple[bytes, str]:
        if not self.available:
            raise SynthesisError(
                PlaybackErrorKind.OTHER,
                "This system doesn't support local speech synthesis.",
            )
        audio = await self.tts.synthesize(text)
        if not audio:
            raise SynthesisError(
                PlaybackErrorKind.EMPTY_PAYLOAD, "Empty audio response. Please try again."
            )
        return audio, "audio/wav"


class SpeechOutputAdapter:
    """Speaks text, remote first, falling back to local synthesis.

    ``speak()`` cancels whatever was playing. Each invocation ends with
    exactly one ``PlaybackEnded`` or ``PlaybackFailed`` carrying its token.
    """

    def __init__(
        self,
        machine: AssistantStateMachine,
        player: AudioPlayer,
        remote: Optional[RemoteSynthesis],
        local: LocalSynthesis,
    ):
        self.machine = machine
        self.player = player
        self.remote = remote
        self.local = local
        self._task: Optional[asyncio.Task] = None

    def speak(self, text: str) -> int:
        self._cancel()
        token = self.machine.begin(OperationKind.PLAYBACK)
        self.machine.dispatch(ev.PlaybackStarted(token))
        self._task = asyncio.create_task(self._run(token, text))
        return token

    def stop(self) -> None:
        """Cancel playback right away. Safe to call when nothing plays."""
        self.machine.generations.invalidate(OperationKind.PLAYBACK)
        self._cancel()
        self.machine.dispatch(ev.SpeakingStopped())

    def _cancel(self) -> None:
        self.player.stop()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self, token: int, text: str) -> None:
        try:
            audio, media_type = await self._synthesize(text)
            await self.player.play(audio, media_type)
        except asyncio.CancelledError:
            self.machine.dispatch(ev.PlaybackFailed(token, ABORTED_MESSAGE))
            raise
        except SynthesisError as e:
            logger.error("[SPEAK] Playback {} failed ({}): {}", token, e.kind.value, e.message)
            self.machine.dispatch(ev.PlaybackFailed(token, e.message))
        except Exception as e:
            logger.error("[SPEAK] Playback {} crashed: {}", token, e)
            self.machine.dispatch(ev.PlaybackFailed(token, "Failed to play audio. Please try again."))
        else:
            logger.info("[SPEAK] Playback {} finished", token)
            self.machine.dispatch(ev.PlaybackEnded(token))

    async def _synthesize(self, text: str) -> tuple[bytes, str]:
        if self.remote is not None:
            try:
                audio, media_type = await self.remote.fetch(text)
                if self.player.supports(media_type) or not self.local.available:
                    return audio, media_type
                logger.info("No player for {}; using local synthesis.", media_type)
            except FallbackRequested as e:
                logger.info("Falling back to local speech synthesis ({})", e.message)
        return await self.local.synthesize(text)
