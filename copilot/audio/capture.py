import asyncio
from typing import Callable, Optional

from loguru import logger

from audio.audio_capture import UNSUPPORTED_MESSAGE, probe_microphone
from audio.capability import Capability
from audio.stt import RecognitionEngine, recognition_error
from core import events as ev
from core.errors import CaptureError, CaptureErrorKind
from core.machine import AssistantStateMachine
from core.state import OperationKind


class SpeechCaptureAdapter:
    """Runs one dictation session at a time and reports it to the state machine.

    Per started session the machine receives ``DictationStarted``, then
    exactly one of ``TranscriptReceived`` / ``CaptureFailed``, then
    ``DictationEnded``, all carrying the session's token. Failures before a
    session starts (unsupported, permission) are reported with no token.
    """

    def __init__(
        self,
        machine: AssistantStateMachine,
        engine: Optional[RecognitionEngine],
        capability: Capability = Capability.UNSUPPORTED,
        probe: Callable[[], None] = probe_microphone,
    ):
        self.machine = machine
        self.engine = engine
        self.capability = capability
        self._probe = probe
        self._task: Optional[asyncio.Task] = None
        # Held across probe + begin so concurrent starts queue up
        self._lock = asyncio.Lock()

    @property
    def supported(self) -> bool:
        return self.engine is not None and self.capability != Capability.UNSUPPORTED

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> Optional[CaptureError]:
        """Begin a session. Returns the error instead if none could start."""
        if not self.supported:
            error = CaptureError(CaptureErrorKind.UNSUPPORTED, UNSUPPORTED_MESSAGE)
            self.machine.dispatch(ev.CaptureFailed(None, error.message))
            return error

        async with self._lock:
            # Sessions never overlap
            await self._end_session()

            loop = asyncio.get_running_loop()
            try:
                await loop.run_in_executor(None, self._probe)
            except CaptureError as error:
                self.machine.dispatch(ev.CaptureFailed(None, error.message))
                return error

            token = self.machine.begin(OperationKind.CAPTURE)
            self.machine.dispatch(ev.DictationStarted(token))
            self._task = asyncio.create_task(self._run_session(token))
            logger.info("[CAPTURE] Session {} started", token)
            return None

    async def stop(self) -> None:
        """User cancel. Safe to call with no session running.

        Waits for a start that is still probing, then cancels its session.
        """
        async with self._lock:
            recording = self.active
            await self._end_session()
        self.machine.dispatch(ev.DictationCancelled(recording=recording))

    async def _end_session(self) -> None:
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run_session(self, token: int) -> None:
        try:
            text = await self.engine.recognize()
            logger.info("[CAPTURE] Session {} heard: '{}'", token, text)
            self.machine.dispatch(ev.TranscriptReceived(token, text))
        except asyncio.CancelledError:
            self.machine.dispatch(
                ev.CaptureFailed(token, recognition_error("aborted").message)
            )
            raise
        except CaptureError as e:
            logger.warning("[CAPTURE] Session {} failed ({}): {}", token, e.kind.value, e.message)
            self.machine.dispatch(ev.CaptureFailed(token, e.message))
        except Exception as e:
            logger.error("[CAPTURE] Session {} crashed: {}", token, e)
            self.machine.dispatch(
                ev.CaptureFailed(token, "Failed to process speech. Please try again.")
            )
        finally:
            self.machine.dispatch(ev.DictationEnded(token))
