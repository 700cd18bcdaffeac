import asyncio
import itertools
import time
from collections import deque
from typing import Callable, Optional

from loguru import logger

from core import events as ev
from core.config import TimingConfig
from core.mood import derive_mood
from core.state import (
    AnalysisResult,
    AssistantState,
    Generations,
    OperationKind,
    Snapshot,
)

EMPTY_INPUT_MESSAGE = "Please enter ingredients to analyze"
ANALYSIS_FAILED_MESSAGE = "Something went wrong. Please try again."

# States that are waiting on a playback terminal event
_TALKING = (AssistantState.SPEAKING, AssistantState.UNSURE)

Listener = Callable[[Snapshot], None]


class AssistantStateMachine:
    """Single writer of the assistant state.

    Every user action, adapter callback and timer is turned into an event and
    fed through ``dispatch()``. Events are applied strictly in delivery order;
    an event dispatched while another is being applied (for example from a
    side-effect callback) is queued behind it.

    Async operations are tagged with tokens from ``generations``. A completion
    whose token is no longer current for its kind is discarded.
    """

    def __init__(
        self,
        timing: Optional[TimingConfig] = None,
        confidence_threshold: float = 0.7,
        voice_input_supported: bool = False,
    ):
        self.timing = timing or TimingConfig()
        self.confidence_threshold = confidence_threshold
        self.generations = Generations()

        self._state = AssistantState.IDLE
        self._result: Optional[AnalysisResult] = None
        self._error: Optional[str] = None
        self._input = ""
        self._voice_input_supported = voice_input_supported

        # Side effects, wired by the session
        self.on_analyze: Optional[Callable[[str], None]] = None
        self.on_speak: Optional[Callable[[str], None]] = None

        self._queue: deque[ev.Event] = deque()
        self._dispatching = False

        self._reset_ids = itertools.count(1)
        self._reset_id: Optional[int] = None
        self._reset_handle: Optional[asyncio.TimerHandle] = None
        self._debounce_handle: Optional[asyncio.TimerHandle] = None

        self._listeners: list[Listener] = []
        self._snapshot = self._build_snapshot()

    # --- Public surface ---

    @property
    def state(self) -> AssistantState:
        return self._state

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a snapshot listener. Returns an unsubscribe function."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def begin(self, kind: OperationKind) -> int:
        """Hand out a fresh token for ``kind``, superseding any earlier one."""
        token = self.generations.begin(kind)
        logger.debug("[STATE] {} token {} begun", kind.value, token)
        return token

    def dispatch(self, event: ev.Event) -> None:
        """Apply ``event``, plus anything it causes to be dispatched."""
        self._queue.append(event)
        if self._dispatching:
            return

        self._dispatching = True
        try:
            while self._queue:
                self._apply(self._queue.popleft())
                self._publish()
        finally:
            self._dispatching = False

    def close(self) -> None:
        """Cancel pending timers (used on shutdown)."""
        self._cancel_reset()
        self._cancel_debounce()

    # --- Reducer ---

    def _apply(self, event: ev.Event) -> None:
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.warning("[STATE] Unhandled event: {}", event)
            return
        handler(self, event)

    def _on_input_changed(self, event: ev.InputChanged) -> None:
        self._set_input(event.text)
        if not event.text.strip():
            if self._state == AssistantState.LISTENING and not self._analysis_in_flight:
                self._enter(AssistantState.IDLE)

    def _on_input_settled(self, event: ev.InputSettled) -> None:
        self._debounce_handle = None
        if (
            event.text == self._input
            and event.text.strip()
            and self._state == AssistantState.IDLE
            and not self._analysis_in_flight
            and not self._capture_in_flight
        ):
            self._enter(AssistantState.LISTENING)

    def _on_submit(self, event: ev.SubmitRequested) -> None:
        self._cancel_debounce()
        if not event.text.strip():
            self._error = EMPTY_INPUT_MESSAGE
            self._enter(AssistantState.WARNING, reset_after=self.timing.empty_submit_warning)
            return

        self._error = None
        self._result = None
        self._enter(AssistantState.THINKING)
        if self.on_analyze is not None:
            self.on_analyze(event.text)

    def _on_dictation_started(self, event: ev.DictationStarted) -> None:
        if not self._is_current(OperationKind.CAPTURE, event):
            return
        # A new recording supersedes any answer still on its way
        if self._analysis_in_flight:
            logger.info("[STATE] Dictation started; dropping in-flight analysis.")
            self.generations.invalidate(OperationKind.ANALYSIS)
        self._cancel_debounce()
        self._error = None
        self._enter(AssistantState.LISTENING)

    def _on_transcript(self, event: ev.TranscriptReceived) -> None:
        if not self._is_current(OperationKind.CAPTURE, event):
            return
        transcript = event.text.strip()
        if transcript:
            joined = f"{self._input} {transcript}" if self._input else transcript
            self._set_input(joined)
        self._error = None
        if self._state == AssistantState.LISTENING:
            self._enter(AssistantState.IDLE)

    def _on_capture_failed(self, event: ev.CaptureFailed) -> None:
        # token=None means the session never started (e.g. permission probe)
        if event.token is not None and not self._is_current(OperationKind.CAPTURE, event):
            return
        self._error = event.message
        if self._state == AssistantState.LISTENING:
            self._enter(AssistantState.IDLE)

    def _on_dictation_ended(self, event: ev.DictationEnded) -> None:
        if not self._is_current(OperationKind.CAPTURE, event):
            return
        self.generations.retire(OperationKind.CAPTURE, event.token)
        if self._state == AssistantState.LISTENING:
            self._enter(AssistantState.IDLE)
        if self._input.strip():
            self._schedule_debounce(self._input)

    def _on_dictation_cancelled(self, event: ev.DictationCancelled) -> None:
        # The adapter has already ended the session, so its token may be gone
        recording = event.recording or self._capture_in_flight
        self.generations.invalidate(OperationKind.CAPTURE)
        self._error = None
        if recording or self._state == AssistantState.LISTENING:
            self._enter(AssistantState.IDLE)

    def _on_analysis_started(self, event: ev.AnalysisStarted) -> None:
        if self._is_current(OperationKind.ANALYSIS, event):
            logger.debug("[STATE] Analysis {} in flight", event.token)

    def _on_analysis_succeeded(self, event: ev.AnalysisSucceeded) -> None:
        if not self._is_current(OperationKind.ANALYSIS, event):
            return
        self.generations.retire(OperationKind.ANALYSIS, event.token)

        result = event.result
        self._result = result
        if not result.text.strip():
            self._enter(AssistantState.IDLE)
            return

        unsure = result.is_uncertain or result.confidence < self.confidence_threshold
        target = AssistantState.UNSURE if unsure else AssistantState.SPEAKING
        self._enter(target, reset_after=self.timing.speaking_fallback)
        if self.on_speak is not None:
            self.on_speak(result.text)

    def _on_analysis_failed(self, event: ev.AnalysisFailed) -> None:
        if not self._is_current(OperationKind.ANALYSIS, event):
            return
        self.generations.retire(OperationKind.ANALYSIS, event.token)
        logger.warning("[STATE] Analysis failed: {}", event.message)
        self._error = ANALYSIS_FAILED_MESSAGE
        self._enter(AssistantState.WARNING, reset_after=self.timing.analysis_failure_warning)

    def _on_playback_started(self, event: ev.PlaybackStarted) -> None:
        if self._is_current(OperationKind.PLAYBACK, event):
            logger.debug("[STATE] Playback {} started", event.token)

    def _on_playback_ended(self, event: ev.PlaybackEnded) -> None:
        if not self._is_current(OperationKind.PLAYBACK, event):
            return
        self.generations.retire(OperationKind.PLAYBACK, event.token)
        if self._state in _TALKING:
            self._enter(AssistantState.IDLE)

    def _on_playback_failed(self, event: ev.PlaybackFailed) -> None:
        if not self._is_current(OperationKind.PLAYBACK, event):
            return
        self.generations.retire(OperationKind.PLAYBACK, event.token)
        self._error = event.message
        if self._state in _TALKING:
            self._enter(AssistantState.IDLE)

    def _on_speaking_stopped(self, event: ev.SpeakingStopped) -> None:
        self.generations.invalidate(OperationKind.PLAYBACK)
        if self._state in _TALKING:
            self._enter(AssistantState.IDLE)

    def _on_mascot_clicked(self, event: ev.MascotClicked) -> None:
        self._enter(AssistantState.LAUGH, reset_after=self.timing.laugh)

    def _on_auto_reset(self, event: ev.AutoResetElapsed) -> None:
        if event.timer_id != self._reset_id:
            return
        self._reset_handle = None
        self._reset_id = None
        if self._state != event.expected:
            return
        if event.expected in _TALKING:
            # Missed completion: make sure a late "ended" can't fire twice
            logger.info("[STATE] No playback completion; falling back to idle.")
            self.generations.invalidate(OperationKind.PLAYBACK)
        self._enter(AssistantState.IDLE)

    _handlers = {
        ev.InputChanged: _on_input_changed,
        ev.InputSettled: _on_input_settled,
        ev.SubmitRequested: _on_submit,
        ev.DictationStarted: _on_dictation_started,
        ev.TranscriptReceived: _on_transcript,
        ev.CaptureFailed: _on_capture_failed,
        ev.DictationEnded: _on_dictation_ended,
        ev.DictationCancelled: _on_dictation_cancelled,
        ev.AnalysisStarted: _on_analysis_started,
        ev.AnalysisSucceeded: _on_analysis_succeeded,
        ev.AnalysisFailed: _on_analysis_failed,
        ev.PlaybackStarted: _on_playback_started,
        ev.PlaybackEnded: _on_playback_ended,
        ev.PlaybackFailed: _on_playback_failed,
        ev.SpeakingStopped: _on_speaking_stopped,
        ev.MascotClicked: _on_mascot_clicked,
        ev.AutoResetElapsed: _on_auto_reset,
    }

    # --- Helpers ---

    @property
    def _analysis_in_flight(self) -> bool:
        return self.generations.in_flight(OperationKind.ANALYSIS)

    @property
    def _capture_in_flight(self) -> bool:
        return self.generations.in_flight(OperationKind.CAPTURE)

    def _is_current(self, kind: OperationKind, event) -> bool:
        if self.generations.is_current(kind, event.token):
            return True
        logger.debug("[STATE] Discarding stale {} (token {})", type(event).__name__, event.token)
        return False

    def _enter(self, state: AssistantState, reset_after: Optional[float] = None) -> None:
        """Switch state. Any pending auto-reset is dropped first."""
        self._cancel_reset()
        if state != self._state:
            logger.info("[STATE] {} -> {}", self._state.value, state.value)
        self._state = state
        if reset_after is not None:
            self._schedule_reset(state, reset_after)

    def _schedule_reset(self, expected: AssistantState, delay: float) -> None:
        timer_id = next(self._reset_ids)
        self._reset_id = timer_id
        loop = asyncio.get_running_loop()
        self._reset_handle = loop.call_later(
            delay, self.dispatch, ev.AutoResetElapsed(expected, timer_id)
        )

    def _cancel_reset(self) -> None:
        if self._reset_handle is not None:
            self._reset_handle.cancel()
        self._reset_handle = None
        self._reset_id = None

    def _set_input(self, text: str) -> None:
        self._input = text
        self._cancel_debounce()
        if text.strip() and not self._analysis_in_flight:
            self._schedule_debounce(text)

    def _schedule_debounce(self, text: str) -> None:
        self._cancel_debounce()
        loop = asyncio.get_running_loop()
        self._debounce_handle = loop.call_later(
            self.timing.input_debounce, self.dispatch, ev.InputSettled(text)
        )

    def _cancel_debounce(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        self._debounce_handle = None

    def _build_snapshot(self) -> Snapshot:
        return Snapshot(
            state=self._state,
            mood=derive_mood(self._result),
            error_message=self._error,
            result=self._result,
            input_text=self._input,
            voice_input_supported=self._voice_input_supported,
            changed_at=time.monotonic(),
        )

    def _publish(self) -> None:
        snapshot = self._build_snapshot()
        if snapshot == self._snapshot:
            return
        self._snapshot = snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error("Snapshot listener failed: {}", e)
