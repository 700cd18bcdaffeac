"""Events consumed by the assistant state machine.

User input, adapter callbacks and timers all arrive as one of these. Events
produced by an async operation carry the token handed out when that
operation began, so late completions can be recognized and dropped.
"""

from dataclasses import dataclass
from typing import Optional

from core.state import AnalysisResult, AssistantState


class Event:
    """Marker base class."""


# --- Free-text input ---

@dataclass(frozen=True)
class InputChanged(Event):
    text: str


@dataclass(frozen=True)
class InputSettled(Event):
    """Fired by the debounce timer once the input stopped changing."""
    text: str


@dataclass(frozen=True)
class SubmitRequested(Event):
    text: str


# --- Speech capture ---

@dataclass(frozen=True)
class DictationStarted(Event):
    token: int


@dataclass(frozen=True)
class TranscriptReceived(Event):
    token: int
    text: str


@dataclass(frozen=True)
class CaptureFailed(Event):
    token: Optional[int]
    message: str


@dataclass(frozen=True)
class DictationEnded(Event):
    token: int


@dataclass(frozen=True)
class DictationCancelled(Event):
    recording: bool = False  # A session was running when the user stopped


# --- Analysis ---

@dataclass(frozen=True)
class AnalysisStarted(Event):
    token: int


@dataclass(frozen=True)
class AnalysisSucceeded(Event):
    token: int
    result: AnalysisResult


@dataclass(frozen=True)
class AnalysisFailed(Event):
    token: int
    message: str


# --- Speech output ---

@dataclass(frozen=True)
class PlaybackStarted(Event):
    token: int


@dataclass(frozen=True)
class PlaybackEnded(Event):
    token: int


@dataclass(frozen=True)
class PlaybackFailed(Event):
    token: int
    message: str


@dataclass(frozen=True)
class SpeakingStopped(Event):
    pass


# --- Mascot and timers ---

@dataclass(frozen=True)
class MascotClicked(Event):
    pass


@dataclass(frozen=True)
class AutoResetElapsed(Event):
    expected: AssistantState
    timer_id: int
