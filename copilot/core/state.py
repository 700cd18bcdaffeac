import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class AssistantState(str, Enum):
    IDLE = "idle"              # Resting, waiting for input
    LISTENING = "listening"    # User is typing or dictating
    THINKING = "thinking"      # Analysis request in flight
    SPEAKING = "speaking"      # Playing back a confident answer
    UNSURE = "unsure"          # Playing back a low-confidence answer
    WARNING = "warning"        # Transient error, auto-clears
    LAUGH = "laugh"            # Mascot was poked, auto-clears


class EmotionalMood(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NONE = "none"


class OperationKind(str, Enum):
    CAPTURE = "capture"
    ANALYSIS = "analysis"
    PLAYBACK = "playback"


@dataclass(frozen=True)
class AnalysisResult:
    text: str
    confidence: float = 1.0
    is_uncertain: bool = False


class Generations:
    """Per-operation-kind token counters.

    A token is current from the moment ``begin()`` hands it out until another
    token of the same kind is begun, or the kind is invalidated.
    """

    def __init__(self):
        self._counter = itertools.count(1)
        self._current: dict[OperationKind, Optional[int]] = {
            kind: None for kind in OperationKind
        }

    def begin(self, kind: OperationKind) -> int:
        token = next(self._counter)
        self._current[kind] = token
        return token

    def is_current(self, kind: OperationKind, token: int) -> bool:
        return token is not None and self._current[kind] == token

    def in_flight(self, kind: OperationKind) -> bool:
        return self._current[kind] is not None

    def current(self, kind: OperationKind) -> Optional[int]:
        return self._current[kind]

    def invalidate(self, kind: OperationKind) -> None:
        self._current[kind] = None

    def retire(self, kind: OperationKind, token: int) -> None:
        """Mark ``token`` as finished if it is still the current one."""
        if self._current[kind] == token:
            self._current[kind] = None


@dataclass(frozen=True)
class Snapshot:
    """What the presentation layer sees after every applied transition."""

    state: AssistantState = AssistantState.IDLE
    mood: EmotionalMood = EmotionalMood.NONE
    error_message: Optional[str] = None
    result: Optional[AnalysisResult] = None
    input_text: str = ""
    voice_input_supported: bool = False
    changed_at: float = field(default=0.0, compare=False)

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "mood": self.mood.value,
            "error": self.error_message,
            "input": self.input_text,
            "voice_input_supported": self.voice_input_supported,
            "result": None if self.result is None else {
                "text": self.result.text,
                "confidence": self.result.confidence,
                "isUncertain": self.result.is_uncertain,
            },
        }
