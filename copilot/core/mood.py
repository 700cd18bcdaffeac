from typing import Optional

from core.state import AnalysisResult, EmotionalMood

NEGATIVE_KEYWORDS = [
    "high sugar", "artificial", "preservative",
    "processed", "additives", "synthetic",
]

POSITIVE_KEYWORDS = [
    "organic", "natural", "whole",
    "healthy", "nutritious", "fresh",
]


def derive_mood(result: Optional[AnalysisResult]) -> EmotionalMood:
    """Scan the analysis text for mood keywords. Negative wins over positive."""
    if result is None or not result.text:
        return EmotionalMood.NONE

    lower = result.text.lower()
    if any(word in lower for word in NEGATIVE_KEYWORDS):
        return EmotionalMood.NEGATIVE
    if any(word in lower for word in POSITIVE_KEYWORDS):
        return EmotionalMood.POSITIVE
    return EmotionalMood.NONE
