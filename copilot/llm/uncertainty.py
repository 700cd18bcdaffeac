from dataclasses import dataclass

from loguru import logger


@dataclass
class UncertaintyScore:
    confidence: float
    is_uncertain: bool
    keyword_count: int


# Hedging phrases that suggest the model is guessing. "unclear" appears
# twice, so it counts double.
UNCERTAINTY_KEYWORDS = [
    "uncertain", "unclear", "not sure", "might",
    "possibly", "perhaps", "maybe", "could be",
    "unknown", "hard to tell", "difficult to determine",
    "not certain", "unclear", "ambiguous",
]

CONFIDENCE_PENALTY = 0.15
CONFIDENCE_THRESHOLD = 0.7
KEYWORD_LIMIT = 3


def score_uncertainty(text: str) -> UncertaintyScore:
    """Downgrade confidence by 0.15 per lexicon entry found in the text."""
    lower = text.lower()
    count = sum(1 for keyword in UNCERTAINTY_KEYWORDS if keyword in lower)
    confidence = max(0.0, 1.0 - count * CONFIDENCE_PENALTY)
    is_uncertain = confidence < CONFIDENCE_THRESHOLD or count >= KEYWORD_LIMIT
    if count:
        logger.debug("Uncertainty keywords: {} -> confidence {:.2f}", count, confidence)
    return UncertaintyScore(confidence=confidence, is_uncertain=is_uncertain, keyword_count=count)
