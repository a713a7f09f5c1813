"""
Coarse confidence tiers for an analysis result.

Rewards evidence of recurrence rather than fine-grained similarity, since
the similarity thresholds already gate which candidates exist.
"""

NO_FRAMES_CONFIDENCE = 0.0

# (minimum repetition count, confidence), highest tier first
CONFIDENCE_TIERS = (
    (3, 0.9),
    (2, 0.75),
    (1, 0.6),
    (0, 0.3),  # Still nonzero: the fallback produced a loop
)


def estimate_confidence(repetition_count: int, has_frames: bool = True) -> float:
    """Non-decreasing step function of the repetition count."""
    if not has_frames:
        return NO_FRAMES_CONFIDENCE
    for minimum, confidence in CONFIDENCE_TIERS:
        if repetition_count >= minimum:
            return confidence
    return CONFIDENCE_TIERS[-1][1]
