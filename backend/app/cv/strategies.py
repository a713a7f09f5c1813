"""
Analysis strategies.

A strategy only decides how a sampled frame becomes a Frame (features plus
motion) and how two frames are compared. Scorers share this interface:

- score(timestamp, pixels) -> Frame
- similarity_matrix(stacked) -> (n, n) array
- reset(), check_usable(), close()

The analyzer tries the configured strategies in order and moves to the next
one when a strategy raises StrategyUnavailable.
"""

import logging
from enum import Enum

from app.config import Settings
from app.cv.errors import StrategyUnavailable
from app.cv.fingerprint import MotionFingerprintScorer
from app.cv.pose_scorer import PoseMotionScorer

logger = logging.getLogger(__name__)


class AnalysisStrategy(Enum):
    """Per-frame feature extraction used for repetition search."""
    MOTION_FINGERPRINT = "motion_fingerprint"
    POSE_BASED = "pose_based"


def create_scorer(strategy: AnalysisStrategy, settings: Settings):
    """
    Build the scorer for a strategy.

    Raises:
        StrategyUnavailable: the strategy cannot run in this environment
    """
    if strategy == AnalysisStrategy.MOTION_FINGERPRINT:
        return MotionFingerprintScorer(
            block_size=settings.fingerprint_block_size,
            luminance_threshold=settings.fingerprint_luminance_threshold,
            motion_stride=settings.motion_sample_stride,
        )

    if strategy == AnalysisStrategy.POSE_BASED:
        # mediapipe ships as the optional "pose" extra
        try:
            from app.cv.pose_estimator import PoseEstimator, get_model_path
        except ImportError as e:
            raise StrategyUnavailable(f"Pose strategy needs mediapipe: {e}") from e

        try:
            model_path = get_model_path(settings.pose_model_complexity, settings.pose_model_dir)
        except FileNotFoundError as e:
            raise StrategyUnavailable(str(e)) from e

        logger.info(f"Loading pose landmarker from {model_path}")
        estimator = PoseEstimator(
            model_path,
            min_detection_confidence=settings.pose_detection_confidence,
            min_tracking_confidence=settings.pose_detection_confidence,
        )
        return PoseMotionScorer(estimator)

    raise ValueError(f"Unknown analysis strategy: {strategy}")
