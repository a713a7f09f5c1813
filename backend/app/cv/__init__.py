"""
Computer vision pipeline for drill loop analysis.

PIPELINE COMPONENTS:
1. FrameSampler: Bounded, evenly spaced seek-then-read sampling
2. MotionFingerprintScorer: Block-brightness fingerprints + motion deltas
3. RepetitionDetector: Self-similar windows starting at cycle starts
4. LoopSelector: Best repetition (or middle-of-clip fallback) as a LoopSpec
5. estimate_confidence: Coarse confidence tiers
6. LoopRenderer: Repeated loop + thumbnail through external encoders
7. DrillAnalyzer: Main orchestration with strategy fallback

STRATEGIES:
- motion_fingerprint: pixel fingerprints, works on any footage
- pose_based: MediaPipe pose landmarks (optional "pose" extra)

Usage:
    from app.cv import DrillAnalyzer, LoopRenderer, OpenCVVideoSource

    with OpenCVVideoSource("drill.mp4") as source:
        result = DrillAnalyzer().analyze(source)
        if result.loop_spec:
            rendered = LoopRenderer().render(source, result.loop_spec)
"""

from app.cv.errors import (
    DrillAnalysisError, SourceUnreadable, SeekTimeout, AnalysisTimeout,
    StrategyUnavailable, RenderError, RenderTimeout, EncodingFailure,
)
from app.cv.deadline import Deadline
from app.cv.video_source import VideoSource, OpenCVVideoSource, ArrayVideoSource, fit_raster
from app.cv.frame_sampler import FrameSampler, SampledFrame
from app.cv.fingerprint import (
    Frame, MotionFingerprintScorer, compute_fingerprint, fingerprint_similarity,
    fingerprint_similarity_matrix, motion_score, sample_motion_pixels,
)
from app.cv.repetition_detector import RepetitionDetector, RepetitionCandidate, DetectionThresholds
from app.cv.loop_selector import LoopSelector, LoopSelection, LoopSpec
from app.cv.confidence import estimate_confidence
from app.cv.pose_scorer import PoseMotionScorer, PoseKeypoints, Keypoint
from app.cv.strategies import AnalysisStrategy, create_scorer
from app.cv.drill_analyzer import DrillAnalyzer, AnalysisResult, AnalysisContext
from app.cv.loop_renderer import (
    LoopRenderer, RenderedLoop, FrameEncoder, StillEncoder,
    OpenCVVideoEncoder, JpegStillEncoder,
)

__all__ = [
    # Errors
    "DrillAnalysisError",
    "SourceUnreadable",
    "SeekTimeout",
    "AnalysisTimeout",
    "StrategyUnavailable",
    "RenderError",
    "RenderTimeout",
    "EncodingFailure",
    "Deadline",

    # Frame access
    "VideoSource",
    "OpenCVVideoSource",
    "ArrayVideoSource",
    "fit_raster",
    "FrameSampler",
    "SampledFrame",

    # Scoring
    "Frame",
    "MotionFingerprintScorer",
    "compute_fingerprint",
    "fingerprint_similarity",
    "fingerprint_similarity_matrix",
    "motion_score",
    "sample_motion_pixels",
    "PoseMotionScorer",
    "PoseKeypoints",
    "Keypoint",

    # Repetition detection & loop selection
    "RepetitionDetector",
    "RepetitionCandidate",
    "DetectionThresholds",
    "LoopSelector",
    "LoopSelection",
    "LoopSpec",
    "estimate_confidence",

    # Main pipeline
    "AnalysisStrategy",
    "create_scorer",
    "DrillAnalyzer",
    "AnalysisResult",
    "AnalysisContext",

    # Rendering
    "LoopRenderer",
    "RenderedLoop",
    "FrameEncoder",
    "StillEncoder",
    "OpenCVVideoEncoder",
    "JpegStillEncoder",
]
