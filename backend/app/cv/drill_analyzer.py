"""
Drill motion analysis pipeline.

PIPELINE:
1. Frame sampling: bounded, evenly spaced seeks into the video
2. Scoring: per-frame fingerprint (or pose joints) and motion
3. Repetition detection: self-similar windows starting at cycle starts
4. Loop selection: best-ranked repetition, or the middle of the clip
5. Confidence: coarse tiers of repetition evidence

Every call builds its own AnalysisContext; nothing is shared between calls.
The whole call runs under one wall-clock Deadline and a timed-out analysis
never returns a partial result.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from app.config import Settings, get_settings
from app.cv.confidence import estimate_confidence
from app.cv.deadline import Deadline
from app.cv.errors import AnalysisTimeout, SourceUnreadable, StrategyUnavailable
from app.cv.fingerprint import Frame
from app.cv.frame_sampler import FrameSampler
from app.cv.loop_selector import LoopSelector, LoopSpec
from app.cv.repetition_detector import RepetitionDetector
from app.cv.strategies import AnalysisStrategy, create_scorer
from app.cv.video_source import OpenCVVideoSource, VideoSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnalysisResult:
    """
    Result of one drill analysis.

    Loop boundaries are in seconds. Key frames are sample indices of local
    motion peaks, with their times alongside.
    """
    duration: float = 0.0
    repetition_count: int = 0
    key_frames: Tuple[int, ...] = ()
    key_frame_times: Tuple[float, ...] = ()
    loop_start: float = 0.0
    loop_end: float = 0.0
    confidence: float = 0.0

    # Processing metadata
    strategy: Optional[str] = None
    frames_analyzed: int = 0
    seek_failures: int = 0

    @classmethod
    def empty(cls) -> "AnalysisResult":
        """Zero value for unreadable or too-short input."""
        return cls()

    @property
    def has_loop(self) -> bool:
        return self.loop_end > self.loop_start

    @property
    def loop_spec(self) -> Optional[LoopSpec]:
        if not self.has_loop:
            return None
        return LoopSpec(start_time=self.loop_start, end_time=self.loop_end)

    def to_dict(self) -> Dict[str, Any]:
        """Serializable shape consumed by the record-creation workflow."""
        return {
            "duration": self.duration,
            "repetitions": self.repetition_count,
            "keyFrames": list(self.key_frames),
            "loopStart": self.loop_start,
            "loopEnd": self.loop_end,
            "confidence": self.confidence,
        }


@dataclass
class AnalysisContext:
    """Per-call state passed through the pipeline stages."""
    source: VideoSource
    deadline: Deadline
    strategy: AnalysisStrategy
    scorer: Any
    frames: List[Frame] = field(default_factory=list)
    seek_failures: int = 0


class DrillAnalyzer:
    """
    Main drill analysis pipeline.

    Strategies from settings are tried in order; one that raises
    StrategyUnavailable hands over to the next.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        progress_callback: Optional[Callable[[float], None]] = None,
    ):
        """
        Initialize drill analyzer.

        Args:
            settings: Analysis settings (cached application settings if omitted)
            progress_callback: Optional callback receiving sampling progress in [0, 1]
        """
        self.settings = settings or get_settings()
        self.progress_callback = progress_callback
        self.strategies = [AnalysisStrategy(s) for s in self.settings.analysis_strategies]

    def analyze_file(self, video_path: Union[str, Path]) -> AnalysisResult:
        """
        Analyze a video file.

        An unreadable file yields AnalysisResult.empty() instead of an error.

        Raises:
            AnalysisTimeout: the analysis exceeded its budget
        """
        try:
            source = OpenCVVideoSource(video_path)
        except SourceUnreadable as e:
            logger.warning(f"{e}; returning empty analysis")
            return AnalysisResult.empty()

        with source:
            return self.analyze(source)

    def analyze(self, source: VideoSource) -> AnalysisResult:
        """
        Analyze an open video source.

        Raises:
            AnalysisTimeout: the analysis exceeded its budget
            StrategyUnavailable: no configured strategy could run
        """
        deadline = Deadline(self.settings.analysis_timeout_seconds, AnalysisTimeout)
        logger.info(f"Starting drill analysis: {source.duration:.1f}s, {source.width}x{source.height}, "
                    f"strategies {[s.value for s in self.strategies]}")

        last_error: Optional[StrategyUnavailable] = None
        for strategy in self.strategies:
            try:
                scorer = create_scorer(strategy, self.settings)
            except StrategyUnavailable as e:
                logger.warning(f"Strategy {strategy.value} unavailable: {e}")
                last_error = e
                continue

            context = AnalysisContext(source=source, deadline=deadline, strategy=strategy, scorer=scorer)
            try:
                return self._run(context)
            except StrategyUnavailable as e:
                logger.warning(f"Strategy {strategy.value} failed, trying next: {e}")
                last_error = e
            finally:
                scorer.close()

        raise last_error

    def _run(self, context: AnalysisContext) -> AnalysisResult:
        settings = self.settings
        source = context.source

        # =========================================================
        # STAGE 1-2: Sample and score frames
        # =========================================================
        logger.info(f"Stage 1: Sampling and scoring frames ({context.strategy.value})...")
        self._score_frames(context)
        context.scorer.check_usable()

        frames = context.frames
        if len(frames) < 2:
            logger.info(f"Only {len(frames)} frame(s) sampled, returning empty analysis")
            return AnalysisResult.empty()

        # =========================================================
        # STAGE 3: Repetition detection
        # =========================================================
        logger.info("Stage 2: Detecting repetitions...")
        detector = RepetitionDetector.from_settings(settings, context.scorer.similarity_matrix)
        candidates = detector.detect(frames, context.deadline)
        ranked = detector.rank_candidates(candidates, frames)

        # =========================================================
        # STAGE 4: Loop selection
        # =========================================================
        logger.info("Stage 3: Selecting loop...")
        selection = LoopSelector.from_settings(settings).select(ranked, frames, source.duration)

        # =========================================================
        # STAGE 5: Confidence and key frames
        # =========================================================
        confidence = estimate_confidence(len(candidates))
        key_frames = detector.find_key_frames(frames)

        context.deadline.check()

        result = AnalysisResult(
            duration=source.duration,
            repetition_count=len(candidates),
            key_frames=tuple(key_frames),
            key_frame_times=tuple(frames[i].time for i in key_frames),
            loop_start=selection.loop.start_time,
            loop_end=selection.loop.end_time,
            confidence=confidence,
            strategy=context.strategy.value,
            frames_analyzed=len(frames),
            seek_failures=context.seek_failures,
        )

        logger.info(f"Analysis complete in {context.deadline.elapsed:.2f}s: "
                    f"{result.repetition_count} repetitions, loop {result.loop_start:.2f}s-"
                    f"{result.loop_end:.2f}s, confidence {result.confidence:.2f}, "
                    f"{result.seek_failures} seek fallbacks")
        return result

    def _score_frames(self, context: AnalysisContext) -> None:
        settings = self.settings
        sampler = FrameSampler(
            sample_fps=settings.analysis_sample_fps,
            max_frames=settings.analysis_max_frames,
            raster_size=(settings.analysis_raster_width, settings.analysis_raster_height),
            seek_timeout=settings.seek_timeout_seconds,
        )
        total = len(sampler.sample_times(context.source.duration))

        context.scorer.reset()
        for sample in sampler.sample(context.source, context.deadline):
            # Scorers copy what they need; the raster is overwritten next iteration
            context.frames.append(context.scorer.score(sample.time, sample.pixels))

            if self.progress_callback and (sample.index + 1) % 10 == 0:
                self.progress_callback((sample.index + 1) / total)

        context.seek_failures = sampler.seek_failures
        if self.progress_callback and total:
            self.progress_callback(1.0)
