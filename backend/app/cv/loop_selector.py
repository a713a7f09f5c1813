"""
Loop boundary selection.

With repetition evidence, the best-ranked candidate's two window starts
become the loop boundaries, mapped back to frame times. Without it, the
middle of the clip is used, since drill clips tend to carry setup and
teardown at either end.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from app.config import Settings
from app.cv.fingerprint import Frame
from app.cv.repetition_detector import RepetitionCandidate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoopSpec:
    """A loop segment in seconds."""
    start_time: float
    end_time: float

    @property
    def loop_duration(self) -> float:
        return self.end_time - self.start_time

    @property
    def midpoint(self) -> float:
        return self.start_time + self.loop_duration / 2

    def is_valid(self, video_duration: float) -> bool:
        return 0.0 <= self.start_time < self.end_time <= video_duration

    def validate(self, video_duration: float) -> None:
        """Raise ValueError unless 0 <= start < end <= video_duration."""
        if not self.is_valid(video_duration):
            raise ValueError(
                f"Invalid loop bounds: {self.start_time}s to {self.end_time}s "
                f"(video duration: {video_duration}s)"
            )


@dataclass
class LoopSelection:
    """Chosen loop plus the candidate it came from (None for the fallback)."""
    loop: LoopSpec
    candidate: Optional[RepetitionCandidate] = None

    @property
    def is_fallback(self) -> bool:
        return self.candidate is None


class LoopSelector:
    """Picks one loop segment from ranked repetition candidates."""

    def __init__(
        self,
        max_loop_fraction: float = 1 / 3,
        fallback_start_fraction: float = 0.2,
        fallback_end_fraction: float = 0.8,
    ):
        """
        Args:
            max_loop_fraction: Longest allowed loop as a fraction of the frame count
            fallback_start_fraction: Fallback loop start as a fraction of duration
            fallback_end_fraction: Fallback loop end as a fraction of duration
        """
        self.max_loop_fraction = max_loop_fraction
        self.fallback_start_fraction = fallback_start_fraction
        self.fallback_end_fraction = fallback_end_fraction

    @classmethod
    def from_settings(cls, settings: Settings) -> "LoopSelector":
        return cls(
            max_loop_fraction=settings.max_loop_fraction,
            fallback_start_fraction=settings.fallback_loop_start_fraction,
            fallback_end_fraction=settings.fallback_loop_end_fraction,
        )

    def select(
        self,
        ranked: Sequence[Tuple[float, RepetitionCandidate]],
        frames: Sequence[Frame],
        duration: float,
    ) -> LoopSelection:
        """
        Choose loop boundaries.

        Args:
            ranked: (score, candidate) pairs from RepetitionDetector.rank_candidates
            frames: The analyzed frame sequence
            duration: Video duration in seconds
        """
        if not ranked or not frames:
            loop = LoopSpec(
                start_time=duration * self.fallback_start_fraction,
                end_time=duration * self.fallback_end_fraction,
            )
            logger.info(f"No repetitions, using fallback loop {loop.start_time:.2f}s-{loop.end_time:.2f}s")
            return LoopSelection(loop=self._enforce_bounds(loop, duration))

        best_score, best = ranked[0]
        for score, candidate in ranked[1:]:
            if score > best_score:
                best_score, best = score, candidate

        n = len(frames)
        start = best.start_index
        end = best.other_start_index
        max_length = max(1, int(n * self.max_loop_fraction))
        if end - start > max_length:
            logger.info(f"Clamping loop of {end - start} frames to {max_length}")
            end = start + max_length

        loop = LoopSpec(
            start_time=frames[start].time,
            end_time=frames[end].time if end < n else duration,
        )
        logger.info(f"Best loop: frames {start} to {end} "
                    f"({loop.start_time:.2f}s-{loop.end_time:.2f}s, score {best_score:.3f})")
        return LoopSelection(loop=self._enforce_bounds(loop, duration), candidate=best)

    @staticmethod
    def _enforce_bounds(loop: LoopSpec, duration: float) -> LoopSpec:
        if loop.is_valid(duration):
            return loop
        logger.warning(f"Loop {loop.start_time:.3f}s-{loop.end_time:.3f}s violates bounds, "
                       f"using full duration {duration:.3f}s")
        return LoopSpec(start_time=0.0, end_time=duration)

