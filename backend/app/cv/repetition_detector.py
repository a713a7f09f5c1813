"""
Window-based repetition detector for drill clips.

Searches the per-frame feature sequence for pairs of windows where the
movement starting at one index recurs at a later index.

SEARCH:
1. Window sizes are fractions of the sequence length (fast, medium and slow
   drills), clamped to a minimum number of frames
2. Candidate window starts are CYCLE STARTS: frames where motion rises from
   below the low-motion threshold and keeps increasing. This prunes the
   search to the detected movement onsets. When fewer than two onsets are
   found, or none of them repeat, every position is searched instead
3. Two windows match when enough aligned frame pairs are individually
   similar (matched-frame fraction above the window threshold)
4. Candidates within a few frames of an already-recorded one are dropped

RANKING:
Cycle lengths that recur across many candidates are preferred, weighted by
the mean motion inside the cycle so near-static false positives lose.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from app.config import Settings
from app.cv.deadline import Deadline
from app.cv.fingerprint import Frame, fingerprint_similarity_matrix

logger = logging.getLogger(__name__)


@dataclass
class RepetitionCandidate:
    """Two window starts believed to contain the same movement cycle."""
    start_index: int
    other_start_index: int
    similarity: float
    window_size: int

    @property
    def cycle_length(self) -> int:
        """Implied cycle duration in frames."""
        return self.other_start_index - self.start_index


@dataclass
class DetectionThresholds:
    """Similarity and motion thresholds for the repetition search."""
    frame_similarity: float = 0.7       # A frame pair "matches" above this
    window_similarity: float = 0.75     # Matched-frame fraction needed for a candidate
    cycle_start_motion: float = 0.05    # Below this = at rest
    dedup_tolerance: int = 5            # Frames, on both indices
    cycle_duration_tolerance: int = 5   # Frames, for the consistency ranking
    key_frame_percentile: float = 0.75

    @classmethod
    def from_settings(cls, settings: Settings) -> "DetectionThresholds":
        return cls(
            frame_similarity=settings.frame_similarity_threshold,
            window_similarity=settings.window_similarity_threshold,
            cycle_start_motion=settings.cycle_start_motion_threshold,
            dedup_tolerance=settings.candidate_dedup_tolerance,
            cycle_duration_tolerance=settings.cycle_duration_tolerance,
            key_frame_percentile=settings.key_frame_percentile,
        )


class RepetitionDetector:
    """
    Finds recurring windows in a frame sequence.

    The per-frame similarity is pluggable: the motion-fingerprint strategy
    compares fingerprint bits, the pose strategy compares joint positions.
    """

    def __init__(
        self,
        thresholds: Optional[DetectionThresholds] = None,
        window_fractions: Sequence[float] = (1 / 15, 1 / 10, 1 / 5),
        min_window_frames: int = 5,
        min_frames: int = 10,
        use_cycle_starts: bool = True,
        pairwise_similarity: Callable[[np.ndarray], np.ndarray] = fingerprint_similarity_matrix,
    ):
        """
        Args:
            thresholds: Similarity/motion thresholds (defaults if omitted)
            window_fractions: Window sizes as fractions of the frame count
            min_window_frames: Lower clamp for every window size
            min_frames: Sequences shorter than this yield no candidates
            use_cycle_starts: Restrict window starts to detected cycle starts
            pairwise_similarity: Maps stacked fingerprints (n, k) to an
                (n, n) similarity matrix with values in [0, 1]
        """
        self.thresholds = thresholds or DetectionThresholds()
        self.window_fractions = list(window_fractions)
        self.min_window_frames = min_window_frames
        self.min_frames = min_frames
        self.use_cycle_starts = use_cycle_starts
        self.pairwise_similarity = pairwise_similarity

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        pairwise_similarity: Callable[[np.ndarray], np.ndarray] = fingerprint_similarity_matrix,
    ) -> "RepetitionDetector":
        return cls(
            thresholds=DetectionThresholds.from_settings(settings),
            window_fractions=settings.window_size_fractions,
            min_window_frames=settings.min_window_frames,
            min_frames=settings.min_analysis_frames,
            use_cycle_starts=settings.use_cycle_starts,
            pairwise_similarity=pairwise_similarity,
        )

    def window_sizes(self, frame_count: int) -> List[int]:
        """Distinct window sizes for a sequence of frame_count frames."""
        sizes = []
        for fraction in self.window_fractions:
            size = max(self.min_window_frames, int(frame_count * fraction))
            if size not in sizes:
                sizes.append(size)
        return sizes

    def find_cycle_starts(self, frames: Sequence[Frame]) -> List[int]:
        """Indices where motion rises out of rest and keeps increasing."""
        threshold = self.thresholds.cycle_start_motion
        starts = []
        for i in range(1, len(frames) - 1):
            prev_motion = frames[i - 1].motion
            curr_motion = frames[i].motion
            next_motion = frames[i + 1].motion
            if prev_motion < threshold < curr_motion < next_motion:
                starts.append(i)
        return starts

    def match_matrix(self, frames: Sequence[Frame]) -> np.ndarray:
        """(n, n) boolean matrix of per-frame matches."""
        fingerprints = np.stack([f.fingerprint for f in frames])
        return self.pairwise_similarity(fingerprints) > self.thresholds.frame_similarity

    @staticmethod
    def window_similarity(matches: np.ndarray, i: int, j: int, window_size: int) -> float:
        """Fraction of aligned frame pairs in windows i and j that match."""
        offsets = np.arange(window_size)
        return float(matches[i + offsets, j + offsets].mean())

    def detect(
        self,
        frames: Sequence[Frame],
        deadline: Optional[Deadline] = None,
    ) -> List[RepetitionCandidate]:
        """
        Search for repeating windows.

        Returns:
            Deduplicated candidates in discovery order
        """
        n = len(frames)
        if n < self.min_frames:
            logger.info(f"Only {n} frames (< {self.min_frames}), skipping repetition search")
            return []

        matches = self.match_matrix(frames)
        sizes = self.window_sizes(n)
        logger.info(f"Trying window sizes: {sizes}")

        found: List[RepetitionCandidate] = []
        if self.use_cycle_starts:
            starts = self.find_cycle_starts(frames)
            logger.info(f"Found {len(starts)} potential cycle starts")
            if len(starts) >= 2:
                found = self.search(matches, starts, sizes, deadline)
            if not found:
                logger.info("No repetitions between cycle starts, searching every position")
        if not found:
            found = self.search(matches, range(n), sizes, deadline)

        unique = self.deduplicate(found)
        logger.info(f"Found {len(unique)} unique repetitions ({len(found)} before deduplication)")
        return unique

    def search(
        self,
        matches: np.ndarray,
        starts: Sequence[int],
        sizes: Sequence[int],
        deadline: Optional[Deadline] = None,
    ) -> List[RepetitionCandidate]:
        """Compare every pair of non-overlapping windows beginning at `starts`."""
        n = len(matches)
        found: List[RepetitionCandidate] = []
        for window_size in sizes:
            if deadline is not None:
                deadline.check()

            usable = [s for s in starts if s + window_size <= n]
            for a, start in enumerate(usable):
                for other in usable[a + 1:]:
                    if other <= start + window_size:
                        continue
                    similarity = self.window_similarity(matches, start, other, window_size)
                    if similarity > self.thresholds.window_similarity:
                        found.append(RepetitionCandidate(
                            start_index=start,
                            other_start_index=other,
                            similarity=similarity,
                            window_size=window_size,
                        ))
                        logger.debug(f"Frames {start}-{start + window_size} similar to "
                                     f"{other}-{other + window_size} ({similarity:.0%} match)")
        return found

    def deduplicate(self, candidates: Sequence[RepetitionCandidate]) -> List[RepetitionCandidate]:
        """Keep the first candidate of every cluster of near-identical index pairs."""
        tolerance = self.thresholds.dedup_tolerance
        unique: List[RepetitionCandidate] = []
        for candidate in candidates:
            duplicate = any(
                abs(kept.start_index - candidate.start_index) < tolerance
                and abs(kept.other_start_index - candidate.other_start_index) < tolerance
                for kept in unique
            )
            if not duplicate:
                unique.append(candidate)
        return unique

    def rank_candidates(
        self,
        candidates: Sequence[RepetitionCandidate],
        frames: Sequence[Frame],
    ) -> List[Tuple[float, RepetitionCandidate]]:
        """
        Score candidates by cycle-length consistency times mean motion.

        Returns:
            (score, candidate) pairs in the input order
        """
        tolerance = self.thresholds.cycle_duration_tolerance
        lengths = [c.cycle_length for c in candidates]

        ranked = []
        for candidate in candidates:
            consistency = sum(1 for length in lengths if abs(length - candidate.cycle_length) < tolerance)
            cycle = frames[candidate.start_index:candidate.other_start_index]
            avg_motion = float(np.mean([f.motion for f in cycle])) if cycle else 0.0
            ranked.append((consistency * avg_motion, candidate))
        return ranked

    def find_key_frames(self, frames: Sequence[Frame]) -> List[int]:
        """Interior local motion peaks above the configured percentile."""
        n = len(frames)
        if n < 3:
            return []

        motion = np.array([f.motion for f in frames])
        rank = min(int(n * self.thresholds.key_frame_percentile), n - 1)
        threshold = np.sort(motion)[rank]

        key_frames = [
            i for i in range(1, n - 1)
            if motion[i] > threshold and motion[i] > motion[i - 1] and motion[i] > motion[i + 1]
        ]
        logger.info(f"Found {len(key_frames)} key frames")
        return key_frames
