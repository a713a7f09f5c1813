"""
Bounded, time-ordered frame sampling.

Each sample is a seek-then-read into the VideoSource. A seek that fails is
not fatal: the sampler re-yields whatever the raster currently holds (the
previous successful capture, or black before the first one) so a single bad
frame never aborts an analysis.

The raster buffer is reused across samples. Consumers must extract durable
values (fingerprint, motion samples) before advancing the iterator.
"""

import logging
import math
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

import cv2
import numpy as np

from app.cv.deadline import Deadline
from app.cv.errors import SeekTimeout
from app.cv.video_source import PixelBuffer, VideoSource, fit_raster

logger = logging.getLogger(__name__)


@dataclass
class SampledFrame:
    """One sample: index in the sequence, seek time and raster pixels."""
    index: int
    time: float
    pixels: PixelBuffer


class FrameSampler:
    """
    Samples a VideoSource evenly over [0, duration).

    The effective rate is min(sample_fps, max_frames / duration), so the
    sequence never exceeds max_frames.
    """

    def __init__(
        self,
        sample_fps: float = 10.0,
        max_frames: int = 300,
        raster_size: Tuple[int, int] = (320, 240),
        seek_timeout: Optional[float] = 0.5,
    ):
        """
        Args:
            sample_fps: Target sampling rate (frames/second)
            max_frames: Hard upper bound on the number of samples
            raster_size: Maximum (width, height) of the downscaled raster
            seek_timeout: Budget handed to every seek
        """
        self.sample_fps = sample_fps
        self.max_frames = max_frames
        self.raster_size = raster_size
        self.seek_timeout = seek_timeout

        self.frames_sampled = 0
        self.seek_failures = 0

    def sample_times(self, duration: float) -> List[float]:
        """Evenly spaced sample times covering [0, duration)."""
        if duration <= 0 or self.sample_fps <= 0 or self.max_frames <= 0:
            return []
        count = min(math.ceil(duration * self.sample_fps - 1e-9), self.max_frames)
        count = max(count, 1)
        interval = duration / count
        return [i * interval for i in range(count)]

    def sample(self, source: VideoSource, deadline: Optional[Deadline] = None) -> Iterator[SampledFrame]:
        """
        Lazily yield samples in strictly increasing time order.

        Yields nothing when the source has no positive duration.
        """
        self.frames_sampled = 0
        self.seek_failures = 0

        duration = source.duration
        if duration <= 0:
            logger.warning(f"Source has non-positive duration ({duration}), nothing to sample")
            return

        times = self.sample_times(duration)
        width, height = fit_raster(source.width, source.height, *self.raster_size)
        raster = np.zeros((height, width, 3), dtype=np.uint8)

        logger.info(f"Sampling {len(times)} frames over {duration:.1f}s "
                    f"({len(times) / duration:.1f} fps) at {width}x{height}")

        for index, timestamp in enumerate(times):
            if deadline is not None:
                deadline.check()

            try:
                pixels = source.seek(timestamp, self.seek_timeout)
            except SeekTimeout as e:
                self.seek_failures += 1
                logger.debug(f"{e}; reusing last presented frame for sample {index}")
            else:
                self._draw(pixels, raster)

            self.frames_sampled += 1
            yield SampledFrame(index=index, time=timestamp, pixels=raster)

        if self.seek_failures:
            logger.info(f"{self.seek_failures}/{self.frames_sampled} seeks fell back to the previous frame")

    @staticmethod
    def _draw(pixels: PixelBuffer, raster: np.ndarray) -> None:
        """Copy pixels into the raster, downscaling when sizes differ."""
        height, width = raster.shape[:2]
        if pixels.shape[:2] == (height, width):
            np.copyto(raster, pixels)
        else:
            raster[...] = cv2.resize(pixels, (width, height), interpolation=cv2.INTER_AREA)
