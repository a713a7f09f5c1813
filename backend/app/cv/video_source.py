"""
Frame access for drill videos.

A VideoSource exposes duration and natural size plus a single blocking
``seek(timestamp, timeout)`` that returns the RGB pixels presented at that
time or raises SeekTimeout. Callers decide the fallback.

PIXEL FORMAT:
- numpy uint8 array of shape (height, width, 3), RGB channel order
- read-only for the caller; extract what you need before the next seek
"""

import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import cv2
import numpy as np

from app.cv.errors import SeekTimeout, SourceUnreadable

logger = logging.getLogger(__name__)

PixelBuffer = np.ndarray


def fit_raster(width: int, height: int, max_width: int, max_height: int) -> Tuple[int, int]:
    """
    Scale (width, height) down to fit inside max_width x max_height.

    Aspect ratio is preserved and frames are never upscaled.
    """
    if width <= 0 or height <= 0:
        return (max(1, min(width, max_width)), max(1, min(height, max_height)))
    scale = min(1.0, max_width / width, max_height / height)
    return (max(1, int(round(width * scale))), max(1, int(round(height * scale))))


class VideoSource(ABC):
    """Opaque handle to a decodable video, owned by one stage at a time."""

    @property
    @abstractmethod
    def duration(self) -> float:
        """Total duration in seconds."""

    @property
    @abstractmethod
    def width(self) -> int:
        ...

    @property
    @abstractmethod
    def height(self) -> int:
        ...

    @abstractmethod
    def seek(self, timestamp: float, timeout: Optional[float] = None) -> PixelBuffer:
        """
        Present the frame at ``timestamp`` and return its pixels.

        ``timeout`` is advisory. A frame that arrives late is still returned
        and the overrun is only logged; a decoder that hangs is bounded by the
        analysis Deadline, which is checked before the next seek.

        Raises:
            SeekTimeout: the decoder presented no frame at ``timestamp``
        """

    def close(self) -> None:
        """Release decoder resources."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class OpenCVVideoSource(VideoSource):
    """VideoSource backed by cv2.VideoCapture."""

    def __init__(self, video_path: Union[str, Path]):
        self.video_path = str(video_path)
        self._cap = cv2.VideoCapture(self.video_path)
        if not self._cap.isOpened():
            raise SourceUnreadable(f"Cannot open video: {self.video_path}")

        self._width = int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        self._height = int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        self.fps = self._cap.get(cv2.CAP_PROP_FPS)
        self.total_frames = int(self._cap.get(cv2.CAP_PROP_FRAME_COUNT))
        self._duration = self.total_frames / self.fps if self.fps > 0 else 0.0

        if self._duration <= 0:
            self._cap.release()
            raise SourceUnreadable(f"Video has no playable duration: {self.video_path}")

        logger.info(f"Opened {self.video_path}: {self._duration:.1f}s, {self.fps:.1f}fps, "
                    f"{self._width}x{self._height}")

    @property
    def duration(self) -> float:
        return self._duration

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    def seek(self, timestamp: float, timeout: Optional[float] = None) -> PixelBuffer:
        started = time.monotonic()
        self._cap.set(cv2.CAP_PROP_POS_MSEC, timestamp * 1000)
        ret, frame = self._cap.read()
        if not ret or frame is None:
            raise SeekTimeout(timestamp, f"Decoder presented no frame at {timestamp:.3f}s")

        # VideoCapture blocks, so an overrun can only be observed afterwards
        elapsed = time.monotonic() - started
        if timeout is not None and elapsed > timeout:
            logger.debug(f"Seek to {timestamp:.3f}s took {elapsed:.3f}s (budget {timeout:.3f}s)")

        return cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

    def close(self) -> None:
        self._cap.release()


class ArrayVideoSource(VideoSource):
    """
    VideoSource over frames that are already decoded.

    Frame ``k`` is presented during ``[k / fps, (k + 1) / fps)``.
    """

    def __init__(self, frames: Sequence[np.ndarray], fps: float):
        if fps <= 0:
            raise ValueError(f"fps must be positive, got {fps}")
        shapes = {f.shape for f in frames}
        if len(shapes) > 1:
            raise ValueError(f"All frames must share one shape, got {sorted(shapes)}")
        for frame in frames:
            if frame.ndim != 3 or frame.shape[2] != 3 or frame.dtype != np.uint8:
                raise ValueError("Frames must be uint8 arrays of shape (height, width, 3)")

        self.frames = list(frames)
        self.fps = fps

    @property
    def duration(self) -> float:
        return len(self.frames) / self.fps

    @property
    def width(self) -> int:
        return self.frames[0].shape[1] if self.frames else 0

    @property
    def height(self) -> int:
        return self.frames[0].shape[0] if self.frames else 0

    def seek(self, timestamp: float, timeout: Optional[float] = None) -> PixelBuffer:
        if not 0.0 <= timestamp < self.duration:
            raise ValueError(f"Seek to {timestamp:.3f}s outside [0, {self.duration:.3f})")
        index = min(int(timestamp * self.fps + 1e-9), len(self.frames) - 1)
        return self.frames[index]
