"""
Loop rendering for a selected drill segment.

The renderer re-seeks the video across [loop_start, loop_end) once per
repeat and hands every presented frame to an external FrameEncoder, then
seeks to the loop midpoint for a single thumbnail handed to a StillEncoder.
Three passes by default, so minor boundary artifacts still read as a
seamless loop.

FAILURE HANDLING:
- A failed seek reuses the last drawn frame (black before the first one)
- The whole render runs under one Deadline; on expiry the encoder is
  aborted and RenderTimeout is raised, partial output is discarded
- Any encoder error aborts the encoder and surfaces as EncodingFailure
"""

import logging
import math
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

import cv2
import numpy as np

from app.config import Settings
from app.cv.deadline import Deadline
from app.cv.errors import EncodingFailure, RenderError, RenderTimeout, SeekTimeout
from app.cv.loop_selector import LoopSpec
from app.cv.video_source import PixelBuffer, VideoSource, fit_raster

logger = logging.getLogger(__name__)

# Keeps the last seek strictly inside the video
END_MARGIN_SECONDS = 1e-6


class FrameEncoder(ABC):
    """External video encoder/muxer collaborator."""

    mime_type = "application/octet-stream"

    @abstractmethod
    def open(self, width: int, height: int, fps: float) -> None:
        ...

    @abstractmethod
    def write(self, frame: PixelBuffer) -> None:
        """Accept one RGB frame."""

    @abstractmethod
    def finish(self) -> bytes:
        """Flush and return the encoded media."""

    @abstractmethod
    def abort(self) -> None:
        """Discard everything written so far."""


class StillEncoder(ABC):
    """External still-image encoder collaborator."""

    mime_type = "application/octet-stream"

    @abstractmethod
    def encode(self, frame: PixelBuffer) -> bytes:
        ...


class OpenCVVideoEncoder(FrameEncoder):
    """FrameEncoder writing through cv2.VideoWriter into a temporary file."""

    def __init__(self, fourcc: str = "mp4v", suffix: str = ".mp4", mime_type: str = "video/mp4"):
        self.fourcc = fourcc
        self.suffix = suffix
        self.mime_type = mime_type
        self._writer: Optional[cv2.VideoWriter] = None
        self._path: Optional[str] = None
        self._size = (0, 0)

    def open(self, width: int, height: int, fps: float) -> None:
        fd, self._path = tempfile.mkstemp(suffix=self.suffix)
        os.close(fd)
        self._size = (width, height)
        self._writer = cv2.VideoWriter(self._path, cv2.VideoWriter_fourcc(*self.fourcc), fps, (width, height))
        if not self._writer.isOpened():
            self.abort()
            raise EncodingFailure(f"Could not open {self.fourcc} writer for {width}x{height} @ {fps}fps")

    def write(self, frame: PixelBuffer) -> None:
        if self._writer is None:
            raise EncodingFailure("Encoder is not open")
        width, height = self._size
        if frame.shape[:2] != (height, width):
            frame = cv2.resize(frame, (width, height), interpolation=cv2.INTER_AREA)
        self._writer.write(cv2.cvtColor(frame, cv2.COLOR_RGB2BGR))

    def finish(self) -> bytes:
        if self._writer is None:
            raise EncodingFailure("Encoder is not open")
        self._writer.release()
        self._writer = None
        try:
            with open(self._path, "rb") as f:
                data = f.read()
        finally:
            self._remove_file()
        if not data:
            raise EncodingFailure("Encoder produced no output")
        return data

    def abort(self) -> None:
        if self._writer is not None:
            self._writer.release()
            self._writer = None
        self._remove_file()

    def _remove_file(self) -> None:
        if self._path and os.path.exists(self._path):
            os.remove(self._path)
        self._path = None


class JpegStillEncoder(StillEncoder):
    """StillEncoder producing JPEG bytes with cv2.imencode."""

    mime_type = "image/jpeg"

    def __init__(self, quality: int = 80):
        self.quality = quality

    def encode(self, frame: PixelBuffer) -> bytes:
        bgr = cv2.cvtColor(frame, cv2.COLOR_RGB2BGR)
        ok, buffer = cv2.imencode(".jpg", bgr, [cv2.IMWRITE_JPEG_QUALITY, self.quality])
        if not ok:
            raise EncodingFailure("Failed to create thumbnail")
        return buffer.tobytes()


@dataclass
class RenderedLoop:
    """Encoded loop and thumbnail, handed unmodified to storage."""
    video: bytes
    thumbnail: bytes
    frame_count: int
    fps: float
    video_mime_type: str
    thumbnail_mime_type: str
    seek_failures: int = 0


class LoopRenderer:
    """Replays a LoopSpec through external encoders."""

    def __init__(
        self,
        render_fps: float = 30.0,
        repeat_count: int = 3,
        timeout: Optional[float] = 30.0,
        seek_timeout: Optional[float] = 0.5,
        thumbnail_width: int = 320,
    ):
        self.render_fps = render_fps
        self.repeat_count = repeat_count
        self.timeout = timeout
        self.seek_timeout = seek_timeout
        self.thumbnail_width = thumbnail_width

    @classmethod
    def from_settings(cls, settings: Settings) -> "LoopRenderer":
        return cls(
            render_fps=settings.render_fps,
            repeat_count=settings.loop_repeat_count,
            timeout=settings.render_timeout_seconds,
            seek_timeout=settings.seek_timeout_seconds,
            thumbnail_width=settings.thumbnail_width,
        )

    def frame_times(self, loop: LoopSpec, video_duration: float) -> List[float]:
        """Seek times for one pass, all within [start, min(end, duration))."""
        count = max(1, math.ceil(loop.loop_duration * self.render_fps - 1e-9))
        upper = min(loop.end_time, video_duration) - END_MARGIN_SECONDS
        return [max(loop.start_time, min(loop.start_time + k / self.render_fps, upper)) for k in range(count)]

    def render(
        self,
        source: VideoSource,
        loop: LoopSpec,
        encoder: Optional[FrameEncoder] = None,
        still_encoder: Optional[StillEncoder] = None,
    ) -> RenderedLoop:
        """
        Render the loop and its thumbnail.

        Raises:
            ValueError: loop bounds lie outside the video
            RenderTimeout: the render exceeded its budget
            EncodingFailure: an encoder rejected input
        """
        loop.validate(source.duration)
        encoder = encoder or OpenCVVideoEncoder()
        still_encoder = still_encoder or JpegStillEncoder()

        deadline = Deadline(self.timeout, RenderTimeout)
        times = self.frame_times(loop, source.duration)
        width, height = source.width, source.height

        logger.info(f"Rendering loop {loop.start_time:.2f}s-{loop.end_time:.2f}s: "
                    f"{len(times)} frames x {self.repeat_count} passes at {self.render_fps:.0f}fps")

        try:
            encoder.open(width, height, self.render_fps)
        except RenderError:
            raise
        except Exception as e:
            raise EncodingFailure(f"Encoder failed to open: {e}") from e

        last_frame = np.zeros((height, width, 3), dtype=np.uint8)
        frame_count = 0
        seek_failures = 0

        try:
            for _ in range(self.repeat_count):
                for timestamp in times:
                    deadline.check()
                    try:
                        pixels = source.seek(timestamp, self.seek_timeout)
                    except SeekTimeout as e:
                        seek_failures += 1
                        logger.debug(f"{e}; reusing last drawn frame")
                    else:
                        last_frame = self._fit(pixels, width, height)

                    self._encode(encoder, last_frame)
                    frame_count += 1

            deadline.check()
            thumbnail = self._thumbnail(source, loop, last_frame, still_encoder)
            deadline.check()
            video = self._finish(encoder)
        except Exception as e:
            encoder.abort()
            if isinstance(e, RenderTimeout):
                logger.warning(f"Loop render aborted after {frame_count} frames: {e}")
            raise

        logger.info(f"Created loop video: {len(video) / 1024 / 1024:.2f}MB, {frame_count} frames, "
                    f"{seek_failures} seek fallbacks")

        return RenderedLoop(
            video=video,
            thumbnail=thumbnail,
            frame_count=frame_count,
            fps=self.render_fps,
            video_mime_type=encoder.mime_type,
            thumbnail_mime_type=still_encoder.mime_type,
            seek_failures=seek_failures,
        )

    def _thumbnail(
        self,
        source: VideoSource,
        loop: LoopSpec,
        fallback: np.ndarray,
        still_encoder: StillEncoder,
    ) -> bytes:
        timestamp = min(loop.midpoint, source.duration - END_MARGIN_SECONDS)
        try:
            frame = source.seek(timestamp, self.seek_timeout)
        except SeekTimeout as e:
            logger.debug(f"{e}; using last loop frame for thumbnail")
            frame = fallback

        height, width = frame.shape[:2]
        thumb_width, thumb_height = fit_raster(width, height, self.thumbnail_width, height)
        if (thumb_width, thumb_height) != (width, height):
            frame = cv2.resize(frame, (thumb_width, thumb_height), interpolation=cv2.INTER_AREA)

        try:
            return still_encoder.encode(frame)
        except RenderError:
            raise
        except Exception as e:
            raise EncodingFailure(f"Thumbnail encoder failed: {e}") from e

    @staticmethod
    def _fit(pixels: PixelBuffer, width: int, height: int) -> np.ndarray:
        """Durable copy of pixels at the render size."""
        if pixels.shape[:2] == (height, width):
            return pixels[..., :3].copy()
        return cv2.resize(pixels[..., :3], (width, height), interpolation=cv2.INTER_AREA)

    @staticmethod
    def _encode(encoder: FrameEncoder, frame: np.ndarray) -> None:
        try:
            encoder.write(frame)
        except RenderError:
            raise
        except Exception as e:
            raise EncodingFailure(f"Encoder rejected frame: {e}") from e

    @staticmethod
    def _finish(encoder: FrameEncoder) -> bytes:
        try:
            return encoder.finish()
        except RenderError:
            raise
        except Exception as e:
            raise EncodingFailure(f"Encoder failed to finish: {e}") from e
