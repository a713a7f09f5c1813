"""Tests for loop rendering."""

import cv2
import numpy as np
import pytest

from app.cv.errors import EncodingFailure, RenderTimeout, SeekTimeout
from app.cv.loop_renderer import FrameEncoder, JpegStillEncoder, LoopRenderer, StillEncoder
from app.cv.loop_selector import LoopSpec
from app.cv.video_source import ArrayVideoSource, OpenCVVideoSource


class RecordingSource(ArrayVideoSource):
    """Remembers every seek time."""

    def __init__(self, frames, fps):
        super().__init__(frames, fps)
        self.seek_times = []

    def seek(self, timestamp, timeout=None):
        self.seek_times.append(timestamp)
        return super().seek(timestamp, timeout)


class RecordingEncoder(FrameEncoder):
    mime_type = "video/test"

    def __init__(self, fail_on_write=None):
        self.fail_on_write = fail_on_write
        self.opened_with = None
        self.frames = []
        self.aborted = False
        self.finished = False

    def open(self, width, height, fps):
        self.opened_with = (width, height, fps)

    def write(self, frame):
        if self.fail_on_write is not None and len(self.frames) == self.fail_on_write:
            raise IOError("disk full")
        self.frames.append(frame.copy())

    def finish(self):
        self.finished = True
        return b"video-bytes"

    def abort(self):
        self.aborted = True


class RecordingStillEncoder(StillEncoder):
    mime_type = "image/test"

    def __init__(self):
        self.frames = []

    def encode(self, frame):
        self.frames.append(frame.copy())
        return b"thumb-bytes"


@pytest.fixture
def ten_second_clip(make_frame):
    return RecordingSource([make_frame(level) for level in range(0, 240, 12)], fps=2)


def test_render_stays_inside_loop(ten_second_clip):
    encoder = RecordingEncoder()
    still = RecordingStillEncoder()
    rendered = LoopRenderer().render(ten_second_clip, LoopSpec(8.0, 10.0), encoder, still)

    loop_seeks = ten_second_clip.seek_times[:-1]
    assert len(loop_seeks) == 3 * 60
    assert all(8.0 <= t < 10.0 for t in loop_seeks)
    assert rendered.frame_count == 180
    assert len(encoder.frames) == 180
    assert encoder.opened_with == (320, 240, 30.0)
    assert encoder.finished and not encoder.aborted


def test_render_returns_encoded_media(ten_second_clip):
    rendered = LoopRenderer().render(
        ten_second_clip, LoopSpec(2.0, 4.0), RecordingEncoder(), RecordingStillEncoder()
    )
    assert rendered.video == b"video-bytes"
    assert rendered.thumbnail == b"thumb-bytes"
    assert rendered.video_mime_type == "video/test"
    assert rendered.thumbnail_mime_type == "image/test"
    assert rendered.fps == 30.0


def test_each_pass_replays_the_same_frames(ten_second_clip):
    encoder = RecordingEncoder()
    LoopRenderer(repeat_count=2).render(ten_second_clip, LoopSpec(2.0, 4.0), encoder, RecordingStillEncoder())

    first, second = encoder.frames[:60], encoder.frames[60:]
    for a, b in zip(first, second):
        np.testing.assert_array_equal(a, b)


def test_thumbnail_comes_from_loop_midpoint(ten_second_clip, make_frame):
    still = RecordingStillEncoder()
    LoopRenderer().render(ten_second_clip, LoopSpec(2.0, 4.0), RecordingEncoder(), still)

    assert ten_second_clip.seek_times[-1] == 3.0
    # Frame 6 of the clip, already at the thumbnail width
    np.testing.assert_array_equal(still.frames[0], make_frame(72))


def test_thumbnail_is_downscaled(ten_second_clip):
    still = RecordingStillEncoder()
    LoopRenderer(thumbnail_width=160).render(ten_second_clip, LoopSpec(2.0, 4.0), RecordingEncoder(), still)
    assert still.frames[0].shape == (120, 160, 3)


def test_invalid_loop_is_rejected_before_encoding(ten_second_clip):
    encoder = RecordingEncoder()
    with pytest.raises(ValueError, match="Invalid loop bounds"):
        LoopRenderer().render(ten_second_clip, LoopSpec(8.0, 12.0), encoder, RecordingStillEncoder())
    assert encoder.opened_with is None


def test_render_timeout_aborts_encoder(ten_second_clip):
    encoder = RecordingEncoder()
    with pytest.raises(RenderTimeout):
        LoopRenderer(timeout=0).render(ten_second_clip, LoopSpec(2.0, 4.0), encoder, RecordingStillEncoder())
    assert encoder.aborted
    assert not encoder.finished


def test_encoder_error_becomes_encoding_failure(ten_second_clip):
    encoder = RecordingEncoder(fail_on_write=5)
    with pytest.raises(EncodingFailure):
        LoopRenderer().render(ten_second_clip, LoopSpec(2.0, 4.0), encoder, RecordingStillEncoder())
    assert encoder.aborted


def test_failed_seeks_repeat_last_frame(make_frame):
    class StallingSource(ArrayVideoSource):
        def seek(self, timestamp, timeout=None):
            if timestamp >= 3.0:
                raise SeekTimeout(timestamp)
            return super().seek(timestamp, timeout)

    source = StallingSource([make_frame(level) for level in range(0, 240, 12)], fps=2)
    encoder = RecordingEncoder()
    still = RecordingStillEncoder()
    rendered = LoopRenderer(repeat_count=1).render(source, LoopSpec(2.0, 4.0), encoder, still)

    assert rendered.frame_count == 60
    assert rendered.seek_failures == 30
    last_good = make_frame(60)
    for frame in encoder.frames[30:]:
        np.testing.assert_array_equal(frame, last_good)
    np.testing.assert_array_equal(still.frames[0], last_good)


def test_frame_times_cover_one_pass():
    times = LoopRenderer(render_fps=30).frame_times(LoopSpec(1.0, 2.0), video_duration=10.0)
    assert len(times) == 30
    assert times[0] == 1.0
    assert times[-1] < 2.0


def test_jpeg_still_encoder(make_frame):
    data = JpegStillEncoder(quality=80).encode(make_frame(120))
    image = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_COLOR)
    assert image.shape == (240, 320, 3)


def test_render_mp4_with_opencv_encoders(drill_video):
    with OpenCVVideoSource(drill_video) as source:
        rendered = LoopRenderer(render_fps=10).render(source, LoopSpec(2.0, 4.0))

    assert rendered.frame_count == 3 * 20
    assert rendered.video_mime_type == "video/mp4"
    assert rendered.thumbnail_mime_type == "image/jpeg"
    assert len(rendered.video) > 0
    assert rendered.thumbnail[:2] == b"\xff\xd8"
