"""Shared fixtures: synthetic drill clips built with numpy."""

import os

import cv2
import numpy as np
import pytest

from app.config import Settings
from app.cv.video_source import ArrayVideoSource

WIDTH, HEIGHT = 320, 240

# Fill level (rows of white from the top) for one 10-frame movement cycle:
# two still frames, a rise, a fall.
CYCLE_LEVELS = [0, 0, 24, 72, 144, 240, 200, 150, 100, 40]


def fill_level_frame(level, width=WIDTH, height=HEIGHT):
    """RGB frame whose top ``level`` rows are white and the rest black."""
    frame = np.zeros((height, width, 3), dtype=np.uint8)
    frame[:level] = 255
    return frame


@pytest.fixture
def make_frame():
    return fill_level_frame


@pytest.fixture
def repeating_clip():
    """10s clip at 5 FPS that repeats the same movement every 2s."""
    frames = [fill_level_frame(CYCLE_LEVELS[i % len(CYCLE_LEVELS)]) for i in range(50)]
    return ArrayVideoSource(frames, fps=5)


def snake_fill_frame(cells, width=WIDTH, height=HEIGHT):
    """RGB frame whose first ``cells`` 16x8 cells, in reading order, are white."""
    columns, rows = width // 16, height // 8
    grid = np.zeros(columns * rows, dtype=np.uint8)
    grid[:cells] = 255
    plane = np.repeat(np.repeat(grid.reshape(rows, columns), 8, axis=0), 16, axis=1)
    return np.repeat(plane[:, :, None], 3, axis=2)


@pytest.fixture
def accelerating_clip():
    """
    8s clip at 2 FPS that never revisits a pose.

    Frame k whitens 30 + k more cells than the frame before, so motion rises
    every frame and frames six or more apart differ in over 30% of blocks.
    """
    frames = [snake_fill_frame(30 * i + i * (i + 1) // 2) for i in range(16)]
    return ArrayVideoSource(frames, fps=2)


@pytest.fixture
def sawtooth_clip():
    """10s clip at 5 FPS that fills in ten steps, then snaps back empty; no motion onsets."""
    frames = [fill_level_frame(24 * (i % 10)) for i in range(50)]
    return ArrayVideoSource(frames, fps=5)


@pytest.fixture
def make_settings():
    """Settings factory that ignores any local .env file."""
    def _make(**overrides):
        return Settings(_env_file=None, **overrides)
    return _make


@pytest.fixture
def drill_video(tmp_path):
    """Write the repeating clip to an mp4 file at 10 FPS and return its path."""
    path = str(tmp_path / "drill.mp4")
    writer = cv2.VideoWriter(path, cv2.VideoWriter_fourcc(*"mp4v"), 10, (WIDTH, HEIGHT))
    assert writer.isOpened()
    for i in range(100):
        level = CYCLE_LEVELS[(i // 2) % len(CYCLE_LEVELS)]
        writer.write(cv2.cvtColor(fill_level_frame(level), cv2.COLOR_RGB2BGR))
    writer.release()
    assert os.path.getsize(path) > 0
    return path
