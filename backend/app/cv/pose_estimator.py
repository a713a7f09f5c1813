"""
Pose estimation using MediaPipe for the pose-based drill strategy.

Extracts body landmarks from sampled frames. Only the key joints listed in
app.cv.pose_scorer are used downstream.

Updated for MediaPipe 0.10.30+ Tasks API.
"""

import os
from typing import Optional

import numpy as np

import mediapipe as mp
from mediapipe.tasks import python
from mediapipe.tasks.python import vision

from app.cv.pose_scorer import PoseKeypoints

MODEL_NAMES = {
    0: "pose_landmarker_lite.task",
    1: "pose_landmarker_full.task",
    2: "pose_landmarker_heavy.task",
}


def get_model_path(complexity: int = 0, model_dir: str = "./models") -> str:
    """
    Get the path to the pose landmarker model.

    Args:
        complexity: 0=lite (fastest), 1=full, 2=heavy (most accurate)
        model_dir: Directory holding the .task files
    """
    preferred = MODEL_NAMES.get(complexity, MODEL_NAMES[0])
    names = [preferred] + [n for n in MODEL_NAMES.values() if n != preferred]

    for name in names:
        path = os.path.abspath(os.path.join(model_dir, name))
        if os.path.exists(path):
            return path

    raise FileNotFoundError(
        f"Pose landmarker model not found in {os.path.abspath(model_dir)}. "
        "Download from: https://storage.googleapis.com/mediapipe-models/pose_landmarker/"
    )


class PoseEstimator:
    """
    Pose estimation engine using MediaPipe Tasks API (0.10.30+).

    Runs in VIDEO mode, so one instance serves exactly one sampling pass.
    """

    def __init__(
        self,
        model_path: str,
        min_detection_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5,
    ):
        base_options = python.BaseOptions(model_asset_path=model_path)
        options = vision.PoseLandmarkerOptions(
            base_options=base_options,
            running_mode=vision.RunningMode.VIDEO,
            min_pose_detection_confidence=min_detection_confidence,
            min_tracking_confidence=min_tracking_confidence,
            num_poses=1,  # Single athlete per drill
        )

        self.landmarker = vision.PoseLandmarker.create_from_options(options)
        self._frame_timestamp_ms: Optional[int] = None

    def process_frame(self, frame: np.ndarray, frame_number: int, timestamp: float) -> PoseKeypoints:
        """
        Extract pose landmarks from one frame.

        Args:
            frame: RGB raster from the frame sampler
            frame_number: Sample index
            timestamp: Sample time in seconds
        """
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=np.ascontiguousarray(frame[..., :3]))

        # Timestamp must be monotonically increasing in VIDEO mode
        timestamp_ms = int(timestamp * 1000)
        if self._frame_timestamp_ms is not None and timestamp_ms <= self._frame_timestamp_ms:
            timestamp_ms = self._frame_timestamp_ms + 1
        self._frame_timestamp_ms = timestamp_ms

        result = self.landmarker.detect_for_video(mp_image, timestamp_ms)
        return PoseKeypoints.from_mediapipe_tasks(result, frame_number=frame_number, timestamp=timestamp)

    def close(self):
        """Release resources."""
        self.landmarker.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
