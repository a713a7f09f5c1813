"""
Pose-based scorer (alternate strategy).

Instead of fingerprint bits, each frame is described by the (x, y)
positions of 12 key joints from a pose landmarker. Motion is the mean joint
displacement between consecutive frames and per-frame similarity is
max(0, 1 - 5 * distance) averaged over joints. Everything downstream
(detector control flow, selector, confidence) is shared with the
motion-fingerprint strategy.
"""

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional

import numpy as np

from app.cv.errors import StrategyUnavailable
from app.cv.fingerprint import Frame
from app.cv.video_source import PixelBuffer

logger = logging.getLogger(__name__)


class MediaPipeLandmark(IntEnum):
    """MediaPipe Pose landmark indices used by the drill analysis."""
    LEFT_SHOULDER = 11
    RIGHT_SHOULDER = 12
    LEFT_ELBOW = 13
    RIGHT_ELBOW = 14
    LEFT_WRIST = 15
    RIGHT_WRIST = 16
    LEFT_HIP = 23
    RIGHT_HIP = 24
    LEFT_KNEE = 25
    RIGHT_KNEE = 26
    LEFT_ANKLE = 27
    RIGHT_ANKLE = 28


KEY_JOINTS = tuple(MediaPipeLandmark)

# A joint displaced by 0.2 of the frame or more contributes zero similarity
DISTANCE_SCALE = 5.0


@dataclass
class Keypoint:
    """Single keypoint with normalized position and visibility."""
    x: float  # Normalized x coordinate (0-1)
    y: float  # Normalized y coordinate (0-1)
    z: float  # Depth relative to hips
    visibility: float  # Confidence score (0-1)


@dataclass
class PoseKeypoints:
    """Pose landmarks detected in one frame."""
    frame_number: int
    timestamp: float
    landmarks: List[Keypoint] = field(default_factory=list)
    overall_confidence: float = 0.0

    @classmethod
    def from_mediapipe_tasks(cls, result, frame_number: int, timestamp: float) -> "PoseKeypoints":
        """Create PoseKeypoints from a MediaPipe Tasks result."""
        if not result.pose_landmarks:
            return cls(frame_number=frame_number, timestamp=timestamp)

        # Use first detected pose
        landmarks = [
            Keypoint(
                x=lm.x,
                y=lm.y,
                z=lm.z,
                visibility=lm.visibility if getattr(lm, "visibility", None) is not None else 0.5,
            )
            for lm in result.pose_landmarks[0]
        ]
        overall_confidence = sum(kp.visibility for kp in landmarks) / len(landmarks) if landmarks else 0.0
        return cls(
            frame_number=frame_number,
            timestamp=timestamp,
            landmarks=landmarks,
            overall_confidence=overall_confidence,
        )

    def key_joint_coordinates(self) -> Optional[np.ndarray]:
        """(12, 2) array of key joint positions, or None if any is missing."""
        if len(self.landmarks) <= max(KEY_JOINTS):
            return None
        return np.array([[self.landmarks[j].x, self.landmarks[j].y] for j in KEY_JOINTS])


def pose_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Mean per-joint similarity of two flattened key-joint vectors."""
    distances = np.linalg.norm(a.reshape(-1, 2) - b.reshape(-1, 2), axis=1)
    return float(np.clip(1.0 - DISTANCE_SCALE * distances, 0.0, 1.0).mean())


def pose_similarity_matrix(fingerprints: np.ndarray) -> np.ndarray:
    """Pairwise pose_similarity for a (n, 24) stack of joint vectors."""
    joints = fingerprints.reshape(len(fingerprints), -1, 2)
    distances = np.linalg.norm(joints[:, None, :, :] - joints[None, :, :, :], axis=3)
    return np.clip(1.0 - DISTANCE_SCALE * distances, 0.0, 1.0).mean(axis=2)


class PoseMotionScorer:
    """
    Scorer for the pose-based strategy.

    Frames where no pose is detected reuse the last detected joints. A pass
    in which no pose is ever detected makes the strategy unavailable.
    """

    def __init__(self, estimator):
        """
        Args:
            estimator: Object with process_frame(frame, frame_number, timestamp)
                returning PoseKeypoints, and close()
        """
        self.estimator = estimator
        self.reset()

    def reset(self) -> None:
        self._frame_number = 0
        self._last_joints: Optional[np.ndarray] = None
        self._previous: Optional[np.ndarray] = None
        self.poses_detected = 0

    def score(self, timestamp: float, pixels: PixelBuffer) -> Frame:
        pose = self.estimator.process_frame(pixels, frame_number=self._frame_number, timestamp=timestamp)
        self._frame_number += 1

        joints = pose.key_joint_coordinates()
        if joints is not None:
            self.poses_detected += 1
            self._last_joints = joints
        elif self._last_joints is not None:
            joints = self._last_joints
        else:
            joints = np.zeros((len(KEY_JOINTS), 2))

        if self._previous is None:
            motion = 0.0
        else:
            displacement = np.linalg.norm(joints - self._previous, axis=1).mean()
            motion = float(np.clip(displacement, 0.0, 1.0))
        self._previous = joints

        return Frame(time=timestamp, fingerprint=joints.ravel(), motion=motion)

    def check_usable(self) -> None:
        if self._frame_number and not self.poses_detected:
            raise StrategyUnavailable(f"No pose detected in {self._frame_number} frames")
        logger.info(f"Pose detected in {self.poses_detected}/{self._frame_number} frames")

    def similarity_matrix(self, fingerprints: np.ndarray) -> np.ndarray:
        return pose_similarity_matrix(fingerprints)

    def close(self) -> None:
        self.estimator.close()
