"""Tests for the pose-based scorer, using a scripted estimator instead of MediaPipe."""

import numpy as np
import pytest

from app.cv.errors import StrategyUnavailable
from app.cv.pose_scorer import (
    KEY_JOINTS,
    Keypoint,
    PoseKeypoints,
    PoseMotionScorer,
    pose_similarity,
    pose_similarity_matrix,
)


def make_pose(offset, frame_number=0):
    """33 landmarks, all shifted horizontally by ``offset``."""
    landmarks = [Keypoint(x=0.3 + offset, y=0.2 + i * 0.01, z=0.0, visibility=0.9) for i in range(33)]
    return PoseKeypoints(frame_number=frame_number, timestamp=0.0, landmarks=landmarks, overall_confidence=0.9)


class ScriptedEstimator:
    def __init__(self, poses):
        self.poses = list(poses)
        self.closed = False

    def process_frame(self, frame, frame_number, timestamp):
        return self.poses[frame_number]

    def close(self):
        self.closed = True


def blank(shape=(240, 320, 3)):
    return np.zeros(shape, dtype=np.uint8)


def test_key_joints_need_full_landmark_set():
    assert make_pose(0.0).key_joint_coordinates().shape == (len(KEY_JOINTS), 2)
    assert PoseKeypoints(frame_number=0, timestamp=0.0).key_joint_coordinates() is None


def test_motion_is_mean_joint_displacement():
    scorer = PoseMotionScorer(ScriptedEstimator([make_pose(0.0), make_pose(0.1)]))
    first = scorer.score(0.0, blank())
    second = scorer.score(0.1, blank())

    assert first.motion == 0.0
    assert second.motion == pytest.approx(0.1)
    assert first.fingerprint.shape == (2 * len(KEY_JOINTS),)


def test_missing_pose_reuses_last_joints():
    empty = PoseKeypoints(frame_number=1, timestamp=0.1)
    scorer = PoseMotionScorer(ScriptedEstimator([make_pose(0.0), empty]))
    first = scorer.score(0.0, blank())
    second = scorer.score(0.1, blank())

    np.testing.assert_array_equal(first.fingerprint, second.fingerprint)
    assert second.motion == 0.0
    assert scorer.poses_detected == 1


def test_no_pose_at_all_makes_strategy_unavailable():
    empty = PoseKeypoints(frame_number=0, timestamp=0.0)
    scorer = PoseMotionScorer(ScriptedEstimator([empty, empty]))
    scorer.score(0.0, blank())
    scorer.score(0.1, blank())
    with pytest.raises(StrategyUnavailable):
        scorer.check_usable()


def test_similarity_falls_off_with_distance():
    a = make_pose(0.0).key_joint_coordinates().ravel()
    b = make_pose(0.1).key_joint_coordinates().ravel()
    c = make_pose(0.3).key_joint_coordinates().ravel()

    assert pose_similarity(a, a) == 1.0
    assert pose_similarity(a, b) == pytest.approx(0.5)
    assert pose_similarity(a, c) == 0.0


def test_similarity_matrix_matches_pairwise():
    stack = np.stack([make_pose(o).key_joint_coordinates().ravel() for o in (0.0, 0.05, 0.1)])
    matrix = pose_similarity_matrix(stack)
    for i in range(3):
        for j in range(3):
            assert matrix[i, j] == pytest.approx(pose_similarity(stack[i], stack[j]))


def test_close_releases_estimator():
    estimator = ScriptedEstimator([])
    PoseMotionScorer(estimator).close()
    assert estimator.closed
