"""End-to-end tests for the drill analysis pipeline."""

import numpy as np
import pytest

from app.cv.drill_analyzer import AnalysisResult, DrillAnalyzer
from app.cv.errors import AnalysisTimeout, SeekTimeout, StrategyUnavailable
from app.cv.strategies import AnalysisStrategy
from app.cv.video_source import ArrayVideoSource


def test_repeating_drill_finds_two_second_loop(repeating_clip, make_settings):
    analyzer = DrillAnalyzer(settings=make_settings(analysis_sample_fps=5))
    result = analyzer.analyze(repeating_clip)

    assert result.duration == pytest.approx(10.0)
    assert result.frames_analyzed == 50
    assert result.repetition_count == 10
    assert result.loop_start == pytest.approx(0.4)
    assert result.loop_end == pytest.approx(2.4)
    assert result.loop_end - result.loop_start == pytest.approx(2.0)
    assert result.confidence == 0.9
    assert result.key_frames == (5, 15, 25, 35, 45)
    assert result.key_frame_times == pytest.approx((1.0, 3.0, 5.0, 7.0, 9.0))
    assert result.strategy == AnalysisStrategy.MOTION_FINGERPRINT.value


def test_non_recurring_clip_uses_fallback_loop(accelerating_clip, make_settings):
    analyzer = DrillAnalyzer(settings=make_settings(analysis_sample_fps=2))
    result = analyzer.analyze(accelerating_clip)

    assert result.frames_analyzed == 16
    assert result.repetition_count == 0
    assert result.loop_start == pytest.approx(1.6)
    assert result.loop_end == pytest.approx(6.4)
    assert result.confidence == 0.3


def test_drill_without_motion_onsets_still_repeats(sawtooth_clip, make_settings):
    analyzer = DrillAnalyzer(settings=make_settings(analysis_sample_fps=5))
    result = analyzer.analyze(sawtooth_clip)

    assert result.repetition_count >= 1
    assert result.confidence >= 0.6
    assert result.loop_end - result.loop_start == pytest.approx(2.0, abs=0.5)


def test_empty_video_yields_zero_result(make_settings):
    analyzer = DrillAnalyzer(settings=make_settings())
    assert analyzer.analyze(ArrayVideoSource([], fps=5)) == AnalysisResult.empty()


def test_single_frame_yields_zero_result(make_frame, make_settings):
    analyzer = DrillAnalyzer(settings=make_settings(analysis_sample_fps=5))
    result = analyzer.analyze(ArrayVideoSource([make_frame(120)], fps=5))
    assert result == AnalysisResult.empty()
    assert result.to_dict() == {
        "duration": 0.0,
        "repetitions": 0,
        "keyFrames": [],
        "loopStart": 0.0,
        "loopEnd": 0.0,
        "confidence": 0.0,
    }


def test_loop_invariant_holds_for_every_result(repeating_clip, accelerating_clip, make_settings):
    for source, fps in ((repeating_clip, 5), (accelerating_clip, 2), (repeating_clip, 10)):
        result = DrillAnalyzer(settings=make_settings(analysis_sample_fps=fps)).analyze(source)
        assert 0.0 <= result.loop_start < result.loop_end <= result.duration
        assert 0.0 <= result.confidence <= 1.0


def test_analysis_is_deterministic(repeating_clip, make_settings):
    analyzer = DrillAnalyzer(settings=make_settings(analysis_sample_fps=5))
    assert analyzer.analyze(repeating_clip) == analyzer.analyze(repeating_clip)


def test_seek_failures_do_not_abort_analysis(repeating_clip, make_settings):
    class StallingSource(ArrayVideoSource):
        seeks = 0

        def seek(self, timestamp, timeout=None):
            self.seeks += 1
            if self.seeks % 10 == 0:
                raise SeekTimeout(timestamp)
            return super().seek(timestamp, timeout)

    source = StallingSource(repeating_clip.frames, fps=5)
    result = DrillAnalyzer(settings=make_settings(analysis_sample_fps=5)).analyze(source)

    assert result.frames_analyzed == 50
    assert result.seek_failures == 5
    assert 0.0 <= result.loop_start < result.loop_end <= result.duration


def test_analysis_timeout_is_surfaced(repeating_clip, make_settings):
    analyzer = DrillAnalyzer(settings=make_settings(analysis_timeout_seconds=0))
    with pytest.raises(AnalysisTimeout):
        analyzer.analyze(repeating_clip)


def test_progress_is_reported(repeating_clip, make_settings):
    progress = []
    analyzer = DrillAnalyzer(settings=make_settings(analysis_sample_fps=5), progress_callback=progress.append)
    analyzer.analyze(repeating_clip)

    assert progress == pytest.approx([0.2, 0.4, 0.6, 0.8, 1.0, 1.0])


def test_unavailable_pose_strategy_falls_back(repeating_clip, make_settings, tmp_path):
    settings = make_settings(
        analysis_sample_fps=5,
        analysis_strategies=["pose_based", "motion_fingerprint"],
        pose_model_dir=str(tmp_path / "missing"),
    )
    result = DrillAnalyzer(settings=settings).analyze(repeating_clip)

    assert result.strategy == "motion_fingerprint"
    assert result.repetition_count == 10


def test_no_available_strategy_raises(repeating_clip, make_settings, tmp_path):
    settings = make_settings(analysis_strategies=["pose_based"], pose_model_dir=str(tmp_path / "missing"))
    with pytest.raises(StrategyUnavailable):
        DrillAnalyzer(settings=settings).analyze(repeating_clip)


def test_unreadable_file_yields_zero_result(tmp_path, make_settings):
    path = tmp_path / "broken.mp4"
    path.write_bytes(b"not a video")
    assert DrillAnalyzer(settings=make_settings()).analyze_file(path) == AnalysisResult.empty()


def test_missing_file_yields_zero_result(tmp_path, make_settings):
    result = DrillAnalyzer(settings=make_settings()).analyze_file(tmp_path / "missing.mp4")
    assert result == AnalysisResult.empty()


def test_analyze_mp4_file(drill_video, make_settings):
    result = DrillAnalyzer(settings=make_settings()).analyze_file(drill_video)

    assert result.duration == pytest.approx(10.0, abs=0.2)
    assert result.frames_analyzed > 0
    assert result.repetition_count >= 1
    assert result.confidence >= 0.6
    assert result.loop_end - result.loop_start == pytest.approx(2.0, abs=0.3)
    assert 0.0 <= result.loop_start < result.loop_end <= result.duration
    assert np.all(np.diff(result.key_frames) > 0)
