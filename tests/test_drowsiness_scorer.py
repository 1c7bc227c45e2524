"""DrowsinessScorer 单元测试"""

import math

import pytest
from hypothesis import given
from hypothesis import strategies as st

from evaluators.drowsiness_scorer import (
    DrowsinessScorer,
    clamp_score,
    determine_alert_state,
    round_half_up,
)
from models.data_models import AlertCounters, AlertState, HeadAngles


@pytest.fixture
def scorer():
    return DrowsinessScorer()


class TestSubScores:
    def test_eye_score(self, scorer):
        assert scorer.eye_score(0.1) == pytest.approx(60.0)
        assert scorer.eye_score(0.3) == 0.0
        assert scorer.eye_score(0.0) == 100.0

    def test_mouth_score(self, scorer):
        assert scorer.mouth_score(0.8) == pytest.approx(40.0)
        assert scorer.mouth_score(0.5) == 0.0
        assert scorer.mouth_score(2.0) == 100.0

    def test_head_score_uses_larger_angle(self, scorer):
        assert scorer.head_score(HeadAngles(pitch=10.0, yaw=45.0)) == pytest.approx(50.0)
        assert scorer.head_score(HeadAngles(pitch=-45.0, yaw=0.0)) == pytest.approx(50.0)
        assert scorer.head_score(HeadAngles(pitch=5.0, yaw=5.0)) == 0.0


class TestCombine:
    def test_weighted_sum(self, scorer):
        # 0.5*60 + 0.3*40 + 0.2*50 = 52
        assert scorer.combine(60.0, 40.0, 50.0) == 52

    def test_rounds_half_up(self, scorer):
        # 0.5*1 = 0.5 → 1
        assert scorer.combine(1.0, 0.0, 0.0) == 1

    def test_all_max(self, scorer):
        assert scorer.combine(100.0, 100.0, 100.0) == 100

    def test_score_end_to_end(self, scorer):
        assert scorer.score(0.1, 0.3, HeadAngles(pitch=0.0, yaw=0.0)) == 30

    @given(
        st.floats(allow_nan=False, allow_infinity=False),
        st.floats(allow_nan=False, allow_infinity=False),
        st.floats(allow_nan=False, allow_infinity=False),
    )
    def test_always_integer_in_range(self, eye, mouth, head):
        result = DrowsinessScorer().combine(eye, mouth, head)
        assert isinstance(result, int)
        assert 0 <= result <= 100

    @given(st.floats(allow_nan=False), st.floats(allow_nan=False), st.floats(), st.floats())
    def test_score_in_range_for_any_input(self, ear_ema, mar_ema, pitch, yaw):
        result = DrowsinessScorer().score(ear_ema, mar_ema, HeadAngles(pitch=pitch, yaw=yaw))
        assert isinstance(result, int)
        assert 0 <= result <= 100

    def test_oversized_weights_still_clamped(self):
        scorer = DrowsinessScorer(weights=(1.0, 1.0, 1.0))
        assert scorer.combine(100.0, 100.0, 100.0) == 100


class TestHelpers:
    def test_clamp_score(self):
        assert clamp_score(-5.0) == 0.0
        assert clamp_score(150.0) == 100.0
        assert clamp_score(math.nan) == 0.0
        assert clamp_score(math.inf) == 0.0

    def test_round_half_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(2.4) == 2


class TestDetermineAlertState:
    def test_normal(self):
        assert determine_alert_state(AlertCounters(19, 14)) is AlertState.NORMAL

    def test_drowsy(self):
        assert determine_alert_state(AlertCounters(20, 0)) is AlertState.DROWSY_ALERT

    def test_yawn(self):
        assert determine_alert_state(AlertCounters(0, 15)) is AlertState.YAWN_ALERT

    def test_drowsy_takes_precedence(self):
        assert determine_alert_state(AlertCounters(25, 30)) is AlertState.DROWSY_ALERT

    def test_custom_thresholds(self):
        assert determine_alert_state(AlertCounters(3, 0), ear_consec_frames=3) is AlertState.DROWSY_ALERT
