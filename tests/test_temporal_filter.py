"""时间平滑与去抖单元测试"""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from filters.temporal_filter import (
    ConsecutiveFrameCounter,
    ExponentialSmoother,
    TemporalFilter,
)
from models.data_models import AlertCounters, FrameMetrics


def _metrics(ear=0.3, mar=0.3):
    return FrameMetrics(ear=ear, mar=mar, head_pitch=0.0, head_yaw=0.0)


class TestExponentialSmoother:
    def test_first_sample_seeds_value(self):
        smoother = ExponentialSmoother(alpha=0.2)
        assert smoother.update(0.3) == pytest.approx(0.3)

    def test_recursive_update(self):
        smoother = ExponentialSmoother(alpha=0.2)
        smoother.update(0.3)
        assert smoother.update(0.1) == pytest.approx(0.3 * 0.8 + 0.1 * 0.2)

    def test_zero_samples_do_not_seed(self):
        """初值为 0 时，首个非零样本才作为种子"""
        smoother = ExponentialSmoother(alpha=0.2)
        smoother.update(0.0)
        assert smoother.update(0.28) == pytest.approx(0.28)

    def test_reset(self):
        smoother = ExponentialSmoother()
        smoother.update(0.5)
        smoother.reset()
        assert smoother.value == 0.0
        assert smoother.update(0.2) == pytest.approx(0.2)

    @pytest.mark.parametrize("alpha", [0.0, -0.1, 1.5])
    def test_invalid_alpha(self, alpha):
        with pytest.raises(ValueError):
            ExponentialSmoother(alpha=alpha)


class TestConsecutiveFrameCounter:
    @given(st.lists(st.booleans(), max_size=60))
    def test_increments_by_one_and_resets_to_zero(self, conditions):
        counter = ConsecutiveFrameCounter(required_frames=5)
        previous = 0
        for condition in conditions:
            count = counter.update(condition)
            if condition:
                assert count == previous + 1
            else:
                assert count == 0
            previous = count

    def test_triggered_at_threshold(self):
        counter = ConsecutiveFrameCounter(required_frames=3)
        counter.update(True)
        counter.update(True)
        assert not counter.triggered
        counter.update(True)
        assert counter.triggered

    def test_single_miss_resets(self):
        counter = ConsecutiveFrameCounter(required_frames=3)
        for _ in range(10):
            counter.update(True)
        counter.update(False)
        assert counter.count == 0
        assert not counter.triggered


class TestTemporalFilter:
    def test_eye_counter_counts_low_ear(self):
        temporal = TemporalFilter()
        for _ in range(5):
            smoothed, counters = temporal.update(_metrics(ear=0.1))
        assert smoothed.ear_ema == pytest.approx(0.1)
        assert counters == AlertCounters(ear_below_threshold_frames=5, mar_above_threshold_frames=0)

    def test_drowsy_after_twenty_frames(self):
        temporal = TemporalFilter()
        for _ in range(19):
            temporal.update(_metrics(ear=0.1))
        assert not temporal.is_drowsy
        temporal.update(_metrics(ear=0.1))
        assert temporal.is_drowsy

    def test_yawning_after_fifteen_frames(self):
        temporal = TemporalFilter()
        for _ in range(14):
            temporal.update(_metrics(mar=0.9))
        assert not temporal.is_yawning
        temporal.update(_metrics(mar=0.9))
        assert temporal.is_yawning

    def test_counter_resets_when_ema_recovers(self):
        temporal = TemporalFilter()
        for _ in range(10):
            temporal.update(_metrics(ear=0.2))
        # EMA 需要几帧才能回到阈值之上
        for _ in range(20):
            _, counters = temporal.update(_metrics(ear=0.5))
        assert counters.ear_below_threshold_frames == 0

    def test_smoothing_rejects_single_blink(self):
        temporal = TemporalFilter()
        for _ in range(5):
            temporal.update(_metrics(ear=0.32))
        smoothed, counters = temporal.update(_metrics(ear=0.0))
        assert smoothed.ear_ema == pytest.approx(0.32 * 0.8)
        assert counters.ear_below_threshold_frames == 0

    def test_custom_thresholds(self):
        temporal = TemporalFilter(ear_threshold=0.3, ear_consec_frames=2)
        temporal.update(_metrics(ear=0.28))
        temporal.update(_metrics(ear=0.28))
        assert temporal.is_drowsy

    def test_reset(self):
        temporal = TemporalFilter()
        for _ in range(20):
            temporal.update(_metrics(ear=0.1, mar=0.9))
        temporal.reset()
        assert temporal.smoothed.ear_ema == 0.0
        assert temporal.smoothed.mar_ema == 0.0
        assert temporal.counters == AlertCounters()
