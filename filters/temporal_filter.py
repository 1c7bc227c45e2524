"""时间平滑与去抖模块：EAR/MAR 指数滑动平均 + 连续帧计数"""

from typing import Tuple

from models.data_models import AlertCounters, FrameMetrics, SmoothedMetrics

EAR_THRESHOLD = 0.25
MAR_THRESHOLD = 0.6
EAR_CONSEC_FRAMES = 20
YAWN_CONSEC_FRAMES = 15
SMOOTHING_ALPHA = 0.2


class ExponentialSmoother:
    """指数滑动平均，首个非零样本直接作为初值，避免冷启动偏向“困倦”"""

    def __init__(self, alpha: float = SMOOTHING_ALPHA):
        if not 0.0 < alpha <= 1.0:
            raise ValueError(f"alpha 必须在 (0, 1] 区间内: {alpha}")
        self.alpha = alpha
        self._value = 0.0

    @property
    def value(self) -> float:
        return self._value

    def update(self, raw: float) -> float:
        if self._value == 0.0:
            self._value = raw
        else:
            self._value = self._value * (1.0 - self.alpha) + raw * self.alpha
        return self._value

    def reset(self):
        self._value = 0.0


class ConsecutiveFrameCounter:
    """条件成立时每帧 +1，条件不成立的第一帧立即归零"""

    def __init__(self, required_frames: int):
        self.required_frames = required_frames
        self._count = 0

    @property
    def count(self) -> int:
        return self._count

    @property
    def triggered(self) -> bool:
        return self._count >= self.required_frames

    def update(self, condition: bool) -> int:
        if condition:
            self._count += 1
        else:
            self._count = 0
        return self._count

    def reset(self):
        self._count = 0


class TemporalFilter:
    """
    对每帧 EAR/MAR 做平滑并维护去抖计数器。

    该对象只在单线程的逐帧回调中被修改，不需要加锁。
    """

    def __init__(
        self,
        alpha: float = SMOOTHING_ALPHA,
        ear_threshold: float = EAR_THRESHOLD,
        mar_threshold: float = MAR_THRESHOLD,
        ear_consec_frames: int = EAR_CONSEC_FRAMES,
        yawn_consec_frames: int = YAWN_CONSEC_FRAMES,
    ):
        self.ear_threshold = ear_threshold
        self.mar_threshold = mar_threshold
        self._ear_smoother = ExponentialSmoother(alpha)
        self._mar_smoother = ExponentialSmoother(alpha)
        self._eye_counter = ConsecutiveFrameCounter(ear_consec_frames)
        self._mouth_counter = ConsecutiveFrameCounter(yawn_consec_frames)

    @property
    def smoothed(self) -> SmoothedMetrics:
        return SmoothedMetrics(
            ear_ema=self._ear_smoother.value,
            mar_ema=self._mar_smoother.value,
        )

    @property
    def counters(self) -> AlertCounters:
        return AlertCounters(
            ear_below_threshold_frames=self._eye_counter.count,
            mar_above_threshold_frames=self._mouth_counter.count,
        )

    @property
    def is_drowsy(self) -> bool:
        return self._eye_counter.triggered

    @property
    def is_yawning(self) -> bool:
        return self._mouth_counter.triggered

    def update(self, metrics: FrameMetrics) -> Tuple[SmoothedMetrics, AlertCounters]:
        """
        输入一帧原始指标，返回更新后的平滑值和计数器。

        Args:
            metrics: 当前帧 FrameMetrics

        Returns:
            (SmoothedMetrics, AlertCounters)
        """
        ear_ema = self._ear_smoother.update(metrics.ear)
        mar_ema = self._mar_smoother.update(metrics.mar)

        self._eye_counter.update(ear_ema < self.ear_threshold)
        self._mouth_counter.update(mar_ema > self.mar_threshold)

        return self.smoothed, self.counters

    def reset(self):
        """会话开始时重置平滑状态和计数器"""
        self._ear_smoother.reset()
        self._mar_smoother.reset()
        self._eye_counter.reset()
        self._mouth_counter.reset()
