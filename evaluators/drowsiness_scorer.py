"""综合评分模块：眼/嘴/头三项子评分加权融合为 0-100 的困倦分数"""

import math
from typing import Tuple

from filters.temporal_filter import (
    EAR_CONSEC_FRAMES,
    EAR_THRESHOLD,
    MAR_THRESHOLD,
    YAWN_CONSEC_FRAMES,
)
from models.data_models import AlertCounters, AlertState, HeadAngles

HEAD_TILT_THRESHOLD_DEG = 20.0

# 眼部权重 / 嘴部权重 / 头部权重
DEFAULT_WEIGHTS = (0.5, 0.3, 0.2)

_EYE_GAIN = 400.0
_MOUTH_GAIN = 200.0
_HEAD_GAIN = 2.0


def clamp_score(value: float) -> float:
    """把子评分限制在 [0, 100]，非有限值视为 0"""
    if not math.isfinite(value):
        return 0.0
    return min(100.0, max(0.0, value))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class DrowsinessScorer:
    """根据平滑后的 EAR/MAR 与头部代理角计算综合分数。"""

    def __init__(
        self,
        ear_threshold: float = EAR_THRESHOLD,
        mar_threshold: float = MAR_THRESHOLD,
        head_tilt_threshold: float = HEAD_TILT_THRESHOLD_DEG,
        weights: Tuple[float, float, float] = DEFAULT_WEIGHTS,
    ):
        self.ear_threshold = ear_threshold
        self.mar_threshold = mar_threshold
        self.head_tilt_threshold = head_tilt_threshold
        self.weights = weights

    def eye_score(self, ear_ema: float) -> float:
        return clamp_score((self.ear_threshold - ear_ema) * _EYE_GAIN)

    def mouth_score(self, mar_ema: float) -> float:
        return clamp_score((mar_ema - self.mar_threshold) * _MOUTH_GAIN)

    def head_score(self, angles: HeadAngles) -> float:
        movement = max(abs(angles.pitch), abs(angles.yaw))
        return clamp_score((movement - self.head_tilt_threshold) * _HEAD_GAIN)

    def combine(self, eye_score: float, mouth_score: float, head_score: float) -> int:
        """
        加权融合三项子评分。

        Args:
            eye_score: 眼部子评分
            mouth_score: 嘴部子评分
            head_score: 头部子评分

        Returns:
            [0, 100] 内的整数分数
        """
        w_eye, w_mouth, w_head = self.weights
        total = (
            w_eye * clamp_score(eye_score)
            + w_mouth * clamp_score(mouth_score)
            + w_head * clamp_score(head_score)
        )
        return int(clamp_score(round_half_up(clamp_score(total))))

    def score(self, ear_ema: float, mar_ema: float, angles: HeadAngles) -> int:
        return self.combine(
            self.eye_score(ear_ema),
            self.mouth_score(mar_ema),
            self.head_score(angles),
        )


def determine_alert_state(
    counters: AlertCounters,
    ear_consec_frames: int = EAR_CONSEC_FRAMES,
    yawn_consec_frames: int = YAWN_CONSEC_FRAMES,
) -> AlertState:
    """由连续帧计数器推导告警状态，闭眼优先于哈欠。"""
    if counters.ear_below_threshold_frames >= ear_consec_frames:
        return AlertState.DROWSY_ALERT
    if counters.mar_above_threshold_frames >= yawn_consec_frames:
        return AlertState.YAWN_ALERT
    return AlertState.NORMAL
