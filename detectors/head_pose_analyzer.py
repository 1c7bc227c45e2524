"""头部姿态代理模块

仅用二维关键点做粗略估计：不使用相机内参，也不做 3D 求解。
输出值只需要单调到足以驱动头部子评分，缩放系数是可调参数而非物理常量。
"""

import math

from detectors.eye_analyzer import is_empty_landmarks, is_valid_point
from models.data_models import HeadAngles, LandmarkSet

HEAD_POSE_INDICES = {
    "nose_tip": 1,
    "chin": 152,
    "left_eye_corner": 33,
    "right_eye_corner": 263,
}

DEFAULT_YAW_SCALE = 180.0
DEFAULT_PITCH_SCALE = 90.0

_MIN_NOSE_CHIN = 1e-6


def estimate_head_angles(
    landmarks: LandmarkSet,
    yaw_scale: float = DEFAULT_YAW_SCALE,
    pitch_scale: float = DEFAULT_PITCH_SCALE,
) -> HeadAngles:
    """
    估计头部俯仰/偏航代理值。

    yaw:   鼻尖相对双眼连线中点的水平偏移 × yaw_scale
    pitch: 眼线到鼻尖的垂直距离 / 鼻尖到下巴的垂直距离 × pitch_scale

    Args:
        landmarks: 完整关键点集合（归一化坐标）
        yaw_scale: 偏航缩放系数
        pitch_scale: 俯仰缩放系数

    Returns:
        HeadAngles；关键点缺失时返回 (0, 0)
    """
    if is_empty_landmarks(landmarks):
        return HeadAngles(pitch=0.0, yaw=0.0)

    points = {}
    for key, idx in HEAD_POSE_INDICES.items():
        if idx >= len(landmarks) or not is_valid_point(landmarks[idx]):
            return HeadAngles(pitch=0.0, yaw=0.0)
        points[key] = landmarks[idx]

    nose = points["nose_tip"]
    chin = points["chin"]
    left = points["left_eye_corner"]
    right = points["right_eye_corner"]

    eye_mid_x = (left[0] + right[0]) / 2.0
    eye_mid_y = (left[1] + right[1]) / 2.0

    yaw = abs(nose[0] - eye_mid_x) * yaw_scale
    pitch = abs(eye_mid_y - nose[1]) / max(abs(chin[1] - nose[1]), _MIN_NOSE_CHIN) * pitch_scale

    if not math.isfinite(yaw):
        yaw = 0.0
    if not math.isfinite(pitch):
        pitch = 0.0

    return HeadAngles(pitch=pitch, yaw=yaw)
