"""嘴巴几何模块，负责从关键点集合计算 MAR 值"""

import math

from detectors.eye_analyzer import distance, is_empty_landmarks, is_valid_point
from models.data_models import LandmarkSet

MOUTH_INDICES = {
    "upper": 12,
    "lower": 15,
    "left": 61,
    "right": 291,
}


def calculate_mar(landmarks: LandmarkSet) -> float:
    """
    计算 MAR 值。

    公式: MAR = |upper-lower| / |left-right|

    Args:
        landmarks: 完整关键点集合（按位置索引）

    Returns:
        MAR 值；任一嘴部关键点缺失或分母为零时返回 0.0
    """
    if is_empty_landmarks(landmarks):
        return 0.0

    mouth = {}
    for key, idx in MOUTH_INDICES.items():
        if idx >= len(landmarks) or not is_valid_point(landmarks[idx]):
            return 0.0
        mouth[key] = landmarks[idx]

    horizontal = distance(mouth["left"], mouth["right"])
    if horizontal == 0.0:
        return 0.0

    mar = distance(mouth["upper"], mouth["lower"]) / horizontal
    return mar if math.isfinite(mar) else 0.0
