"""眼睛几何模块，负责从关键点集合计算 EAR 值"""

import math
from typing import List, Sequence

from models.data_models import LandmarkSet, Point

# 关键点索引：外眼角, 上眼睑×2, 内眼角, 下眼睑×2
LEFT_EYE_INDICES = [33, 160, 158, 133, 153, 144]
RIGHT_EYE_INDICES = [362, 385, 387, 263, 373, 380]

EYE_POINT_COUNT = 6


def is_valid_point(point) -> bool:
    """判断关键点是否可用：非空、至少两个坐标且 x/y 为有限数值"""
    if point is None:
        return False
    try:
        x, y = float(point[0]), float(point[1])
    except (TypeError, ValueError, IndexError):
        return False
    return math.isfinite(x) and math.isfinite(y)


def is_empty_landmarks(landmarks) -> bool:
    """None 或长度为 0；兼容列表和 numpy 数组"""
    return landmarks is None or len(landmarks) == 0


def distance(a: Point, b: Point) -> float:
    """两点间的二维欧氏距离（忽略 z）"""
    return math.hypot(a[0] - b[0], a[1] - b[1])


def select_points(landmarks: LandmarkSet, indices: Sequence[int]) -> List[Point]:
    """按索引取出可用关键点，越界或无效的点被跳过"""
    if is_empty_landmarks(landmarks):
        return []
    points = []
    for idx in indices:
        if idx < len(landmarks) and is_valid_point(landmarks[idx]):
            points.append(landmarks[idx])
    return points


def calculate_ear(eye_points: Sequence[Point]) -> float:
    """
    计算单只眼睛的 EAR 值。

    公式: EAR = (|p1-p5| + |p2-p4|) / (2 * |p0-p3|)

    Args:
        eye_points: 6 个有序眼睛轮廓关键点

    Returns:
        EAR 值；关键点不足 6 个或分母为零时返回 0.0
    """
    if len(eye_points) < EYE_POINT_COUNT:
        return 0.0
    if not all(is_valid_point(p) for p in eye_points[:EYE_POINT_COUNT]):
        return 0.0

    p0, p1, p2, p3, p4, p5 = eye_points[:EYE_POINT_COUNT]

    vertical_1 = distance(p1, p5)
    vertical_2 = distance(p2, p4)
    horizontal = distance(p0, p3)

    if horizontal == 0.0:
        return 0.0

    ear = (vertical_1 + vertical_2) / (2.0 * horizontal)
    return ear if math.isfinite(ear) else 0.0


def average_ear(landmarks: LandmarkSet) -> float:
    """
    双眼平均 EAR。

    只有两只眼睛都各自取到 6 个可用关键点时才取平均，否则返回 0.0。
    部分遮挡因此会把 EAR 压向 0，与闭眼同等看待。
    """
    left_eye = select_points(landmarks, LEFT_EYE_INDICES)
    right_eye = select_points(landmarks, RIGHT_EYE_INDICES)

    if len(left_eye) < EYE_POINT_COUNT or len(right_eye) < EYE_POINT_COUNT:
        return 0.0

    return (calculate_ear(left_eye) + calculate_ear(right_eye)) / 2.0
