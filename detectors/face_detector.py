"""人脸关键点检测模块，基于 MediaPipe FaceMesh"""

import logging
from typing import List, Optional

import cv2
import mediapipe as mp
import numpy as np

from models.data_models import Point

logger = logging.getLogger(__name__)

FACE_MESH_LANDMARK_COUNT = 468


class FaceDetector:
    """使用 MediaPipe FaceMesh 检测单个主要人脸的归一化关键点"""

    def __init__(
        self,
        min_detection_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5,
    ):
        """初始化 MediaPipe FaceMesh（只跟踪一张人脸）"""
        self._face_mesh = mp.solutions.face_mesh.FaceMesh(
            max_num_faces=1,
            min_detection_confidence=min_detection_confidence,
            min_tracking_confidence=min_tracking_confidence,
            refine_landmarks=False,
        )
        self._closed = False

    def detect(self, frame: np.ndarray) -> Optional[List[Point]]:
        """
        检测单帧图像中的人脸关键点。

        Args:
            frame: BGR 格式的 OpenCV 图像帧

        Returns:
            最多 468 个归一化 (x, y, z) 坐标；未检测到人脸时返回 None
        """
        if self._closed:
            return None

        # BGR -> RGB
        rgb_frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        rgb_frame.flags.writeable = False

        results = self._face_mesh.process(rgb_frame)

        if not results.multi_face_landmarks:
            return None

        face = results.multi_face_landmarks[0]
        return [
            (lm.x, lm.y, lm.z) for lm in face.landmark[:FACE_MESH_LANDMARK_COUNT]
        ]

    def close(self):
        """释放 MediaPipe 资源，重复调用无副作用"""
        if self._closed:
            return
        self._closed = True
        self._face_mesh.close()
        logger.debug("FaceMesh 已关闭")
