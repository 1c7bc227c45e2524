"""摄像头获取模块：约束协商、逐级回退、失败分类与播放延迟恢复"""

import logging
import time
from typing import List, Optional

import cv2
import numpy as np

from models.data_models import (
    AcquisitionFailure,
    CameraConstraints,
    DeviceInfo,
    FAILURE_MESSAGES,
)

logger = logging.getLogger(__name__)

IDEAL_CONSTRAINTS = CameraConstraints(facing_mode="user", width=640, height=480, fps=30)
BASIC_CONSTRAINTS = CameraConstraints()

DEFAULT_METADATA_TIMEOUT = 3.0


class CameraError(Exception):
    """摄像头打开失败"""

    category = AcquisitionFailure.UNKNOWN


class PermissionDeniedError(CameraError):
    category = AcquisitionFailure.PERMISSION_DENIED


class DeviceNotFoundError(CameraError):
    category = AcquisitionFailure.NO_DEVICE


class DeviceBusyError(CameraError):
    category = AcquisitionFailure.DEVICE_BUSY


class PlaybackBlockedError(Exception):
    """视频播放被平台策略阻止，需要用户交互后重试"""


def failure_message(category: AcquisitionFailure, detail: str = "") -> str:
    """面向用户的失败提示，未知类别附带原始错误信息"""
    if category is AcquisitionFailure.UNKNOWN and detail:
        return f"Camera error: {detail}. Please check your camera connection and settings."
    return FAILURE_MESSAGES[category]


class AcquisitionError(Exception):
    """回退阶梯全部失败后的分类错误"""

    def __init__(self, category: AcquisitionFailure, detail: str = ""):
        self.category = category
        self.detail = detail
        self.message = failure_message(category, detail)
        super().__init__(self.message)


# 按出现顺序匹配错误信息中的关键字
_FAILURE_KEYWORDS = [
    (("notallowederror", "permission", "not authorized"), AcquisitionFailure.PERMISSION_DENIED),
    (("notfounderror", "overconstrained", "not found", "no camera"), AcquisitionFailure.NO_DEVICE),
    (("notreadableerror", "busy", "in use"), AcquisitionFailure.DEVICE_BUSY),
    (("aborterror", "abort"), AcquisitionFailure.ABORTED),
    (("timeout", "timed out"), AcquisitionFailure.TIMEOUT),
]


def categorize_failure(exc: BaseException) -> AcquisitionFailure:
    """把任意异常映射为获取失败类别"""
    if isinstance(exc, AcquisitionError):
        return exc.category
    if isinstance(exc, CameraError):
        if exc.category is not AcquisitionFailure.UNKNOWN:
            return exc.category
    if isinstance(exc, PermissionError):
        return AcquisitionFailure.PERMISSION_DENIED
    if isinstance(exc, TimeoutError):
        return AcquisitionFailure.TIMEOUT

    message = f"{type(exc).__name__} {exc}".lower()
    for keywords, category in _FAILURE_KEYWORDS:
        if any(k in message for k in keywords):
            return category
    return AcquisitionFailure.UNKNOWN


class OpenCVStream:
    """基于 cv2.VideoCapture 的视频流"""

    def __init__(self, cap, device_id: int):
        self._cap = cap
        self.device_id = device_id
        self._pending_frame: Optional[np.ndarray] = None
        self._playing = False

    @property
    def is_active(self) -> bool:
        return self._cap is not None and self._cap.isOpened()

    @property
    def is_playing(self) -> bool:
        return self._playing

    def wait_ready(self, timeout: float = DEFAULT_METADATA_TIMEOUT) -> bool:
        """
        等待首帧到达，与固定截止时间竞争。

        Returns:
            截止前拿到首帧返回 True，超时返回 False
        """
        deadline = time.monotonic() + timeout
        while self.is_active:
            ret, frame = self._cap.read()
            if ret:
                self._pending_frame = frame
                return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.05)
        return False

    def play(self):
        if not self.is_active:
            raise PlaybackBlockedError(f"摄像头 {self.device_id} 未就绪")
        self._playing = True

    def read(self) -> Optional[np.ndarray]:
        if not self._playing or not self.is_active:
            return None
        if self._pending_frame is not None:
            frame, self._pending_frame = self._pending_frame, None
            return frame
        ret, frame = self._cap.read()
        return frame if ret else None

    def stop(self):
        """释放摄像头，重复调用无副作用"""
        self._playing = False
        self._pending_frame = None
        if self._cap is not None:
            self._cap.release()
            self._cap = None


class OpenCVCameraBackend:
    """用 OpenCV 实现的设备枚举与打开"""

    def __init__(self, default_index: int = 0, probe_count: int = 5):
        self.default_index = default_index
        self.probe_count = probe_count

    def enumerate_devices(self) -> List[DeviceInfo]:
        """逐个探测设备索引，返回能打开的设备"""
        devices = []
        for idx in range(self.probe_count):
            cap = cv2.VideoCapture(idx)
            try:
                if cap.isOpened():
                    devices.append(DeviceInfo(device_id=idx, label=f"camera {idx}"))
            finally:
                cap.release()
        return devices

    def open(self, constraints: CameraConstraints) -> OpenCVStream:
        """
        按约束打开摄像头。

        facing_mode 在 OpenCV 下无法选择，只作为提示忽略。
        非基础约束下设置分辨率/帧率后必须能读到一帧，否则视为约束无法满足。

        Raises:
            DeviceNotFoundError: 设备无法打开
            CameraError: 约束无法满足
        """
        index = constraints.device_id if constraints.device_id is not None else self.default_index
        cap = cv2.VideoCapture(index)
        if not cap.isOpened():
            cap.release()
            raise DeviceNotFoundError(f"NotFoundError: 无法打开摄像头 {index}")

        if constraints.is_basic:
            return OpenCVStream(cap, index)

        if constraints.width is not None:
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.width)
        if constraints.height is not None:
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.height)
        if constraints.fps is not None:
            cap.set(cv2.CAP_PROP_FPS, constraints.fps)

        ret, _ = cap.read()
        if not ret:
            cap.release()
            raise CameraError(f"OverconstrainedError: 摄像头 {index} 无法满足 {constraints}")

        return OpenCVStream(cap, index)


class CameraAcquirer:
    """执行约束回退阶梯，并持有当前视频流的生命周期"""

    def __init__(self, backend=None, ideal_constraints: CameraConstraints = IDEAL_CONSTRAINTS):
        self.backend = backend if backend is not None else OpenCVCameraBackend()
        self.ideal_constraints = ideal_constraints
        self.stream = None
        self.playback_deferred = False
        self._resume_pending = False

    def acquire(self):
        """
        依次尝试：理想约束 → 基础约束 → 枚举设备逐个尝试。

        Returns:
            第一个成功打开的视频流

        Raises:
            AcquisitionError: 全部失败时抛出，带失败类别
        """
        try:
            stream = self.backend.open(self.ideal_constraints)
            logger.info("摄像头已打开（理想约束）")
            self.stream = stream
            return stream
        except Exception as primary_err:
            logger.warning("理想约束失败，尝试基础约束: %s", primary_err)

        try:
            stream = self.backend.open(BASIC_CONSTRAINTS)
            logger.info("摄像头已打开（基础约束）")
            self.stream = stream
            return stream
        except Exception as basic_err:
            logger.warning("基础约束失败，尝试枚举设备: %s", basic_err)
            last_error: BaseException = basic_err

        try:
            devices = self.backend.enumerate_devices()
        except Exception as e:
            raise AcquisitionError(categorize_failure(e), str(e)) from e

        logger.info("发现 %d 个视频输入设备", len(devices))
        if not devices:
            raise AcquisitionError(AcquisitionFailure.NO_DEVICE, "未发现视频输入设备")

        for device in devices:
            try:
                stream = self.backend.open(CameraConstraints(device_id=device.device_id))
            except Exception as device_err:
                logger.warning("设备 %s 打开失败: %s", device.label or device.device_id, device_err)
                last_error = device_err
                continue
            logger.info("摄像头已打开（设备 %s）", device.label or device.device_id)
            self.stream = stream
            return stream

        raise AcquisitionError(categorize_failure(last_error), str(last_error)) from last_error

    def start_playback(self, stream=None) -> bool:
        """
        开始播放。播放被阻止时不视为失败，记录下来并等待下一次用户交互。

        Returns:
            是否已在播放
        """
        stream = stream if stream is not None else self.stream
        try:
            stream.play()
        except PlaybackBlockedError as e:
            logger.warning("播放被阻止，等待用户交互: %s", e)
            self.playback_deferred = True
            self._resume_pending = True
            return False
        self.playback_deferred = False
        return True

    def notify_user_interaction(self) -> bool:
        """
        用户交互时恢复被阻止的播放，只尝试一次，不重新获取摄像头。

        Returns:
            本次是否成功恢复播放
        """
        if not self._resume_pending:
            return False
        self._resume_pending = False
        if self.stream is None:
            return False
        try:
            self.stream.play()
        except PlaybackBlockedError as e:
            logger.error("用户交互后仍无法播放: %s", e)
            return False
        self.playback_deferred = False
        logger.info("用户交互后已开始播放")
        return True

    def release(self):
        """释放视频流"""
        self._resume_pending = False
        self.playback_deferred = False
        stream, self.stream = self.stream, None
        if stream is not None:
            stream.stop()


def wait_for_stream(stream, timeout: float = DEFAULT_METADATA_TIMEOUT) -> bool:
    """等待流就绪；超时后乐观继续"""
    ready = stream.wait_ready(timeout)
    if not ready:
        logger.warning("等待视频首帧超时 (%.1fs)，继续执行", timeout)
    return ready
