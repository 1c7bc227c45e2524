"""核心数据模型定义"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence, Tuple

# 归一化坐标点 (x, y) 或 (x, y, z)
Point = Tuple[float, ...]
LandmarkSet = Sequence[Optional[Point]]


class SessionState(Enum):
    """监测会话状态"""
    IDLE = "idle"
    INITIALIZING = "initializing"
    RUNNING = "running"
    ERROR = "error"


class AlertState(Enum):
    """告警状态，每帧由计数器推导，不单独存储"""
    NORMAL = "normal"
    DROWSY_ALERT = "drowsy_alert"
    YAWN_ALERT = "yawn_alert"


class AcquisitionFailure(Enum):
    """摄像头获取失败类别"""
    NO_DEVICE = "no_device"
    PERMISSION_DENIED = "permission_denied"
    DEVICE_BUSY = "device_busy"
    ABORTED = "aborted"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


FAILURE_MESSAGES = {
    AcquisitionFailure.NO_DEVICE: "No camera found or selected device unavailable. Connect a camera and retry.",
    AcquisitionFailure.PERMISSION_DENIED: "Camera permission denied. Please allow camera access and try again.",
    AcquisitionFailure.DEVICE_BUSY: "Camera is already in use by another application. Please close other camera apps and try again.",
    AcquisitionFailure.ABORTED: "Camera access was aborted. Please try again.",
    AcquisitionFailure.TIMEOUT: "Camera initialization timed out. Please check your camera connection and try again.",
    AcquisitionFailure.UNKNOWN: "Camera error. Please check your camera connection and settings.",
}


@dataclass
class HeadAngles:
    """二维启发式头部姿态代理值"""
    pitch: float
    yaw: float


@dataclass
class FrameMetrics:
    """单帧几何指标"""
    ear: float
    mar: float
    head_pitch: float
    head_yaw: float


@dataclass
class SmoothedMetrics:
    """EAR/MAR 指数滑动平均状态"""
    ear_ema: float = 0.0
    mar_ema: float = 0.0


@dataclass
class AlertCounters:
    """连续帧计数器"""
    ear_below_threshold_frames: int = 0
    mar_above_threshold_frames: int = 0


@dataclass(frozen=True)
class MetricsSnapshot:
    """对外推送的指标快照"""
    score: int
    ear: float
    mar: float

    def to_dict(self) -> dict:
        return {"score": self.score, "ear": self.ear, "mar": self.mar}


ZERO_SNAPSHOT = MetricsSnapshot(score=0, ear=0.0, mar=0.0)


@dataclass
class FrameResult:
    """单帧处理结果"""
    face_detected: bool
    snapshot: MetricsSnapshot
    alert_state: AlertState = AlertState.NORMAL
    metrics: Optional[FrameMetrics] = None
    smoothed: Optional[SmoothedMetrics] = None
    counters: Optional[AlertCounters] = None
    alert_fired: bool = False
    emitted: bool = False


@dataclass(frozen=True)
class CameraConstraints:
    """摄像头约束，None 表示不限制"""
    device_id: Optional[int] = None
    facing_mode: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    fps: Optional[int] = None

    @property
    def is_basic(self) -> bool:
        return self.width is None and self.height is None and self.fps is None


@dataclass
class DeviceInfo:
    """可用视频输入设备"""
    device_id: int
    label: str = field(default="")
