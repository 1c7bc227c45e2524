"""监测会话状态机：设备获取、逐帧推理、声音告警与指标推送"""

import logging
import time
from typing import Callable, Optional

from detectors.eye_analyzer import average_ear, is_empty_landmarks
from detectors.head_pose_analyzer import estimate_head_angles
from detectors.mouth_analyzer import calculate_mar
from devices.audio_alert import AlertSounder
from devices.camera_acquirer import (
    AcquisitionError,
    CameraAcquirer,
    OpenCVCameraBackend,
    categorize_failure,
    failure_message,
    wait_for_stream,
)
from engine.config import DEFAULTS
from evaluators.drowsiness_scorer import DrowsinessScorer, determine_alert_state
from filters.temporal_filter import TemporalFilter
from models.data_models import (
    AcquisitionFailure,
    AlertState,
    CameraConstraints,
    FrameMetrics,
    FrameResult,
    LandmarkSet,
    MetricsSnapshot,
    SessionState,
    ZERO_SNAPSHOT,
)

logger = logging.getLogger(__name__)

STATUS_READY = "Ready"
STATUS_INITIALIZING = "Initializing..."
STATUS_REQUESTING_CAMERA = "Requesting camera access..."
STATUS_LOADING_VIDEO = "Loading video..."
STATUS_LOADING_DETECTOR = "Loading face mesh..."
STATUS_PLAYBACK_BLOCKED = "Playback blocked, waiting for user interaction"
STATUS_STARTED = "Monitoring..."
STATUS_NO_FACE = "No face detected"
STATUS_FAILED = "Failed to start"
STATUS_STOPPED = "Stopped"

ALERT_LABELS = {
    AlertState.NORMAL: "Monitoring",
    AlertState.DROWSY_ALERT: "DROWSINESS ALERT",
    AlertState.YAWN_ALERT: "YAWNING ALERT",
}


def _default_detector_factory():
    """延迟导入 MediaPipe 检测器"""
    from detectors.face_detector import FaceDetector
    return FaceDetector()


class DrowsinessSession:
    """
    单个监测会话：IDLE → INITIALIZING → RUNNING → (IDLE | ERROR)，ERROR 只能经 retry() 恢复。

    逐帧回调 process_frame / process_landmarks 由外部视频管线推送调用，
    平滑状态、计数器和推送节流都只在该回调内修改；回调不会与自身并发执行，
    因此内部不加锁。外部线程在调用 stop() 之前应先停止推帧。
    """

    def __init__(
        self,
        config: Optional[dict] = None,
        detector_factory: Optional[Callable] = None,
        camera_backend=None,
        tone_output=None,
        on_metrics: Optional[Callable[[MetricsSnapshot], None]] = None,
        on_status: Optional[Callable[[str], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = dict(DEFAULTS)
        if config:
            self.config.update(config)
        cfg = self.config

        if camera_backend is None:
            camera_backend = OpenCVCameraBackend(
                default_index=cfg["camera_index"],
                probe_count=cfg["camera_probe_count"],
            )
        self._acquirer = CameraAcquirer(
            camera_backend,
            ideal_constraints=CameraConstraints(
                facing_mode="user",
                width=cfg["camera_width"],
                height=cfg["camera_height"],
                fps=cfg["camera_fps"],
            ),
        )
        self._detector_factory = detector_factory or _default_detector_factory
        self._filter = TemporalFilter(
            alpha=cfg["smoothing_alpha"],
            ear_threshold=cfg["ear_threshold"],
            mar_threshold=cfg["mar_threshold"],
            ear_consec_frames=cfg["ear_consec_frames"],
            yawn_consec_frames=cfg["yawn_consec_frames"],
        )
        self._scorer = DrowsinessScorer(
            ear_threshold=cfg["ear_threshold"],
            mar_threshold=cfg["mar_threshold"],
            head_tilt_threshold=cfg["head_tilt_threshold"],
        )
        self._alert = AlertSounder(
            tone_output,
            frequency_hz=cfg["alert_frequency_hz"],
            duration_s=cfg["alert_duration"],
            volume=cfg["alert_volume"],
        )

        self.on_metrics = on_metrics
        self.on_status = on_status
        self._clock = clock

        self.state = SessionState.IDLE
        self.alert_state = AlertState.NORMAL
        self.status_text = STATUS_READY
        self.error_message: Optional[str] = None
        self.error_category: Optional[AcquisitionFailure] = None

        # 初始化进度 0-100
        self.loading_progress = 0

        self._detector = None
        self._sounded_state: Optional[AlertState] = None
        self._last_emit: Optional[float] = None
        self._last_emitted: Optional[MetricsSnapshot] = None
        self._processing = False

    # ---- 只读状态 ----

    @property
    def is_running(self) -> bool:
        return self.state is SessionState.RUNNING

    @property
    def alerts_fired(self) -> int:
        return self._alert.fired_count

    @property
    def alert_playing(self) -> bool:
        return self._alert.is_playing

    @property
    def playback_deferred(self) -> bool:
        return self._acquirer.playback_deferred

    @property
    def last_snapshot(self) -> MetricsSnapshot:
        """最近一次推送给观察者的快照"""
        return self._last_emitted if self._last_emitted is not None else ZERO_SNAPSHOT

    # ---- 控制入口 ----

    def start(self) -> bool:
        """
        启动监测。初始化中或运行中重复调用为空操作；ERROR 状态需调用 retry()。

        Returns:
            是否进入 RUNNING
        """
        if self.state in (SessionState.INITIALIZING, SessionState.RUNNING):
            logger.info("会话已在初始化或运行中，忽略 start")
            return False
        if self.state is SessionState.ERROR:
            logger.info("会话处于错误状态，请使用 retry()")
            return False
        return self._initialize()

    def retry(self) -> bool:
        """从 ERROR 状态重新初始化"""
        if self.state is not SessionState.ERROR:
            return False
        logger.info("重试初始化 (上次错误: %s)", self.error_category)
        return self._initialize()

    def stop(self) -> bool:
        """
        停止监测并同步释放摄像头、检测器和音频资源。IDLE/ERROR 下为空操作。

        Returns:
            是否执行了停止
        """
        if self.state in (SessionState.IDLE, SessionState.ERROR):
            return False
        self._release_resources()
        self._filter.reset()
        self._sounded_state = None
        self.loading_progress = 0
        self.state = SessionState.IDLE
        self.alert_state = AlertState.NORMAL
        self._set_status(STATUS_STOPPED)
        logger.info("会话已停止")
        return True

    def notify_user_interaction(self) -> bool:
        """用户交互：恢复被阻止的视频播放（只生效一次）"""
        if self.state is not SessionState.RUNNING:
            return False
        resumed = self._acquirer.notify_user_interaction()
        if resumed:
            self._set_status(STATUS_STARTED)
        return resumed

    def read_frame(self):
        """从当前视频流读取一帧，供外部推帧循环使用"""
        stream = self._acquirer.stream
        if self.state is not SessionState.RUNNING or stream is None:
            return None
        return stream.read()

    # ---- 逐帧回调 ----

    def process_frame(self, frame) -> Optional[FrameResult]:
        """对一帧视频做关键点检测和推理"""
        return self._run_frame(lambda: self._detect(frame))

    def process_landmarks(self, landmarks: Optional[LandmarkSet]) -> Optional[FrameResult]:
        """直接输入一帧关键点（检测器在外部运行时使用）"""
        return self._run_frame(lambda: landmarks)

    # ---- 内部实现 ----

    def _initialize(self) -> bool:
        self.state = SessionState.INITIALIZING
        self.error_message = None
        self.error_category = None
        self.alert_state = AlertState.NORMAL
        self._filter.reset()
        self._sounded_state = None
        self._last_emit = None
        self._last_emitted = None
        self.loading_progress = 0
        self._set_status(STATUS_INITIALIZING)

        try:
            self._set_status(STATUS_REQUESTING_CAMERA)
            self.loading_progress = 10
            stream = self._acquirer.acquire()
            self.loading_progress = 30

            self._set_status(STATUS_LOADING_VIDEO)
            self.loading_progress = 40
            wait_for_stream(stream, self.config["metadata_timeout"])

            self._set_status(STATUS_LOADING_DETECTOR)
            self.loading_progress = 60
            self._detector = self._detector_factory()
            self.loading_progress = 85

            playing = self._acquirer.start_playback(stream)
            self.loading_progress = 90
        except AcquisitionError as e:
            self._fail(e.category, e.message)
            return False
        except Exception as e:
            category = categorize_failure(e)
            self._fail(category, failure_message(category, str(e)))
            return False

        self.state = SessionState.RUNNING
        self.loading_progress = 100
        self._set_status(STATUS_STARTED if playing else STATUS_PLAYBACK_BLOCKED)
        logger.info("困倦检测已启动")
        return True

    def _fail(self, category: AcquisitionFailure, message: str):
        logger.error("摄像头初始化失败 [%s]: %s", category.value, message)
        self._release_resources()
        self.loading_progress = 0
        self.state = SessionState.ERROR
        self.error_category = category
        self.error_message = message
        self._set_status(STATUS_FAILED)

    def _release_resources(self) -> list:
        """逐个尽力释放资源，失败只记录，保证每个资源都尝试释放一次"""
        detector, self._detector = self._detector, None
        releases = [("camera", self._acquirer.release)]
        if detector is not None:
            releases.append(("landmark detector", detector.close))
        releases.append(("alert tone", self._alert.stop))
        releases.append(("audio output", self._alert.output.close))

        failures = []
        for name, release in releases:
            try:
                release()
            except Exception as e:
                logger.warning("释放 %s 失败: %s", name, e)
                failures.append((name, e))
        return failures

    def _detect(self, frame) -> Optional[LandmarkSet]:
        try:
            return self._detector.detect(frame)
        except Exception:
            logger.exception("关键点检测失败，按未检测到人脸处理")
            return None

    def _run_frame(self, get_landmarks) -> Optional[FrameResult]:
        if self.state is not SessionState.RUNNING:
            return None
        if self._processing:
            logger.debug("上一帧仍在处理，丢弃当前帧")
            return None
        self._processing = True
        try:
            return self._handle_landmarks(get_landmarks())
        finally:
            self._processing = False

    def _handle_landmarks(self, landmarks: Optional[LandmarkSet]) -> FrameResult:
        now = self._clock()
        self._alert.update(now)

        if is_empty_landmarks(landmarks):
            self.alert_state = determine_alert_state(
                self._filter.counters,
                self.config["ear_consec_frames"],
                self.config["yawn_consec_frames"],
            )
            self._set_status(STATUS_NO_FACE)
            # 无人脸立即推送清零读数，已是清零读数时不重复推送
            emitted = False
            if self._last_emitted != ZERO_SNAPSHOT:
                emitted = self._emit(ZERO_SNAPSHOT, now, force=True)
            return FrameResult(
                face_detected=False,
                snapshot=ZERO_SNAPSHOT,
                alert_state=self.alert_state,
                emitted=emitted,
            )

        angles = estimate_head_angles(
            landmarks,
            yaw_scale=self.config["head_yaw_scale"],
            pitch_scale=self.config["head_pitch_scale"],
        )
        metrics = FrameMetrics(
            ear=average_ear(landmarks),
            mar=calculate_mar(landmarks),
            head_pitch=angles.pitch,
            head_yaw=angles.yaw,
        )
        smoothed, counters = self._filter.update(metrics)
        score = self._scorer.score(smoothed.ear_ema, smoothed.mar_ema, angles)
        alert_state = determine_alert_state(
            counters,
            self.config["ear_consec_frames"],
            self.config["yawn_consec_frames"],
        )

        # 每个告警状态只响一次；正在响时顺延到提示音结束，回到 NORMAL 后重新计
        alert_fired = False
        if alert_state is AlertState.NORMAL:
            self._sounded_state = None
        elif alert_state is not self._sounded_state and not self._alert.is_playing:
            alert_fired = self._alert.trigger(now)
            if alert_fired:
                self._sounded_state = alert_state

        self.alert_state = alert_state
        self._set_status(ALERT_LABELS[alert_state])

        snapshot = MetricsSnapshot(
            score=score,
            ear=round(smoothed.ear_ema, 3),
            mar=round(smoothed.mar_ema, 3),
        )
        emitted = self._emit(snapshot, now)

        return FrameResult(
            face_detected=True,
            snapshot=snapshot,
            alert_state=alert_state,
            metrics=metrics,
            smoothed=smoothed,
            counters=counters,
            alert_fired=alert_fired,
            emitted=emitted,
        )

    def _emit(self, snapshot: MetricsSnapshot, now: float, force: bool = False) -> bool:
        """单调时钟节流：两次推送间隔不小于 emit_interval（强制推送除外）"""
        if (
            not force
            and self._last_emit is not None
            and now - self._last_emit < self.config["emit_interval"]
        ):
            return False
        self._last_emit = now
        self._last_emitted = snapshot
        if self.on_metrics is not None:
            try:
                self.on_metrics(snapshot)
            except Exception:
                logger.exception("指标回调异常")
        return True

    def _set_status(self, text: str):
        if text == self.status_text:
            return
        self.status_text = text
        logger.debug("状态: %s", text)
        if self.on_status is not None:
            try:
                self.on_status(text)
            except Exception:
                logger.exception("状态回调异常")
