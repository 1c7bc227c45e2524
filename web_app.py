"""Flask Web 接口 - 困倦检测引擎的控制与指标 API"""

import datetime
import logging
import threading
import time

from flask import Flask, jsonify, request

from engine.config import load_config
from engine.session import (
    ALERT_LABELS,
    STATUS_FAILED,
    STATUS_NO_FACE,
    STATUS_PLAYBACK_BLOCKED,
    DrowsinessSession,
)
from models.data_models import AlertState, MetricsSnapshot, SessionState, ZERO_SNAPSHOT

app = Flask(__name__)


class WebMonitor:
    """Web 版监测器：后台线程推帧，HTTP 接口读取最新指标和状态日志。"""

    MAX_LOG_ENTRIES = 200

    def __init__(self, session_factory=None, config=None):
        self._lock = threading.Lock()
        self._log_lock = threading.Lock()
        self._control_lock = threading.Lock()
        self._logs = []
        self._latest = ZERO_SNAPSHOT
        self._thread = None
        self._pumping = False

        factory = session_factory or DrowsinessSession
        self.session = factory(
            config=config,
            on_metrics=self._on_metrics,
            on_status=self._on_status,
        )

    def _on_metrics(self, snapshot: MetricsSnapshot):
        with self._lock:
            self._latest = snapshot

    def _on_status(self, text: str):
        if text in (ALERT_LABELS[AlertState.DROWSY_ALERT], ALERT_LABELS[AlertState.YAWN_ALERT]):
            level = "danger"
        elif text in (STATUS_NO_FACE, STATUS_FAILED, STATUS_PLAYBACK_BLOCKED):
            level = "warning"
        else:
            level = "info"
        self._add_log(level, text)

    def _add_log(self, level, message):
        """添加一条系统日志。level: info / warning / danger"""
        entry = {
            "time": datetime.datetime.now().strftime("%H:%M:%S"),
            "level": level,
            "message": message,
        }
        with self._log_lock:
            self._logs.append(entry)
            if len(self._logs) > self.MAX_LOG_ENTRIES:
                self._logs = self._logs[-self.MAX_LOG_ENTRIES:]

    def start(self) -> bool:
        """启动会话和推帧线程。"""
        with self._control_lock:
            ok = self.session.start()
            if ok:
                self._start_pump()
            return ok

    def retry(self) -> bool:
        with self._control_lock:
            ok = self.session.retry()
            if ok:
                self._start_pump()
            return ok

    def stop(self):
        """先停推帧线程，再停止会话。"""
        with self._control_lock:
            self._pumping = False
            thread, self._thread = self._thread, None
            if thread is not None:
                thread.join(timeout=2.0)
            self.session.stop()

    def _start_pump(self):
        self._pumping = True
        self._thread = threading.Thread(target=self._pump_loop, daemon=True)
        self._thread.start()

    def _pump_loop(self):
        """后台推帧循环。"""
        while self._pumping and self.session.is_running:
            frame = self.session.read_frame()
            if frame is None:
                time.sleep(0.01)
                continue
            self.session.process_frame(frame)

    def user_interaction(self) -> bool:
        return self.session.notify_user_interaction()

    def get_data(self) -> dict:
        with self._lock:
            data = self._latest.to_dict()
        session = self.session
        data.update({
            "state": session.state.value,
            "alert_state": session.alert_state.value,
            "status": session.status_text,
            "loading_progress": session.loading_progress,
            "error": session.error_message,
            "error_category": session.error_category.value if session.error_category else None,
            "alerts_fired": session.alerts_fired,
        })
        return data

    def get_logs(self, since=0):
        """获取日志，since 为起始索引。"""
        with self._log_lock:
            return self._logs[since:], len(self._logs)


# 全局监测器实例，首次请求时创建
_monitor = None
_monitor_lock = threading.Lock()


def get_monitor() -> WebMonitor:
    global _monitor
    with _monitor_lock:
        if _monitor is None:
            _monitor = WebMonitor(config=load_config(app.config.get("ENGINE_CONFIG_PATH")))
        return _monitor


def set_monitor(monitor):
    """替换全局监测器（测试或嵌入时使用）"""
    global _monitor
    with _monitor_lock:
        _monitor = monitor


# ---- Flask 路由 ----

@app.route("/api/start", methods=["POST"])
def api_start():
    monitor = get_monitor()
    ok = monitor.start()
    if ok:
        return jsonify({"success": True, "message": "Monitoring started"})
    session = monitor.session
    if session.state is SessionState.ERROR:
        return jsonify({"success": False, "message": session.error_message})
    return jsonify({"success": False, "message": f"Session is {session.state.value}"})


@app.route("/api/retry", methods=["POST"])
def api_retry():
    monitor = get_monitor()
    ok = monitor.retry()
    session = monitor.session
    message = "Monitoring started" if ok else (session.error_message or f"Session is {session.state.value}")
    return jsonify({"success": ok, "message": message})


@app.route("/api/stop", methods=["POST"])
def api_stop():
    get_monitor().stop()
    return jsonify({"success": True, "message": "Stopped"})


@app.route("/api/interaction", methods=["POST"])
def api_interaction():
    resumed = get_monitor().user_interaction()
    return jsonify({"success": True, "resumed": resumed})


@app.route("/api/data")
def api_data():
    return jsonify(get_monitor().get_data())


@app.route("/api/logs")
def api_logs():
    since = request.args.get("since", 0, type=int)
    logs, total = get_monitor().get_logs(since)
    return jsonify({"logs": logs, "total": total})


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    app.run(host="0.0.0.0", port=5000, debug=False, threaded=True)
