"""Flask 控制接口测试"""

import functools
import time

import pytest

import web_app
from devices.camera_acquirer import PermissionDeniedError
from engine.session import DrowsinessSession
from fakes import FakeBackend, FakeClock, FakeDetector, FakeToneOutput, build_landmarks
from models.data_models import DeviceInfo


def _session_factory(backend):
    return functools.partial(
        DrowsinessSession,
        camera_backend=backend,
        detector_factory=FakeDetector,
        tone_output=FakeToneOutput(),
        clock=FakeClock(),
    )


def _denied_backend():
    return FakeBackend(
        ideal_error=PermissionDeniedError("NotAllowedError"),
        basic_error=PermissionDeniedError("NotAllowedError"),
        devices=[DeviceInfo(0)],
        device_errors={0: PermissionDeniedError("NotAllowedError")},
    )


@pytest.fixture
def make_monitor():
    monitors = []

    def factory(backend=None):
        monitor = web_app.WebMonitor(session_factory=_session_factory(backend or FakeBackend()))
        monitors.append(monitor)
        web_app.set_monitor(monitor)
        return monitor

    yield factory
    for monitor in monitors:
        monitor.stop()
    web_app.set_monitor(None)


@pytest.fixture
def client():
    web_app.app.config["TESTING"] = True
    with web_app.app.test_client() as c:
        yield c


class TestWebMonitor:
    def test_initial_data(self, make_monitor):
        data = make_monitor().get_data()
        assert data["score"] == 0
        assert data["ear"] == 0.0
        assert data["state"] == "idle"
        assert data["alert_state"] == "normal"
        assert data["error"] is None
        assert data["alerts_fired"] == 0

    def test_start_and_stop(self, make_monitor):
        monitor = make_monitor()
        assert monitor.get_data()["loading_progress"] == 0
        assert monitor.start() is True
        data = monitor.get_data()
        assert data["state"] == "running"
        assert data["loading_progress"] == 100
        monitor.stop()
        data = monitor.get_data()
        assert data["state"] == "idle"
        assert data["loading_progress"] == 0

    def test_metrics_reach_latest_snapshot(self, make_monitor):
        monitor = make_monitor()
        monitor.session.process_landmarks(build_landmarks())  # 未启动时忽略
        assert monitor.get_data()["ear"] == 0.0

        monitor.start()
        monitor.session.process_landmarks(build_landmarks(ear=0.3, mar=0.3))
        data = monitor.get_data()
        assert data["ear"] == pytest.approx(0.3)
        assert data["mar"] == pytest.approx(0.3)

    def test_status_logs_levels(self, make_monitor):
        monitor = make_monitor()
        monitor.start()
        monitor.session.process_landmarks(None)
        logs, total = monitor.get_logs()
        assert total == len(logs)
        assert logs[-1]["message"] == "No face detected"
        assert logs[-1]["level"] == "warning"
        assert all(entry["level"] == "info" for entry in logs[:-1])

    def test_get_logs_since(self, make_monitor):
        monitor = make_monitor()
        monitor.start()
        _, total = monitor.get_logs()
        monitor.session.process_landmarks(None)
        logs, new_total = monitor.get_logs(since=total)
        assert new_total == total + 1
        assert [entry["message"] for entry in logs] == ["No face detected"]

    def test_log_buffer_is_bounded(self, make_monitor):
        monitor = make_monitor()
        for i in range(monitor.MAX_LOG_ENTRIES + 50):
            monitor._add_log("info", f"entry {i}")
        logs, total = monitor.get_logs()
        assert total == monitor.MAX_LOG_ENTRIES
        assert logs[-1]["message"] == f"entry {monitor.MAX_LOG_ENTRIES + 49}"

    def test_failure_reports_category(self, make_monitor):
        monitor = make_monitor(_denied_backend())
        assert monitor.start() is False
        data = monitor.get_data()
        assert data["state"] == "error"
        assert data["error_category"] == "permission_denied"
        assert "permission" in data["error"].lower()

    def test_pump_thread_processes_frames(self, make_monitor):
        backend = FakeBackend(stream_kwargs={"frames": [build_landmarks(ear=0.3)] * 3})
        monitor = make_monitor(backend)
        monitor.start()
        deadline = time.monotonic() + 2.0
        while monitor.get_data()["ear"] == 0.0 and time.monotonic() < deadline:
            time.sleep(0.01)
        assert monitor.get_data()["ear"] == pytest.approx(0.3)


class TestRoutes:
    def test_start_success(self, make_monitor, client):
        make_monitor()
        resp = client.post("/api/start")
        assert resp.status_code == 200
        assert resp.get_json() == {"success": True, "message": "Monitoring started"}

    def test_start_twice_reports_state(self, make_monitor, client):
        make_monitor()
        client.post("/api/start")
        body = client.post("/api/start").get_json()
        assert body["success"] is False
        assert body["message"] == "Session is running"

    def test_start_failure_then_retry(self, make_monitor, client):
        monitor = make_monitor(_denied_backend())
        body = client.post("/api/start").get_json()
        assert body["success"] is False
        assert "permission" in body["message"].lower()

        monitor.session._acquirer.backend.ideal_error = None
        body = client.post("/api/retry").get_json()
        assert body["success"] is True

    def test_retry_when_idle(self, make_monitor, client):
        make_monitor()
        body = client.post("/api/retry").get_json()
        assert body == {"success": False, "message": "Session is idle"}

    def test_stop(self, make_monitor, client):
        monitor = make_monitor()
        client.post("/api/start")
        body = client.post("/api/stop").get_json()
        assert body["success"] is True
        assert monitor.session.state.value == "idle"

    def test_interaction_resumes_blocked_playback(self, make_monitor, client):
        make_monitor(FakeBackend(stream_kwargs={"block_playback": 1}))
        client.post("/api/start")
        assert client.post("/api/interaction").get_json() == {"success": True, "resumed": True}
        assert client.post("/api/interaction").get_json() == {"success": True, "resumed": False}

    def test_data(self, make_monitor, client):
        make_monitor()
        body = client.get("/api/data").get_json()
        assert set(body) >= {"score", "ear", "mar", "state", "alert_state", "status"}

    def test_logs(self, make_monitor, client):
        make_monitor()
        client.post("/api/start")
        body = client.get("/api/logs?since=0").get_json()
        assert body["total"] == len(body["logs"])
        assert body["logs"][-1]["message"] == "Monitoring..."

    def test_get_monitor_lazily_created(self, monkeypatch):
        created = []

        class StubMonitor:
            def __init__(self, config=None):
                created.append(config)

        web_app.set_monitor(None)
        monkeypatch.setattr(web_app, "WebMonitor", StubMonitor)
        try:
            first = web_app.get_monitor()
            assert web_app.get_monitor() is first
            assert len(created) == 1
            assert created[0]["ear_threshold"] == 0.25
        finally:
            web_app.set_monitor(None)
