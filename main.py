"""困倦检测引擎命令行入口"""

import argparse
import logging
import sys
import time

import cv2

from engine.config import load_config
from engine.session import DrowsinessSession
from models.data_models import AlertState, MetricsSnapshot

logger = logging.getLogger(__name__)

_STATUS_COLORS = {
    AlertState.NORMAL: (0, 255, 0),
    AlertState.DROWSY_ALERT: (0, 0, 255),
    AlertState.YAWN_ALERT: (255, 128, 0),
}


class DetectionSystem:
    """本地运行器：从摄像头读帧并逐帧推送给监测会话。"""

    def __init__(self, config_path=None, preview=False):
        self.preview = preview
        self.config = load_config(config_path)
        self.session = DrowsinessSession(
            config=self.config,
            on_metrics=self._on_metrics,
            on_status=self._on_status,
        )

    @staticmethod
    def _on_metrics(snapshot: MetricsSnapshot):
        logger.info("score=%d ear=%.3f mar=%.3f", snapshot.score, snapshot.ear, snapshot.mar)

    @staticmethod
    def _on_status(text: str):
        logger.info("状态: %s", text)

    def run(self) -> int:
        """启动会话并进入推帧循环，返回进程退出码。"""
        if not self.session.start():
            logger.error("%s", self.session.error_message)
            return 1

        try:
            self._main_loop()
        except KeyboardInterrupt:
            logger.info("收到中断信号")
        finally:
            self.stop()
        return 0

    def _main_loop(self):
        """视频流处理主循环。"""
        while self.session.is_running:
            frame = self.session.read_frame()
            if frame is None:
                if self.preview and cv2.waitKey(10) & 0xFF == ord("q"):
                    break
                time.sleep(0.01)
                continue

            self.session.process_frame(frame)

            if self.preview:
                self._show(frame)
                key = cv2.waitKey(1) & 0xFF
                if key == ord("q"):
                    break
                if key != 0xFF:
                    # 任意按键视为用户交互
                    self.session.notify_user_interaction()

    def _show(self, frame):
        """显示原始画面和一行状态文字。"""
        snapshot = self.session.last_snapshot
        text = f"{self.session.status_text} | EAR: {snapshot.ear:.2f} MAR: {snapshot.mar:.2f} Score: {snapshot.score}"
        color = _STATUS_COLORS.get(self.session.alert_state, (0, 255, 0))
        cv2.putText(frame, text, (10, 24), cv2.FONT_HERSHEY_SIMPLEX, 0.6, color, 2)
        cv2.imshow("Drowsiness Detector", frame)

    def stop(self):
        """停止会话并关闭预览窗口。"""
        self.session.stop()
        if self.preview:
            cv2.destroyAllWindows()


def main(argv=None):
    parser = argparse.ArgumentParser(description="驾驶员困倦检测引擎")
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="JSON 配置文件路径",
    )
    parser.add_argument(
        "--preview",
        action="store_true",
        help="显示摄像头预览窗口（按 q 退出）",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="日志级别",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    system = DetectionSystem(config_path=args.config, preview=args.preview)
    return system.run()


if __name__ == "__main__":
    sys.exit(main())
