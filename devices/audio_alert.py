"""声音告警模块：单次、不重叠的提示音"""

import logging
import os
from typing import Optional

import numpy as np

os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")
import pygame  # noqa: E402

logger = logging.getLogger(__name__)

ALERT_FREQUENCY_HZ = 1000
ALERT_DURATION_S = 0.5
ALERT_VOLUME = 0.05


class PygameToneOutput:
    """用 pygame.mixer 合成并播放正弦提示音；混音器不可用时静默"""

    def __init__(self, sample_rate: int = 22050):
        self.sample_rate = sample_rate
        self.enabled = True
        self._initialized = False

    def _ensure_mixer(self) -> bool:
        if self._initialized:
            return True
        if not self.enabled:
            return False
        try:
            if not pygame.mixer.get_init():
                pygame.mixer.init(frequency=self.sample_rate, size=-16, channels=1)
            self._initialized = True
        except pygame.error as e:
            logger.warning("音频告警不可用（pygame mixer 初始化失败）: %s", e)
            self.enabled = False
        return self._initialized

    def _synthesize(self, frequency_hz: float, duration_s: float) -> np.ndarray:
        mixer_freq, _, channels = pygame.mixer.get_init()
        n_samples = max(1, int(duration_s * mixer_freq))
        t = np.arange(n_samples) / float(mixer_freq)
        wave = (np.sin(2.0 * np.pi * frequency_hz * t) * 32767).astype(np.int16)
        if channels > 1:
            wave = np.repeat(wave[:, np.newaxis], channels, axis=1)
        return np.ascontiguousarray(wave)

    def play(self, frequency_hz: float, duration_s: float, volume: float):
        """
        播放提示音。

        Returns:
            pygame Sound 句柄；音频不可用时返回 None
        """
        if not self._ensure_mixer():
            return None
        try:
            samples = self._synthesize(frequency_hz, duration_s)
            sound = pygame.mixer.Sound(buffer=samples.tobytes())
            sound.set_volume(volume)
            sound.play(maxtime=int(duration_s * 1000))
        except pygame.error as e:
            logger.warning("提示音播放失败: %s", e)
            return None
        return sound

    def close(self):
        if self._initialized:
            self._initialized = False
            pygame.mixer.quit()


class AlertSounder:
    """
    单次提示音的显式状态：is_playing 为真期间不会再启动第二个提示音。

    停止时间在 trigger 时确定，由逐帧回调调用 update(now) 检查并结束，
    不依赖额外的定时器线程。
    """

    def __init__(
        self,
        output=None,
        frequency_hz: float = ALERT_FREQUENCY_HZ,
        duration_s: float = ALERT_DURATION_S,
        volume: float = ALERT_VOLUME,
    ):
        self.output = output if output is not None else PygameToneOutput()
        self.frequency_hz = frequency_hz
        self.duration_s = duration_s
        self.volume = volume
        self.fired_count = 0
        self._handle = None
        self._stop_at: Optional[float] = None

    @property
    def is_playing(self) -> bool:
        return self._stop_at is not None

    def trigger(self, now: float) -> bool:
        """
        启动一次提示音。

        Returns:
            本次是否启动；已在播放时返回 False
        """
        if self.is_playing:
            return False
        self._stop_at = now + self.duration_s
        self.fired_count += 1
        self._handle = self.output.play(self.frequency_hz, self.duration_s, self.volume)
        logger.info("声音告警 #%d (%d Hz, %.1fs)", self.fired_count, self.frequency_hz, self.duration_s)
        return True

    def update(self, now: float):
        """到达停止时间后结束当前提示音"""
        if self._stop_at is not None and now >= self._stop_at:
            self.stop()

    def stop(self):
        handle, self._handle = self._handle, None
        self._stop_at = None
        if handle is not None:
            handle.stop()
