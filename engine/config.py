"""引擎配置：默认参数与 JSON 配置文件加载"""

import json
import logging
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULTS = {
    "ear_threshold": 0.25,
    "mar_threshold": 0.6,
    "ear_consec_frames": 20,
    "yawn_consec_frames": 15,
    "smoothing_alpha": 0.2,
    "head_tilt_threshold": 20.0,
    # 头部代理角缩放系数，可调参数
    "head_yaw_scale": 180.0,
    "head_pitch_scale": 90.0,
    "emit_interval": 0.2,
    "alert_frequency_hz": 1000,
    "alert_duration": 0.5,
    "alert_volume": 0.05,
    "camera_index": 0,
    "camera_probe_count": 5,
    "camera_width": 640,
    "camera_height": 480,
    "camera_fps": 30,
    "metadata_timeout": 3.0,
}


def load_config(config_path: Optional[str] = None) -> dict:
    """
    从 JSON 配置文件加载参数，缺失或为 null 的字段使用默认值，未知字段忽略。

    Args:
        config_path: 配置文件路径，None 时直接返回默认值

    Returns:
        完整配置字典
    """
    config = dict(DEFAULTS)

    if config_path is None:
        return config

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        logger.warning("配置文件不存在 %s，使用默认参数", config_path)
        return config
    except json.JSONDecodeError:
        logger.warning("配置文件格式错误 %s，使用默认参数", config_path)
        return config

    if not isinstance(data, dict):
        logger.warning("配置文件顶层必须是对象 %s，使用默认参数", config_path)
        return config

    for key in DEFAULTS:
        if key in data and data[key] is not None:
            config[key] = data[key]

    return config
