"""
配置模块
========

- PRESETS：命名的截取预设（编码方式 + 背景色 + 分辨率倍数）
- CaptureSettings / ViewerSettings：可从 JSON 文件加载，再由命令行参数覆盖
- setup_logging：loguru 日志配置

添加新预设：在 PRESETS 中加一项即可。
"""

import argparse
import json
import sys
from dataclasses import asdict, dataclass, field, fields
from typing import List, Optional, Tuple

from loguru import logger

from depth_capture import CaptureConfig, EncodingMode
from scene_graph import parse_color

# === 截取预设 ===
PRESETS = {
    # 白色模型 + 黑色背景 → 0/1 遮罩
    "binary-mask": {
        "mode": "binary-mask",
        "background": 0,
        "resolution_scale": 1,
    },
    # 深度灰度 + 白色背景
    "raw-luma": {
        "mode": "raw-luma",
        "background": 255,
        "resolution_scale": 1,
    },
    # 遮罩，离屏目标为两倍分辨率
    "binary-mask-hires": {
        "mode": "binary-mask",
        "background": 0,
        "resolution_scale": 2,
    },
}

DEFAULT_PRESET = "binary-mask"

# 默认模型列表（显示名, 路径）
DEFAULT_MODELS: List[Tuple[str, str]] = [
    ("Low Poly Dummy", "data/models/low-poly_test_dummy.obj"),
    ("Medieval Combat Dummy", "data/models/medieval_combat_dummy.obj"),
    ("Tunnergp", "data/models/tunnergp.obj"),
]


@dataclass
class CaptureSettings:
    width: int = 512
    height: int = 512
    mode: str = PRESETS[DEFAULT_PRESET]["mode"]
    background: object = PRESETS[DEFAULT_PRESET]["background"]
    resolution_scale: int = PRESETS[DEFAULT_PRESET]["resolution_scale"]
    output_dir: str = "."

    def apply_preset(self, name: str) -> None:
        if name not in PRESETS:
            raise ValueError(f"unknown preset {name!r}, choose from {sorted(PRESETS)}")
        for key, value in PRESETS[name].items():
            setattr(self, key, value)

    def to_config(self) -> CaptureConfig:
        return CaptureConfig(
            width=self.width,
            height=self.height,
            mode=EncodingMode(self.mode),
            background=self.background,
            resolution_scale=self.resolution_scale,
        )


@dataclass
class ViewerSettings:
    display_width: int = 512
    display_height: int = 512
    model_dir: str = "data/models"
    camera_position: Tuple[float, float, float] = (0.0, 5.0, 10.0)
    fov: float = 75.0
    model_scale: float = 4.0
    log_level: str = "INFO"
    log_file: Optional[str] = None
    capture: CaptureSettings = field(default_factory=CaptureSettings)


def _update_dataclass(obj, data: dict) -> None:
    known = {f.name for f in fields(obj)}
    for key, value in data.items():
        if key not in known:
            logger.warning(f"Ignoring unknown setting: {key}")
            continue
        setattr(obj, key, value)


def load_settings(path: Optional[str] = None) -> ViewerSettings:
    """
    从 JSON 文件加载配置

    {"preset": "raw-luma", "capture": {...}, "model_dir": ...}
    preset 先应用，capture 中的字段再覆盖预设。
    """
    settings = ViewerSettings()
    if path is None:
        return settings

    with open(path, 'r') as f:
        data = json.load(f)

    preset = data.pop("preset", None)
    if preset is not None:
        settings.capture.apply_preset(preset)
    _update_dataclass(settings.capture, data.pop("capture", {}))
    if "camera_position" in data:
        data["camera_position"] = tuple(data["camera_position"])
    _update_dataclass(settings, data)
    return settings


def save_settings(settings: ViewerSettings, path: str) -> None:
    with open(path, 'w') as f:
        json.dump(asdict(settings), f, indent=2)


def add_capture_arguments(parser: argparse.ArgumentParser) -> None:
    """截取相关的命令行参数（未给出的参数不覆盖配置文件）"""
    parser.add_argument('--config', '-c', default=None, help='JSON 配置文件')
    parser.add_argument('--preset', '-p', default=None, choices=sorted(PRESETS),
                        help=f'截取预设（默认: {DEFAULT_PRESET}）')
    parser.add_argument('--mode', default=None, choices=[m.value for m in EncodingMode],
                        help='编码方式')
    parser.add_argument('--background', default=None, type=parse_background,
                        help='清屏颜色：0-255 灰度或 #rrggbb')
    parser.add_argument('--width', type=int, default=None, help='输出宽度')
    parser.add_argument('--height', type=int, default=None, help='输出高度')
    parser.add_argument('--scale', type=int, default=None, help='离屏目标分辨率倍数')
    parser.add_argument('--output', '-o', default=None, help='输出目录')
    parser.add_argument('--log-level', default=None, help='日志级别（默认: INFO）')
    parser.add_argument('--log-file', default=None, help='日志文件')


def parse_background(text: str):
    """命令行背景色：0-255 灰度或 #rrggbb，非法值交给 argparse 报错"""
    try:
        value = text if text.startswith('#') else int(text)
        parse_color(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid background {text!r}: {e}")
    return value


def settings_from_args(args: argparse.Namespace) -> ViewerSettings:
    settings = load_settings(args.config)
    capture = settings.capture
    if args.preset is not None:
        capture.apply_preset(args.preset)
    if args.mode is not None:
        capture.mode = args.mode
    if args.background is not None:
        capture.background = args.background
    if args.width is not None:
        capture.width = args.width
    if args.height is not None:
        capture.height = args.height
    if args.scale is not None:
        capture.resolution_scale = args.scale
    if args.output is not None:
        capture.output_dir = args.output
    if args.log_level is not None:
        settings.log_level = args.log_level
    if args.log_file is not None:
        settings.log_file = args.log_file
    return settings


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> None:
    """配置日志"""
    logger.remove()

    logger.add(
        sys.stderr,
        level=log_level,
        format="<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{module}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>",
        colorize=True,
    )

    if log_file:
        logger.add(
            log_file,
            level="DEBUG",
            rotation="10 MB",
            retention="7 days",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}",
        )
