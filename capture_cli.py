#!/usr/bin/env python3
"""
命令行深度截取
==============

加载模型 → 设置视角 → 截取 → 保存 depth-map.json / depth-map.png
另外保存 depth-map_config.json，记录宽高等信息（JSON 数组本身不含宽高）。

示例：
    python capture_cli.py --model data/models/bunny.obj --preset raw-luma -o out
"""

import argparse
import json
import math
import os
import sys
from typing import Optional, Sequence

from loguru import logger

from capture_errors import CaptureError
from depth_capture import ARRAY_FILENAME, DepthCapturePipeline
from export_sink import FileExportSink
from scene_graph import PerspectiveCamera, make_placeholder
from scene_host import SceneHost
from settings import add_capture_arguments, settings_from_args, setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='3D 场景深度截取')
    parser.add_argument('--model', '-m', default=None, help='OBJ模型路径（缺省时使用占位立方体）')
    parser.add_argument('--yaw', type=float, default=0.0, help='相机绕目标水平旋转角度（度）')
    parser.add_argument('--pitch', type=float, default=0.0, help='相机俯仰旋转角度（度）')
    add_capture_arguments(parser)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        settings = settings_from_args(args)
        config = settings.capture.to_config()
    except (OSError, ValueError) as e:
        # 配置文件或参数组合非法
        parser.error(str(e))
    setup_logging(settings.log_level, settings.log_file)
    capture = settings.capture

    camera = PerspectiveCamera(fov=settings.fov, position=settings.camera_position)
    host = SceneHost(capture.width, capture.height, camera=camera, model_scale=settings.model_scale)
    if args.model:
        host.on_selection_changed(args.model)
        host.update()
    else:
        host.set_model(make_placeholder())
    if args.yaw or args.pitch:
        host.orbit(math.radians(args.yaw), math.radians(args.pitch))

    sink = FileExportSink(capture.output_dir)
    pipeline = DepthCapturePipeline(host, config, sink)
    try:
        pipeline.capture()
    except CaptureError as e:
        logger.error(f"Depth capture failed: {e}")
        return 1
    finally:
        pipeline.dispose()

    # 保存配置
    config_path = os.path.join(capture.output_dir, ARRAY_FILENAME.replace('.json', '_config.json'))
    config = {
        'model': args.model,
        'mode': capture.mode,
        'background': capture.background,
        'width': pipeline.config.target_size[0],
        'height': pipeline.config.target_size[1],
        'yaw': args.yaw,
        'pitch': args.pitch,
    }
    with open(config_path, 'w') as f:
        json.dump(config, f, indent=2)
    logger.info(f"Config saved: {config_path}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
