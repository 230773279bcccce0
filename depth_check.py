#!/usr/bin/env python3
"""
检查导出的深度数组
==================

depth-map.json 不带宽高，需要从外部给出（或读取同目录的 depth-map_config.json）。

    python depth_check.py out/depth-map.json --width 512 --height 512
"""

import argparse
import json
import os
import sys
from typing import Dict, Optional, Sequence

import numpy as np
from PIL import Image


def load_depth_map(path: str, width: int, height: int) -> np.ndarray:
    """读取 JSON 数组并还原为 (height, width)"""
    with open(path, 'r') as f:
        values = np.asarray(json.load(f), dtype=np.float64)
    if values.ndim != 1 or values.size != width * height:
        raise ValueError(f"{path}: {values.size} values, expected {width}x{height}={width * height}")
    if values.size and (values.min() < 0.0 or values.max() > 1.0):
        raise ValueError(f"{path}: values outside [0, 1]")
    return values.reshape(height, width)


def summarize(depth_map: np.ndarray, background: float = 0.0) -> Dict:
    """统计前景（与背景值不同的像素）"""
    total = depth_map.size
    foreground = depth_map != background
    count = int(foreground.sum())
    rows = np.flatnonzero(foreground.any(axis=1))
    stats = {
        'shape': depth_map.shape,
        'min': float(depth_map.min()) if total else 0.0,
        'max': float(depth_map.max()) if total else 0.0,
        'mean': float(depth_map.mean()) if total else 0.0,
        'foreground': count,
        'coverage': count / total if total else 0.0,
        'unique': int(np.unique(depth_map).size),
        'top_row': int(rows[0]) if rows.size else None,
        'bottom_row': int(rows[-1]) if rows.size else None,
    }
    return stats


def read_sidecar(path: str) -> Optional[Dict]:
    sidecar = path.replace('.json', '_config.json')
    if not os.path.exists(sidecar):
        return None
    with open(sidecar, 'r') as f:
        return json.load(f)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description='检查深度数组')
    parser.add_argument('path', help='depth-map.json 路径')
    parser.add_argument('--width', type=int, default=None)
    parser.add_argument('--height', type=int, default=None)
    parser.add_argument('--background', type=float, default=None,
                        help='背景值（默认: 遮罩为 0，raw-luma 为 1）')
    parser.add_argument('--save', default=None, help='保存可视化图片')
    args = parser.parse_args(argv)

    width, height, background = args.width, args.height, args.background
    sidecar = read_sidecar(args.path)
    if sidecar:
        width = width or sidecar.get('width')
        height = height or sidecar.get('height')
        if background is None and sidecar.get('mode') == 'raw-luma':
            background = 1.0
    if not width or not height:
        print("需要 --width/--height（数组不包含宽高信息）")
        return 2
    if background is None:
        background = 0.0

    print("=" * 60)
    print("深度数组检查")
    print("=" * 60)

    depth_map = load_depth_map(args.path, width, height)
    stats = summarize(depth_map, background)

    print(f"\n深度图统计:")
    print(f"  形状: {stats['shape']}")
    print(f"  范围: [{stats['min']:.4f}, {stats['max']:.4f}]")
    print(f"  均值: {stats['mean']:.4f}")
    print(f"  唯一值数量: {stats['unique']}")
    print(f"  前景像素: {stats['foreground']}/{depth_map.size} ({100 * stats['coverage']:.1f}%)")
    if stats['top_row'] is not None:
        print(f"  前景行范围: {stats['top_row']} - {stats['bottom_row']}")

    if stats['foreground'] == 0:
        print("\n⚠️  警告: 没有前景像素，模型可能不在视野内")
    elif stats['coverage'] >= 1.0:
        print("\n⚠️  警告: 模型填满了整个视口，看不到背景")

    if args.save:
        Image.fromarray(np.rint(depth_map * 255).astype(np.uint8)).save(args.save)
        print(f"\n可视化已保存: {args.save}")

    print("=" * 60)
    return 0


if __name__ == '__main__':
    sys.exit(main())
