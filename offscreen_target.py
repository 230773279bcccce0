"""
离屏渲染目标
============

RGBA8 颜色缓冲 + 深度缓冲。行序与 OpenGL 一致：第 0 行是画面最底部的扫描线。
"""

import numpy as np
from typing import Optional


class OffscreenTarget:
    """不显示到屏幕的帧缓冲，用于程序化读取像素"""

    CHANNELS = 4

    def __init__(self, width: int, height: int):
        if width < 0 or height < 0:
            raise ValueError(f"invalid target size: {width}x{height}")
        self.width = int(width)
        self.height = int(height)
        self.color: Optional[np.ndarray] = np.zeros((self.height, self.width, self.CHANNELS), dtype=np.uint8)
        self.depth: Optional[np.ndarray] = np.ones((self.height, self.width), dtype=np.float64)

    @property
    def disposed(self) -> bool:
        return self.color is None

    @property
    def is_ready(self) -> bool:
        """已分配且两个维度都大于零"""
        return not self.disposed and self.width > 0 and self.height > 0

    @property
    def byte_size(self) -> int:
        return self.width * self.height * self.CHANNELS

    def clear(self, rgba) -> None:
        """用背景色填充颜色缓冲，并把深度重置为最远"""
        if self.disposed:
            raise RuntimeError("target has been disposed")
        self.color[:, :] = np.asarray(rgba, dtype=np.uint8)
        self.depth.fill(1.0)

    def dispose(self) -> None:
        self.color = None
        self.depth = None

    def __repr__(self):
        state = "disposed" if self.disposed else "live"
        return f"OffscreenTarget({self.width}x{self.height}, {state})"
