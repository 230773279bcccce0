"""
深度截取错误类型
================

所有截取失败都派生自 CaptureError，调用方可以统一捕获。
"""

from typing import Sequence


class CaptureError(Exception):
    """深度截取失败的基类"""


class NotReady(CaptureError):
    """渲染目标未创建或尺寸为零"""


class Busy(CaptureError):
    """已有一次截取正在进行"""


class RenderFailure(CaptureError):
    """渲染或读回过程中底层设备出错"""


class ReadbackSizeMismatch(CaptureError):
    """读回的像素缓冲区大小与 width * height * 4 不一致（内部错误）"""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"readback returned {actual} bytes, expected {expected}")
        self.expected = expected
        self.actual = actual


class ExportFailure(CaptureError):
    """截取成功但保存失败，内存中的导出产物仍然有效"""

    def __init__(self, message: str, artifacts: Sequence = ()):
        super().__init__(message)
        self.artifacts = tuple(artifacts)
