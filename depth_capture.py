"""
深度截取管线
============

把当前视图截取为两个导出产物：
- depth-map.json：width*height 个 [0, 1] 数值（行主序，首行为画面顶部）
- depth-map.png：同尺寸灰度图（R=G=B，alpha=255）

流程：
1. 检查：目标未就绪 → NotReady；已有截取在进行 → Busy
2. 替换材质：记录每个网格的材质和阴影开关，换成深度材质并关闭阴影
3. 渲染：绑定离屏目标，清屏为背景色，渲染一帧
4. 解绑：恢复显示缓冲
5. 读回：长度必须正好是 width*height*4
6. 还原：无论成功失败都恢复原始材质和阴影开关
7. 归一化 → 8. 灰度图 → 9. 编码并交给导出端

注意：这里的"深度"是 8 位亮度/遮罩近似值，不是浮点深度缓冲。
"""

import io
import json
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional, Sequence, Tuple

import cv2
import numpy as np
from loguru import logger
from PIL import Image

from capture_errors import Busy, ExportFailure, NotReady, ReadbackSizeMismatch, RenderFailure
from offscreen_target import OffscreenTarget
from scene_graph import SHADE_DEPTH, SHADE_FLAT, Material, Scene, parse_color

ARRAY_FILENAME = "depth-map.json"
RASTER_FILENAME = "depth-map.png"


class EncodingMode(Enum):
    """深度材质的编码方式"""
    RAW_LUMA = "raw-luma"        # 灰度 = 红色通道 / 255
    BINARY_MASK = "binary-mask"  # 非零即 1.0


class CaptureState(Enum):
    IDLE = "idle"
    MATERIAL_SWAPPED = "material-swapped"
    RENDERING = "rendering"
    READ_BACK = "read-back"
    RESTORED = "restored"
    ENCODING = "encoding"
    DONE = "done"


class ArtifactFormat(Enum):
    NUMERIC_ARRAY = "numeric-array"
    RASTER_IMAGE = "raster-image"


@dataclass(frozen=True)
class ExportArtifact:
    """导出产物（纯值）"""
    format: ArtifactFormat
    payload: bytes
    filename: str


@dataclass
class CapturedFrame:
    """一次截取的中间结果，不在两次截取之间保留"""
    width: int
    height: int
    pixels: bytes
    values: Optional[np.ndarray] = None
    raster: Optional[np.ndarray] = None


@dataclass
class CaptureConfig:
    """
    截取配置（在创建管线时确定）

    Args:
        width, height: 基础输出尺寸
        mode: 编码方式
        background: 清屏颜色（灰度值、RGB 或 "#rrggbb"）
        resolution_scale: 离屏目标相对基础尺寸的倍数
    """
    width: int = 512
    height: int = 512
    mode: EncodingMode = EncodingMode.BINARY_MASK
    background: object = 0
    resolution_scale: int = 1

    def __post_init__(self):
        self.mode = EncodingMode(self.mode)
        if self.width < 0 or self.height < 0:
            raise ValueError(f"invalid capture size: {self.width}x{self.height}")
        if self.resolution_scale < 1:
            raise ValueError(f"resolution_scale must be >= 1, got {self.resolution_scale}")
        parse_color(self.background)

    @property
    def target_size(self) -> Tuple[int, int]:
        return self.width * self.resolution_scale, self.height * self.resolution_scale


class DepthMaterial(Material):
    """截取时替换到每个网格上的材质"""

    def __init__(self, mode: EncodingMode):
        self.mode = EncodingMode(mode)

    @property
    def shade_mode(self):
        return SHADE_DEPTH if self.mode is EncodingMode.RAW_LUMA else SHADE_FLAT

    def face_colors(self, light_levels: np.ndarray) -> np.ndarray:
        colors = np.empty((len(light_levels), 4), dtype=np.uint8)
        colors[:] = 255
        return colors

    def __repr__(self):
        return f"DepthMaterial({self.mode.value})"


@contextmanager
def substituted_materials(scene: Scene, material: Material) -> Iterator[int]:
    """
    临时把场景中所有网格换成 material 并关闭阴影

    退出时（包括异常）恢复每个网格原来的材质对象和阴影开关。
    """
    saved = []
    try:
        for mesh in scene.iter_meshes():
            saved.append((mesh, mesh.material, mesh.cast_shadow, mesh.receive_shadow))
            mesh.material = material
            mesh.cast_shadow = False
            mesh.receive_shadow = False
        yield len(saved)
    finally:
        for mesh, original, cast, receive in saved:
            mesh.material = original
            mesh.cast_shadow = cast
            mesh.receive_shadow = receive


# ============================================================
# 归一化与编码
# ============================================================

def normalize_pixels(pixels: bytes, width: int, height: int, mode: EncodingMode,
                     bottom_up: bool = True) -> np.ndarray:
    """
    RGBA 字节 → width*height 个 [0, 1] 数值

    Args:
        pixels: 读回的原始缓冲
        bottom_up: 缓冲的第 0 行是否为画面底部（是则翻转）

    Returns:
        一维 float64 数组，行主序，首行为画面顶部
    """
    rgba = np.frombuffer(pixels, dtype=np.uint8).reshape(height, width, 4)
    if bottom_up:
        rgba = np.flipud(rgba)
    red = rgba[:, :, 0]
    if EncodingMode(mode) is EncodingMode.RAW_LUMA:
        values = red.astype(np.float64) / 255.0
    else:
        values = (red != 0).astype(np.float64)
    return values.reshape(-1)


def encode_raster(values: np.ndarray, width: int, height: int) -> np.ndarray:
    """数值 → (H, W, 4) 灰度 RGBA，alpha 固定 255"""
    gray = np.rint(np.asarray(values, dtype=np.float64).reshape(height, width) * 255)
    gray = np.clip(gray, 0, 255).astype(np.uint8)
    return cv2.cvtColor(gray, cv2.COLOR_GRAY2RGBA)


def serialize_array(values: np.ndarray) -> bytes:
    """JSON 数组，不带宽高信息"""
    return json.dumps([float(v) for v in values]).encode('utf-8')


def encode_png(raster: np.ndarray) -> bytes:
    buffer = io.BytesIO()
    Image.fromarray(raster).save(buffer, format='PNG')
    return buffer.getvalue()


# ============================================================
# 管线
# ============================================================

class DepthCapturePipeline:
    """
    深度截取管线

    host 需要提供：scene、camera、rows_bottom_up 属性，
    以及 render(scene, camera)、set_render_target(target | None)、
    read_pixels(target, x, y, w, h) 方法。
    """

    def __init__(self, host, config: Optional[CaptureConfig] = None, sink=None):
        self.host = host
        self.config = config or CaptureConfig()
        self.sink = sink
        self.material = DepthMaterial(self.config.mode)
        self.state = CaptureState.IDLE
        self.capture_count = 0
        self.target: Optional[OffscreenTarget] = OffscreenTarget(*self.config.target_size)
        logger.debug(f"Depth pipeline ready: {self.target!r}, mode={self.config.mode.value}")

    @property
    def busy(self) -> bool:
        return self.state is not CaptureState.IDLE

    def resize(self, width: int, height: int) -> None:
        """显式重建离屏目标（基础尺寸，仍乘以 resolution_scale）"""
        if self.busy:
            raise Busy("cannot resize while a capture is in flight")
        scale = self.config.resolution_scale
        # 新目标创建成功后才替换旧目标和配置
        target = OffscreenTarget(width * scale, height * scale)
        if self.target is not None:
            self.target.dispose()
        self.target = target
        self.config.width = width
        self.config.height = height
        logger.info(f"Depth target resized to {self.target.width}x{self.target.height}")

    def dispose(self) -> None:
        if self.busy:
            raise Busy("cannot dispose while a capture is in flight")
        if self.target is not None:
            self.target.dispose()
            self.target = None

    def capture(self) -> Tuple[ExportArtifact, ExportArtifact]:
        """
        执行一次完整截取

        Returns:
            (数值数组产物, 灰度图产物)
        """
        if self.busy:
            raise Busy("a depth capture is already in flight")
        target = self.target
        if target is None or not target.is_ready:
            raise NotReady(f"depth target not ready: {target!r}")

        try:
            frame = self._render_and_read(target)
            self._set_state(CaptureState.ENCODING)
            try:
                artifacts = self._encode(frame)
            except Exception as exc:
                raise ExportFailure(f"encoding failed: {exc}") from exc
            self.capture_count += 1
            logger.info(f"Depth capture #{self.capture_count}: {frame.width}x{frame.height} ({self.config.mode.value})")
            # 导出仍属于本次截取，期间保持 Busy
            if self.sink is not None:
                self._export(artifacts)
            self._set_state(CaptureState.DONE)
        finally:
            self._set_state(CaptureState.IDLE)
        return artifacts

    # --- 内部步骤 ---

    def _set_state(self, state: CaptureState) -> None:
        logger.debug(f"Capture state: {self.state.value} -> {state.value}")
        self.state = state

    def _render_and_read(self, target: OffscreenTarget) -> CapturedFrame:
        host = self.host
        # 材质替换在读回之后、归一化之前结束
        with substituted_materials(host.scene, self.material) as swapped:
            self._set_state(CaptureState.MATERIAL_SWAPPED)
            logger.debug(f"Swapped materials on {swapped} meshes")

            self._set_state(CaptureState.RENDERING)
            try:
                background = parse_color(self.config.background)
                original_background = host.scene.background
                host.set_render_target(target)
                try:
                    host.scene.background = background
                    host.render(host.scene, host.camera)
                finally:
                    host.scene.background = original_background
                    host.set_render_target(None)
            except Exception as exc:
                raise RenderFailure(f"render pass failed: {exc}") from exc

            self._set_state(CaptureState.READ_BACK)
            try:
                pixels = host.read_pixels(target, 0, 0, target.width, target.height)
            except Exception as exc:
                raise RenderFailure(f"pixel readback failed: {exc}") from exc
            if len(pixels) != target.byte_size:
                raise ReadbackSizeMismatch(target.byte_size, len(pixels))

        self._set_state(CaptureState.RESTORED)
        return CapturedFrame(target.width, target.height, bytes(pixels))

    def _encode(self, frame: CapturedFrame) -> Tuple[ExportArtifact, ExportArtifact]:
        frame.values = normalize_pixels(frame.pixels, frame.width, frame.height,
                                        self.config.mode, self.host.rows_bottom_up)
        frame.raster = encode_raster(frame.values, frame.width, frame.height)
        return (
            ExportArtifact(ArtifactFormat.NUMERIC_ARRAY, serialize_array(frame.values), ARRAY_FILENAME),
            ExportArtifact(ArtifactFormat.RASTER_IMAGE, encode_png(frame.raster), RASTER_FILENAME),
        )

    def _export(self, artifacts: Sequence[ExportArtifact]) -> None:
        saved: List[str] = []
        for artifact in artifacts:
            try:
                self.sink.save(artifact)
            except ExportFailure as exc:
                # 导出端自己报告的失败：保留原消息，补全产物
                logger.error(f"Export of {artifact.filename} failed: {exc}")
                raise ExportFailure(str(exc), artifacts) from exc
            except Exception as exc:
                logger.error(f"Export of {artifact.filename} failed: {exc}")
                raise ExportFailure(f"failed to save {artifact.filename}: {exc}", artifacts) from exc
            saved.append(artifact.filename)
        logger.info(f"Exported {', '.join(saved)}")
