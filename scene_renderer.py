"""
软件光栅化渲染器
================

核心特性：
- Numba 加速的三角形光栅化（Z-buffer 深度测试）
- 渲染到显示缓冲或离屏目标（render-to-texture）
- 同步读回像素（RGBA8，行序自底向上，与 OpenGL 一致）
- 环境光 + 平行光 Lambert 平面着色，可选阴影贴图

实现原理：
1. 顶点经 视图/投影 矩阵变换到裁剪空间
2. 丢弃落在近平面之后的三角形
3. 透视除法 → NDC → 像素坐标（y 轴向上）
4. 按材质的着色方式逐像素写入颜色缓冲
"""

import math
from typing import List, Optional, Tuple

import numpy as np
from loguru import logger
from numba import jit

from offscreen_target import OffscreenTarget
from scene_graph import (AmbientLight, DirectionalLight, Mesh, PerspectiveCamera, Scene,
                         SHADE_DEPTH, look_at, orthographic)

SHADOW_BIAS = 0.01


@jit(nopython=True)
def rasterize_triangles(screen, depth, colors, shade_modes, color_buffer, z_buffer):
    """
    使用Numba加速的光栅化核心函数

    Args:
        screen: (F, 3, 2) 像素坐标，原点在左下角
        depth: (F, 3) 窗口深度 [0, 1]
        colors: (F, 4) 每个三角形的 RGBA
        shade_modes: (F,) 着色方式
        color_buffer: (H, W, 4) uint8，原地写入
        z_buffer: (H, W) float64，原地写入
    """
    height = z_buffer.shape[0]
    width = z_buffer.shape[1]

    for i in range(screen.shape[0]):
        x0 = screen[i, 0, 0]
        y0 = screen[i, 0, 1]
        x1 = screen[i, 1, 0]
        y1 = screen[i, 1, 1]
        x2 = screen[i, 2, 0]
        y2 = screen[i, 2, 1]

        area = (x1 - x0) * (y2 - y0) - (y1 - y0) * (x2 - x0)
        if abs(area) < 1e-12:
            continue

        # 包围盒
        min_x = max(0, int(math.floor(min(x0, x1, x2))))
        max_x = min(width - 1, int(math.ceil(max(x0, x1, x2))))
        min_y = max(0, int(math.floor(min(y0, y1, y2))))
        max_y = min(height - 1, int(math.ceil(max(y0, y1, y2))))

        if min_x > max_x or min_y > max_y:
            continue

        # 遍历包围盒内的像素中心
        for y in range(min_y, max_y + 1):
            py = y + 0.5
            for x in range(min_x, max_x + 1):
                px = x + 0.5
                w0 = ((x1 - px) * (y2 - py) - (y1 - py) * (x2 - px)) / area
                w1 = ((x2 - px) * (y0 - py) - (y2 - py) * (x0 - px)) / area
                w2 = 1.0 - w0 - w1

                if w0 >= 0 and w1 >= 0 and w2 >= 0:
                    z = w0 * depth[i, 0] + w1 * depth[i, 1] + w2 * depth[i, 2]
                    if z < 0.0 or z > 1.0:
                        continue
                    if z < z_buffer[y, x]:
                        z_buffer[y, x] = z
                        if shade_modes[i] == 1:
                            v = int(math.floor((1.0 - z) * 255.0 + 0.5))
                            color_buffer[y, x, 0] = v
                            color_buffer[y, x, 1] = v
                            color_buffer[y, x, 2] = v
                            color_buffer[y, x, 3] = 255
                        else:
                            for c in range(4):
                                color_buffer[y, x, c] = colors[i, c]


def _to_clip(points: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    homo = np.hstack([points, np.ones((len(points), 1))])
    return homo @ matrix.T


def _to_window(clip: np.ndarray, width: int, height: int) -> Tuple[np.ndarray, np.ndarray]:
    """裁剪空间 → (像素坐标 xy, 窗口深度 z)"""
    w = clip[:, 3]
    w = np.where(np.abs(w) < 1e-12, 1e-12, w)
    ndc = clip[:, :3] / w[:, None]
    xy = np.empty((len(clip), 2))
    xy[:, 0] = (ndc[:, 0] + 1) * 0.5 * width
    xy[:, 1] = (ndc[:, 1] + 1) * 0.5 * height
    z = (ndc[:, 2] + 1) * 0.5
    return xy, z


def _face_normals(tris: np.ndarray) -> np.ndarray:
    normals = np.cross(tris[:, 1] - tris[:, 0], tris[:, 2] - tris[:, 0])
    norm = np.linalg.norm(normals, axis=1)
    norm[norm < 1e-12] = 1.0
    return normals / norm[:, None]


class _ShadowMap:
    def __init__(self, light: DirectionalLight, view_proj: np.ndarray, z_buffer: np.ndarray):
        self.light = light
        self.view_proj = view_proj
        self.z_buffer = z_buffer

    def occluded(self, points: np.ndarray) -> np.ndarray:
        """points 是否被更靠近光源的表面挡住"""
        size = self.z_buffer.shape[0]
        xy, z = _to_window(_to_clip(points, self.view_proj), size, size)
        px = np.clip(xy[:, 0].astype(np.int64), 0, size - 1)
        py = np.clip(xy[:, 1].astype(np.int64), 0, size - 1)
        return z > self.z_buffer[py, px] + SHADOW_BIAS


class SceneRenderer:
    """
    场景渲染器

    提供截取管线所需的三个接口：
    render(scene, camera)、set_render_target(target | None)、read_pixels(target, x, y, w, h)
    """

    # 读回的缓冲区第 0 行是画面底部
    rows_bottom_up = True

    def __init__(self, width: int = 512, height: int = 512, shadow_map_size: int = 256):
        self.display = OffscreenTarget(width, height)
        self.shadow_map_size = shadow_map_size
        self._target: Optional[OffscreenTarget] = None
        self.render_count = 0

    @property
    def current_target(self) -> OffscreenTarget:
        return self._target if self._target is not None else self.display

    def set_size(self, width: int, height: int) -> None:
        """重建显示缓冲（窗口尺寸变化时调用）"""
        self.display = OffscreenTarget(width, height)

    def set_render_target(self, target: Optional[OffscreenTarget]) -> None:
        """绑定离屏目标；None 表示恢复到显示缓冲"""
        if target is not None and target.disposed:
            raise ValueError("cannot bind a disposed render target")
        self._target = target

    def get_render_target(self) -> Optional[OffscreenTarget]:
        return self._target

    def render(self, scene: Scene, camera: PerspectiveCamera) -> None:
        """清屏并完整渲染一帧到当前目标"""
        target = self.current_target
        if not target.is_ready:
            raise RuntimeError(f"render target not ready: {target!r}")

        target.clear(scene.background)
        self.render_count += 1

        meshes = [m for m in scene.iter_meshes() if self._is_visible(m) and len(m.faces)]
        if not meshes:
            return

        aspect = target.width / target.height
        view_proj = camera.projection_matrix(aspect) @ camera.view_matrix()
        shadow = self._build_shadow_map(scene, meshes)

        screens: List[np.ndarray] = []
        depths: List[np.ndarray] = []
        colors: List[np.ndarray] = []
        modes: List[np.ndarray] = []

        for mesh in meshes:
            world = mesh.world_vertices()
            clip = _to_clip(world, view_proj)
            # 丢弃有顶点在近平面之后的三角形
            keep = (clip[:, 3][mesh.faces] >= camera.near).all(axis=1)
            if not keep.any():
                continue
            faces = mesh.faces[keep]
            xy, z = _to_window(clip, target.width, target.height)

            screens.append(xy[faces])
            depths.append(z[faces])
            colors.append(mesh.material.face_colors(self._light_levels(scene, world[faces], mesh, shadow)))
            modes.append(np.full(len(faces), mesh.material.shade_mode, dtype=np.int64))

        if not screens:
            return

        rasterize_triangles(
            np.ascontiguousarray(np.concatenate(screens)),
            np.ascontiguousarray(np.concatenate(depths)),
            np.ascontiguousarray(np.concatenate(colors)),
            np.concatenate(modes),
            target.color,
            target.depth,
        )

    def read_pixels(self, target: OffscreenTarget, x: int, y: int, width: int, height: int) -> bytes:
        """同步读回矩形区域的 RGBA 字节（自底向上的行序）"""
        if target.disposed:
            raise ValueError("cannot read from a disposed render target")
        if x < 0 or y < 0 or x + width > target.width or y + height > target.height:
            raise ValueError(f"region ({x}, {y}, {width}, {height}) outside {target!r}")
        return target.color[y:y + height, x:x + width].tobytes()

    def display_image(self) -> np.ndarray:
        """显示缓冲的 RGB 图像（自顶向下，可直接交给 PIL）"""
        return np.flipud(self.display.color[:, :, :3]).copy()

    # --- 内部 ---

    @staticmethod
    def _is_visible(node) -> bool:
        while node is not None:
            if not node.visible:
                return False
            node = node.parent
        return True

    def _light_levels(self, scene: Scene, tris: np.ndarray, mesh: Mesh,
                      shadow: Optional[_ShadowMap]) -> np.ndarray:
        if mesh.material.shade_mode == SHADE_DEPTH:
            return np.zeros(len(tris))

        ambient = sum(l.intensity for l in scene.lights if isinstance(l, AmbientLight))
        levels = np.full(len(tris), float(ambient))
        normals = _face_normals(tris)

        for light in scene.lights:
            if not isinstance(light, DirectionalLight):
                continue
            # 双面着色
            lambert = np.abs(normals @ -light.direction) * light.intensity
            if shadow is not None and shadow.light is light and mesh.receive_shadow:
                lambert[shadow.occluded(tris.mean(axis=1))] = 0.0
            levels += lambert
        return levels

    def _build_shadow_map(self, scene: Scene, meshes: List[Mesh]) -> Optional[_ShadowMap]:
        light = next((l for l in scene.lights
                      if isinstance(l, DirectionalLight) and l.cast_shadow), None)
        casters = [m for m in meshes if m.cast_shadow]
        if light is None or not casters or not any(m.receive_shadow for m in meshes):
            return None

        # 正交投影包住整个场景
        points = np.concatenate([m.world_vertices() for m in meshes])
        center = (points.min(axis=0) + points.max(axis=0)) / 2
        radius = float(np.linalg.norm(points - center, axis=1).max()) or 1.0
        eye = center - light.direction * radius * 2
        view_proj = orthographic(-radius, radius, -radius, radius, 0.01, radius * 4) @ look_at(eye, center)

        size = self.shadow_map_size
        z_buffer = np.ones((size, size))
        scratch = np.zeros((size, size, 4), dtype=np.uint8)

        screens = []
        depths = []
        for mesh in casters:
            xy, z = _to_window(_to_clip(mesh.world_vertices(), view_proj), size, size)
            screens.append(xy[mesh.faces])
            depths.append(z[mesh.faces])
        screen = np.ascontiguousarray(np.concatenate(screens))
        depth = np.ascontiguousarray(np.concatenate(depths))
        rasterize_triangles(screen, depth,
                            np.zeros((len(screen), 4), dtype=np.uint8),
                            np.zeros(len(screen), dtype=np.int64),
                            scratch, z_buffer)
        logger.debug(f"Shadow map built from {len(casters)} casters ({size}x{size})")
        return _ShadowMap(light, view_proj, z_buffer)
