"""
场景宿主
========

持有场景图、相机和渲染器。模型选择只记录下来，在下一次 update()
时才真正替换到场景里，因此截取看到的总是"当前已提交"的场景。
"""

from typing import Callable, Optional

import numpy as np
from loguru import logger

from offscreen_target import OffscreenTarget
from scene_graph import (AmbientLight, DirectionalLight, Mesh, PerspectiveCamera, Scene,
                        load_obj, make_placeholder)
from scene_renderer import SceneRenderer


class SceneHost:
    """场景 + 相机 + 渲染器"""

    def __init__(self, width: int = 512, height: int = 512,
                 camera: Optional[PerspectiveCamera] = None,
                 loader: Callable[[str], Mesh] = load_obj,
                 model_scale: float = 4.0, background="#000000"):
        self.renderer = SceneRenderer(width, height)
        self.scene = Scene(background, lights=[
            AmbientLight(0.6),
            DirectionalLight((5.0, 5.0, 5.0), 0.6, cast_shadow=True),
        ])
        self.camera = camera or PerspectiveCamera()
        self._home = self.camera.copy()
        self.loader = loader
        self.model_scale = model_scale
        self.model: Optional[Mesh] = None
        self.model_id: Optional[str] = None
        self._pending: Optional[str] = None

    @property
    def rows_bottom_up(self) -> bool:
        return self.renderer.rows_bottom_up

    # --- 模型选择 ---

    def on_selection_changed(self, model_id: str) -> None:
        """记录新选择，下一次 update() 时提交"""
        self._pending = model_id

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def update(self) -> bool:
        """提交待处理的模型选择，场景有变化时返回 True"""
        if self._pending is None:
            return False
        model_id, self._pending = self._pending, None
        self.set_model(self.load_model(model_id), model_id)
        return True

    def load_model(self, model_id: str) -> Mesh:
        """加载失败时返回橙色占位立方体"""
        try:
            mesh = self.loader(model_id)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load model {model_id}: {e}")
            return make_placeholder()
        mesh.scale = np.full(3, self.model_scale)
        logger.info(f"Loaded: {mesh.name} ({mesh.stats['vertices']} vertices, {mesh.stats['faces']} faces)")
        return mesh

    def set_model(self, mesh: Mesh, model_id: Optional[str] = None) -> None:
        if self.model is not None:
            self.scene.remove(self.model)
        self.scene.add(mesh)
        self.model = mesh
        self.model_id = model_id

    # --- 视角 ---

    def orbit(self, d_yaw: float, d_pitch: float) -> None:
        self.camera.orbit(d_yaw, d_pitch)

    def reset_view(self) -> None:
        self.camera.position = self._home.position.copy()
        self.camera.target = self._home.target.copy()

    # --- 渲染接口 ---

    def render(self, scene: Scene, camera: PerspectiveCamera) -> None:
        self.renderer.render(scene, camera)

    def set_render_target(self, target: Optional[OffscreenTarget]) -> None:
        self.renderer.set_render_target(target)

    def read_pixels(self, target: OffscreenTarget, x: int, y: int, width: int, height: int) -> bytes:
        return self.renderer.read_pixels(target, x, y, width, height)

    def render_display(self) -> np.ndarray:
        """渲染到显示缓冲并返回自顶向下的 RGB 图像"""
        self.renderer.set_render_target(None)
        self.renderer.render(self.scene, self.camera)
        return self.renderer.display_image()

    def resize_display(self, width: int, height: int) -> None:
        self.renderer.set_size(width, height)
