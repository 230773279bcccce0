"""
场景图
======

核心内容：
- 节点树（Node / Mesh / Scene），网格节点绑定几何体和材质
- 材质（纯色、受光照）以及阴影开关
- 环境光、平行光
- 透视相机（轨道旋转）
- OBJ 模型加载（简化版）与占位立方体
"""

import math
import os
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np

# 片元着色方式（由光栅化内核识别）
SHADE_FLAT = 0   # 每个三角形一个颜色
SHADE_DEPTH = 1  # 灰度 = 1 - 窗口深度（近处亮）


def parse_color(value) -> Tuple[int, int, int, int]:
    """
    把颜色转换为 RGBA 字节

    支持：单个灰度值、(r, g, b)、(r, g, b, a)、"#rrggbb" 字符串
    """
    if isinstance(value, str):
        text = value.lstrip('#')
        if len(text) != 6:
            raise ValueError(f"invalid hex colour: {value!r}")
        return (int(text[0:2], 16), int(text[2:4], 16), int(text[4:6], 16), 255)
    if isinstance(value, (int, np.integer)):
        if not 0 <= value <= 255:
            raise ValueError(f"channel value out of range: {value}")
        return (int(value), int(value), int(value), 255)
    channels = [int(c) for c in value]
    if len(channels) == 3:
        channels.append(255)
    if len(channels) != 4 or any(c < 0 or c > 255 for c in channels):
        raise ValueError(f"invalid colour: {value!r}")
    return tuple(channels)


# ============================================================
# 材质
# ============================================================

class Material:
    """材质基类：决定每个三角形的颜色"""

    shade_mode = SHADE_FLAT

    def face_colors(self, light_levels: np.ndarray) -> np.ndarray:
        raise NotImplementedError


class MeshBasicMaterial(Material):
    """不受光照影响的纯色材质"""

    def __init__(self, color=(255, 255, 255)):
        self.color = parse_color(color)

    def face_colors(self, light_levels: np.ndarray) -> np.ndarray:
        colors = np.empty((len(light_levels), 4), dtype=np.uint8)
        colors[:] = self.color
        return colors

    def __repr__(self):
        return f"MeshBasicMaterial({self.color})"


class MeshStandardMaterial(Material):
    """受光照影响的材质（Lambert 平面着色）"""

    def __init__(self, color=(200, 200, 200)):
        self.color = parse_color(color)

    def face_colors(self, light_levels: np.ndarray) -> np.ndarray:
        rgb = np.asarray(self.color[:3], dtype=np.float64)
        shaded = np.clip(light_levels[:, None] * rgb[None, :], 0, 255)
        colors = np.empty((len(light_levels), 4), dtype=np.uint8)
        colors[:, :3] = np.rint(shaded).astype(np.uint8)
        colors[:, 3] = self.color[3]
        return colors

    def __repr__(self):
        return f"MeshStandardMaterial({self.color})"


# ============================================================
# 变换
# ============================================================

def rotation_matrix(pitch: float, yaw: float, roll: float = 0.0) -> np.ndarray:
    """绕 X (pitch)、Y (yaw)、Z (roll) 的组合旋转，R = Ry * Rx * Rz"""
    rx = np.array([
        [1, 0, 0],
        [0, np.cos(pitch), -np.sin(pitch)],
        [0, np.sin(pitch), np.cos(pitch)]
    ])
    ry = np.array([
        [np.cos(yaw), 0, np.sin(yaw)],
        [0, 1, 0],
        [-np.sin(yaw), 0, np.cos(yaw)]
    ])
    rz = np.array([
        [np.cos(roll), -np.sin(roll), 0],
        [np.sin(roll), np.cos(roll), 0],
        [0, 0, 1]
    ])
    return ry @ rx @ rz


def look_at(eye, target, up=(0.0, 1.0, 0.0)) -> np.ndarray:
    """生成视图矩阵（右手坐标系，相机朝 -Z）"""
    eye = np.asarray(eye, dtype=np.float64)
    target = np.asarray(target, dtype=np.float64)
    up = np.asarray(up, dtype=np.float64)

    forward = target - eye
    norm = np.linalg.norm(forward)
    if norm < 1e-12:
        raise ValueError("eye and target coincide")
    forward /= norm
    # 视线与 up 平行时换一个 up
    if abs(np.dot(forward, up)) > 0.999:
        up = np.array([0.0, 0.0, 1.0])

    side = np.cross(forward, up)
    side /= np.linalg.norm(side)
    true_up = np.cross(side, forward)

    view = np.eye(4)
    view[0, :3] = side
    view[1, :3] = true_up
    view[2, :3] = -forward
    view[:3, 3] = -view[:3, :3] @ eye
    return view


def perspective(fov_deg: float, aspect: float, near: float, far: float) -> np.ndarray:
    f = 1.0 / math.tan(math.radians(fov_deg) / 2)
    proj = np.zeros((4, 4))
    proj[0, 0] = f / aspect
    proj[1, 1] = f
    proj[2, 2] = (far + near) / (near - far)
    proj[2, 3] = 2 * far * near / (near - far)
    proj[3, 2] = -1.0
    return proj


def orthographic(left, right, bottom, top, near, far) -> np.ndarray:
    proj = np.eye(4)
    proj[0, 0] = 2 / (right - left)
    proj[1, 1] = 2 / (top - bottom)
    proj[2, 2] = -2 / (far - near)
    proj[0, 3] = -(right + left) / (right - left)
    proj[1, 3] = -(top + bottom) / (top - bottom)
    proj[2, 3] = -(far + near) / (far - near)
    return proj


# ============================================================
# 节点
# ============================================================

class Node:
    """场景图节点，带局部变换和子节点"""

    def __init__(self, name: str = "", position=(0.0, 0.0, 0.0),
                 rotation=(0.0, 0.0, 0.0), scale=1.0):
        self.name = name
        self.position = np.asarray(position, dtype=np.float64)
        self.rotation = np.asarray(rotation, dtype=np.float64)
        self.scale = np.broadcast_to(np.asarray(scale, dtype=np.float64), (3,)).copy()
        self.visible = True
        self.children: List["Node"] = []
        self.parent: Optional["Node"] = None

    def add(self, child: "Node") -> "Node":
        if child.parent is not None:
            child.parent.remove(child)
        child.parent = self
        self.children.append(child)
        return child

    def remove(self, child: "Node") -> None:
        self.children.remove(child)
        child.parent = None

    def local_matrix(self) -> np.ndarray:
        m = np.eye(4)
        m[:3, :3] = rotation_matrix(*self.rotation) * self.scale[None, :]
        m[:3, 3] = self.position
        return m

    def world_matrix(self) -> np.ndarray:
        m = self.local_matrix()
        node = self.parent
        while node is not None:
            m = node.local_matrix() @ m
            node = node.parent
        return m

    def traverse(self) -> Iterator["Node"]:
        """深度优先遍历（包含自身）"""
        yield self
        for child in self.children:
            yield from child.traverse()

    def iter_meshes(self) -> Iterator["Mesh"]:
        for node in self.traverse():
            if isinstance(node, Mesh):
                yield node


class Mesh(Node):
    """几何体 + 材质"""

    def __init__(self, vertices, faces, material: Optional[Material] = None,
                 name: str = "", cast_shadow: bool = False, receive_shadow: bool = False, **kwargs):
        super().__init__(name=name, **kwargs)
        self.vertices = np.asarray(vertices, dtype=np.float64).reshape(-1, 3)
        self.faces = np.asarray(faces, dtype=np.int64).reshape(-1, 3)
        self.material = material if material is not None else MeshStandardMaterial()
        self.cast_shadow = cast_shadow
        self.receive_shadow = receive_shadow

    def world_vertices(self) -> np.ndarray:
        m = self.world_matrix()
        return self.vertices @ m[:3, :3].T + m[:3, 3]

    @property
    def stats(self):
        return {'vertices': len(self.vertices), 'faces': len(self.faces)}

    def __repr__(self):
        return f"Mesh({self.name!r}, {len(self.vertices)} vertices, {len(self.faces)} faces)"


class AmbientLight:
    def __init__(self, intensity: float = 1.0):
        self.intensity = intensity


class DirectionalLight:
    """平行光，从 position 照向 target"""

    def __init__(self, position=(5.0, 5.0, 5.0), intensity: float = 1.0,
                 target=(0.0, 0.0, 0.0), cast_shadow: bool = False):
        self.position = np.asarray(position, dtype=np.float64)
        self.target = np.asarray(target, dtype=np.float64)
        self.intensity = intensity
        self.cast_shadow = cast_shadow

    @property
    def direction(self) -> np.ndarray:
        """光线前进方向（单位向量）"""
        d = self.target - self.position
        return d / np.linalg.norm(d)


class Scene(Node):
    """场景根节点，带背景色和灯光"""

    def __init__(self, background=(0, 0, 0), lights: Sequence = ()):
        super().__init__(name="scene")
        self.background = parse_color(background)
        self.lights = list(lights)


# ============================================================
# 相机
# ============================================================

class PerspectiveCamera:
    """透视相机，围绕 target 做轨道旋转"""

    def __init__(self, fov: float = 75.0, near: float = 0.1, far: float = 1000.0,
                 position=(0.0, 5.0, 10.0), target=(0.0, 0.0, 0.0)):
        self.fov = fov
        self.near = near
        self.far = far
        self.position = np.asarray(position, dtype=np.float64)
        self.target = np.asarray(target, dtype=np.float64)

    def view_matrix(self) -> np.ndarray:
        return look_at(self.position, self.target)

    def projection_matrix(self, aspect: float) -> np.ndarray:
        return perspective(self.fov, aspect, self.near, self.far)

    def orbit(self, d_yaw: float, d_pitch: float) -> None:
        """绕目标点旋转（球坐标），俯仰角限制在 ±89°"""
        offset = self.position - self.target
        radius = np.linalg.norm(offset)
        yaw = math.atan2(offset[0], offset[2]) + d_yaw
        pitch = math.asin(np.clip(offset[1] / radius, -1.0, 1.0)) + d_pitch
        limit = math.radians(89.0)
        pitch = max(-limit, min(limit, pitch))
        self.position = self.target + radius * np.array([
            math.cos(pitch) * math.sin(yaw),
            math.sin(pitch),
            math.cos(pitch) * math.cos(yaw),
        ])

    def copy(self) -> "PerspectiveCamera":
        return PerspectiveCamera(self.fov, self.near, self.far, self.position.copy(), self.target.copy())


# ============================================================
# 几何体
# ============================================================

def load_obj(obj_path: str, material: Optional[Material] = None) -> Mesh:
    """
    加载OBJ模型（简化版）

    多边形面按扇形拆成三角形，顶点居中并归一化到[-1, 1]。

    Args:
        obj_path: OBJ文件路径
        material: 网格材质，默认受光照的灰色

    Returns:
        网格节点
    """
    if not os.path.exists(obj_path):
        raise FileNotFoundError(f"模型不存在: {obj_path}")

    vertices = []
    faces = []

    with open(obj_path, 'r') as f:
        for line in f:
            line = line.strip()
            if line.startswith('v '):
                parts = line.split()
                vertices.append([float(x) for x in parts[1:4]])
            elif line.startswith('f '):
                idx = []
                for p in line.split()[1:]:
                    i = int(p.split('/')[0])
                    # 负索引相对于当前已读取的顶点
                    idx.append(i - 1 if i > 0 else len(vertices) + i)
                for k in range(1, len(idx) - 1):
                    faces.append([idx[0], idx[k], idx[k + 1]])

    if not vertices or not faces:
        raise ValueError(f"模型没有可渲染的面: {obj_path}")

    vertices = np.array(vertices, dtype=np.float64)
    faces = np.array(faces, dtype=np.int64)
    if faces.min() < 0 or faces.max() >= len(vertices):
        raise ValueError(f"面索引越界: {obj_path}")

    # 归一化顶点到[-1, 1]
    center = (vertices.min(axis=0) + vertices.max(axis=0)) / 2
    vertices -= center
    scale = np.max(np.abs(vertices))
    if scale > 0:
        vertices /= scale

    name = os.path.splitext(os.path.basename(obj_path))[0]
    return Mesh(vertices, faces, material, name=name, cast_shadow=True, receive_shadow=True)


def make_box(size: float = 1.0, material: Optional[Material] = None, name: str = "box", **kwargs) -> Mesh:
    """轴对齐立方体"""
    h = size / 2
    vertices = [
        [-h, -h, -h], [h, -h, -h], [h, h, -h], [-h, h, -h],
        [-h, -h, h], [h, -h, h], [h, h, h], [-h, h, h],
    ]
    faces = [
        [0, 2, 1], [0, 3, 2],  # -Z
        [4, 5, 6], [4, 6, 7],  # +Z
        [0, 1, 5], [0, 5, 4],  # -Y
        [3, 7, 6], [3, 6, 2],  # +Y
        [0, 4, 7], [0, 7, 3],  # -X
        [1, 2, 6], [1, 6, 5],  # +X
    ]
    return Mesh(vertices, faces, material, name=name, **kwargs)


def make_plane(width: float = 1.0, height: float = 1.0, material: Optional[Material] = None,
               name: str = "plane", **kwargs) -> Mesh:
    """XY 平面上的矩形，法线 +Z"""
    w, h = width / 2, height / 2
    vertices = [[-w, -h, 0], [w, -h, 0], [w, h, 0], [-w, h, 0]]
    faces = [[0, 1, 2], [0, 2, 3]]
    return Mesh(vertices, faces, material, name=name, **kwargs)


def make_placeholder() -> Mesh:
    """模型加载失败时显示的橙色立方体"""
    return make_box(1.0, MeshStandardMaterial("#ffa500"), name="placeholder")
