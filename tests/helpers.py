import io

import numpy as np
from PIL import Image

from scene_graph import PerspectiveCamera, Scene


class FakeHost:
    """只会清屏的宿主，便于注入故障"""

    rows_bottom_up = True

    def __init__(self, scene=None):
        self.scene = scene if scene is not None else Scene(background=0)
        self.camera = PerspectiveCamera()
        self.target = None
        self.render_calls = 0
        self.fail_render = None
        self.fail_readback = None
        self.readback_trim = 0
        self.on_render = None
        self.seen = []

    def set_render_target(self, target):
        self.target = target

    def render(self, scene, camera):
        self.render_calls += 1
        self.seen = [(m.material, m.cast_shadow, m.receive_shadow) for m in scene.iter_meshes()]
        if self.on_render is not None:
            self.on_render()
        if self.fail_render is not None:
            raise self.fail_render
        self.target.clear(scene.background)

    def read_pixels(self, target, x, y, width, height):
        if self.fail_readback is not None:
            raise self.fail_readback
        data = target.color[y:y + height, x:x + width].tobytes()
        return data[:len(data) - self.readback_trim]


class RecordingSink:
    def __init__(self):
        self.saved = []

    def save(self, artifact):
        self.saved.append(artifact)


def snapshot(scene):
    return [(m, m.material, m.cast_shadow, m.receive_shadow) for m in scene.iter_meshes()]


def assert_unchanged(scene, before):
    after = snapshot(scene)
    assert len(after) == len(before)
    for (mesh, material, cast, receive), (mesh2, material2, cast2, receive2) in zip(before, after):
        assert mesh is mesh2
        assert material is material2
        assert cast == cast2
        assert receive == receive2


def decode_png(payload):
    return np.array(Image.open(io.BytesIO(payload)))
