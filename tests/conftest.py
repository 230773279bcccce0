import pytest

from helpers import FakeHost, RecordingSink
from scene_graph import MeshBasicMaterial, MeshStandardMaterial, PerspectiveCamera, Scene, make_box, make_plane
from scene_host import SceneHost


@pytest.fixture
def scene_with_meshes():
    scene = Scene(background=0)
    box = make_box(1.0, MeshStandardMaterial("#ff0000"), cast_shadow=True, receive_shadow=False)
    child = make_box(0.5, MeshStandardMaterial(30), name="child", cast_shadow=True, receive_shadow=True)
    plane = make_plane(2.0, 2.0, MeshBasicMaterial(90), receive_shadow=True)
    box.add(child)
    scene.add(box)
    scene.add(plane)
    return scene


@pytest.fixture
def fake_host(scene_with_meshes):
    return FakeHost(scene_with_meshes)


@pytest.fixture
def front_host():
    """相机在 +Z 方向 5 个单位处看向原点"""
    camera = PerspectiveCamera(position=(0.0, 0.0, 5.0))
    return SceneHost(16, 16, camera=camera)


@pytest.fixture
def sink():
    return RecordingSink()
