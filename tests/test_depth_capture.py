import json

import numpy as np
import pytest

import depth_capture
from capture_errors import Busy, ExportFailure, NotReady, ReadbackSizeMismatch, RenderFailure
from depth_capture import (ARRAY_FILENAME, RASTER_FILENAME, ArtifactFormat, CaptureConfig,
                           CaptureState, DepthCapturePipeline, DepthMaterial, EncodingMode,
                           substituted_materials)
from helpers import FakeHost, RecordingSink, assert_unchanged, decode_png, snapshot
from scene_graph import MeshBasicMaterial, Scene, make_box, make_plane


def raw_luma(width, height, background):
    return CaptureConfig(width=width, height=height, mode=EncodingMode.RAW_LUMA, background=background)


def mask(width, height, background=0, scale=1):
    return CaptureConfig(width=width, height=height, mode=EncodingMode.BINARY_MASK,
                         background=background, resolution_scale=scale)


# --- 输出形状与数值 ---

@pytest.mark.parametrize("width,height", [(1, 1), (4, 4), (7, 3), (2, 9)])
def test_array_length_matches_target(width, height):
    pipeline = DepthCapturePipeline(FakeHost(), raw_luma(width, height, 17))
    array_artifact, raster_artifact = pipeline.capture()

    values = json.loads(array_artifact.payload)
    assert len(values) == width * height
    assert decode_png(raster_artifact.payload).shape == (height, width, 4)


def test_uniform_scene_round_trip():
    pipeline = DepthCapturePipeline(FakeHost(), raw_luma(5, 3, 200))
    array_artifact, raster_artifact = pipeline.capture()

    values = json.loads(array_artifact.payload)
    assert values == pytest.approx([200 / 255] * 15)
    raster = decode_png(raster_artifact.payload)
    assert (raster[:, :, :3] == 200).all()
    assert (raster[:, :, 3] == 255).all()


def test_four_by_four_cleared_to_128(front_host):
    # 没有几何体，只有清屏颜色
    pipeline = DepthCapturePipeline(front_host, raw_luma(4, 4, 128))
    array_artifact, raster_artifact = pipeline.capture()

    values = json.loads(array_artifact.payload)
    assert len(values) == 16
    assert values == pytest.approx([0.50196] * 16, abs=1e-5)
    raster = decode_png(raster_artifact.payload)
    assert raster.reshape(-1, 4).tolist() == [[128, 128, 128, 255]] * 16


def test_binary_mask_full_coverage(front_host):
    front_host.set_model(make_plane(100.0, 100.0))
    pipeline = DepthCapturePipeline(front_host, mask(8, 8, background=0))
    array_artifact, raster_artifact = pipeline.capture()

    assert json.loads(array_artifact.payload) == [1.0] * 64
    raster = decode_png(raster_artifact.payload)
    assert (raster == 255).all()


def test_binary_mask_background_is_zero(front_host):
    front_host.set_model(make_plane(0.5, 0.5))
    pipeline = DepthCapturePipeline(front_host, mask(16, 16))
    values = np.array(json.loads(pipeline.capture()[0].payload))

    assert set(values.tolist()) == {0.0, 1.0}
    assert values[0] == 0.0
    assert values.reshape(16, 16)[8, 8] == 1.0


def test_marker_near_top_lands_in_first_rows(front_host):
    # 从 y=2.5 延伸到视野上方之外
    front_host.set_model(make_plane(1.0, 3.5, position=(0.0, 4.25, 0.0)))
    pipeline = DepthCapturePipeline(front_host, mask(16, 16))
    values = np.array(json.loads(pipeline.capture()[0].payload))

    assert values[:16].max() == 1.0
    assert values[-16 * 4:].max() == 0.0


def test_raw_luma_near_is_brighter_than_far(front_host):
    far = make_plane(100.0, 100.0, position=(0.0, 0.0, -5.0))
    near = make_plane(2.0, 2.0, position=(0.0, 0.0, 2.0))
    front_host.set_model(far)
    front_host.scene.add(near)
    pipeline = DepthCapturePipeline(front_host, raw_luma(16, 16, 255))
    grid = np.array(json.loads(pipeline.capture()[0].payload)).reshape(16, 16)

    assert 0.0 < grid[0, 0] < grid[8, 8] < 1.0


def test_repeated_captures_are_identical(front_host):
    front_host.set_model(make_box(2.0, rotation=(0.4, 0.7, 0.0)))
    pipeline = DepthCapturePipeline(front_host, raw_luma(16, 16, 255))
    first = pipeline.capture()
    second = pipeline.capture()

    assert first[0].payload == second[0].payload
    assert first[1].payload == second[1].payload


def test_hires_preset_doubles_target():
    pipeline = DepthCapturePipeline(FakeHost(), mask(3, 2, scale=2))
    values = json.loads(pipeline.capture()[0].payload)
    assert len(values) == 6 * 4


def test_artifacts_carry_fixed_filenames():
    array_artifact, raster_artifact = DepthCapturePipeline(FakeHost(), mask(2, 2)).capture()
    assert array_artifact.format is ArtifactFormat.NUMERIC_ARRAY
    assert array_artifact.filename == ARRAY_FILENAME == "depth-map.json"
    assert raster_artifact.format is ArtifactFormat.RASTER_IMAGE
    assert raster_artifact.filename == RASTER_FILENAME == "depth-map.png"
    assert raster_artifact.payload[:8] == b"\x89PNG\r\n\x1a\n"


# --- 材质替换与还原 ---

def test_materials_swapped_during_render(fake_host):
    pipeline = DepthCapturePipeline(fake_host, mask(2, 2))
    pipeline.capture()

    assert len(fake_host.seen) == 3
    for material, cast, receive in fake_host.seen:
        assert isinstance(material, DepthMaterial)
        assert material is pipeline.material
        assert cast is False and receive is False


def test_restored_after_success(fake_host):
    before = snapshot(fake_host.scene)
    DepthCapturePipeline(fake_host, mask(2, 2)).capture()
    assert_unchanged(fake_host.scene, before)


def test_restored_after_render_failure(fake_host):
    before = snapshot(fake_host.scene)
    fake_host.fail_render = RuntimeError("device lost")
    pipeline = DepthCapturePipeline(fake_host, mask(2, 2))

    with pytest.raises(RenderFailure) as excinfo:
        pipeline.capture()

    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert_unchanged(fake_host.scene, before)
    assert pipeline.state is CaptureState.IDLE
    assert fake_host.target is None


def test_restored_after_readback_failure(fake_host):
    before = snapshot(fake_host.scene)
    fake_host.fail_readback = OSError("readback failed")
    pipeline = DepthCapturePipeline(fake_host, mask(2, 2))

    with pytest.raises(RenderFailure):
        pipeline.capture()
    assert_unchanged(fake_host.scene, before)
    assert pipeline.state is CaptureState.IDLE


def test_readback_size_mismatch(fake_host):
    before = snapshot(fake_host.scene)
    fake_host.readback_trim = 4
    pipeline = DepthCapturePipeline(fake_host, mask(3, 3))

    with pytest.raises(ReadbackSizeMismatch) as excinfo:
        pipeline.capture()

    assert excinfo.value.expected == 36
    assert excinfo.value.actual == 32
    assert_unchanged(fake_host.scene, before)
    assert pipeline.state is CaptureState.IDLE


def test_render_target_and_background_restored(front_host):
    front_host.set_model(make_box(1.0))
    original_background = front_host.scene.background
    pipeline = DepthCapturePipeline(front_host, raw_luma(8, 8, 255))
    pipeline.capture()

    assert front_host.renderer.get_render_target() is None
    assert front_host.scene.background == original_background


def test_exactly_one_render_pass(front_host):
    pipeline = DepthCapturePipeline(front_host, mask(4, 4))
    before = front_host.renderer.render_count
    pipeline.capture()
    assert front_host.renderer.render_count == before + 1


# --- 状态守卫 ---

def test_reentrant_capture_is_rejected():
    host = FakeHost(Scene(background=60))
    pipeline = DepthCapturePipeline(host, raw_luma(3, 3, 60))
    expected = pipeline.capture()
    errors = []

    def reenter():
        try:
            pipeline.capture()
        except Busy as e:
            errors.append(e)

    host.on_render = reenter
    result = pipeline.capture()

    assert len(errors) == 1
    assert result == expected
    assert pipeline.state is CaptureState.IDLE


def test_not_ready_with_zero_dimension():
    host = FakeHost()
    pipeline = DepthCapturePipeline(host, mask(0, 4))
    with pytest.raises(NotReady):
        pipeline.capture()
    assert host.render_calls == 0


def test_not_ready_after_dispose():
    host = FakeHost()
    pipeline = DepthCapturePipeline(host, mask(2, 2))
    pipeline.dispose()
    with pytest.raises(NotReady):
        pipeline.capture()
    assert host.render_calls == 0


def test_resize_recreates_target():
    pipeline = DepthCapturePipeline(FakeHost(), mask(2, 2))
    old_target = pipeline.target
    pipeline.resize(5, 3)

    assert old_target.disposed
    assert (pipeline.target.width, pipeline.target.height) == (5, 3)
    assert len(json.loads(pipeline.capture()[0].payload)) == 15


def test_resize_rejected_while_busy():
    host = FakeHost()
    pipeline = DepthCapturePipeline(host, mask(2, 2))
    errors = []

    def resize():
        try:
            pipeline.resize(8, 8)
        except Busy as e:
            errors.append(e)

    host.on_render = resize
    pipeline.capture()
    assert errors
    assert pipeline.target.width == 2


def test_target_persists_across_captures():
    pipeline = DepthCapturePipeline(FakeHost(), mask(2, 2))
    target = pipeline.target
    pipeline.capture()
    pipeline.capture()
    assert pipeline.target is target
    assert pipeline.capture_count == 2


def test_failed_resize_keeps_previous_target():
    pipeline = DepthCapturePipeline(FakeHost(), mask(2, 2))
    target = pipeline.target

    with pytest.raises(ValueError):
        pipeline.resize(-1, 4)

    assert pipeline.target is target
    assert target.is_ready
    assert (pipeline.config.width, pipeline.config.height) == (2, 2)
    assert len(json.loads(pipeline.capture()[0].payload)) == 4


def test_sink_reentry_is_rejected():
    errors = []

    class ReentrantSink(RecordingSink):
        def save(self, artifact):
            super().save(artifact)
            assert pipeline.busy
            try:
                pipeline.capture()
            except Busy as e:
                errors.append(e)

    sink = ReentrantSink()
    pipeline = DepthCapturePipeline(FakeHost(), mask(2, 2), sink)
    artifacts = pipeline.capture()

    assert len(errors) == 2
    assert sink.saved == list(artifacts)
    assert pipeline.capture_count == 1
    assert pipeline.state is CaptureState.IDLE


# --- 导出 ---

def test_artifacts_handed_to_sink(sink):
    pipeline = DepthCapturePipeline(FakeHost(), mask(2, 2), sink)
    artifacts = pipeline.capture()
    assert sink.saved == list(artifacts)


def test_export_failure_keeps_artifacts():
    class BrokenSink(RecordingSink):
        def save(self, artifact):
            raise OSError("disk full")

    pipeline = DepthCapturePipeline(FakeHost(), mask(2, 2), BrokenSink())
    with pytest.raises(ExportFailure) as excinfo:
        pipeline.capture()

    artifacts = excinfo.value.artifacts
    assert len(artifacts) == 2
    assert json.loads(artifacts[0].payload) == [0.0] * 4
    assert pipeline.state is CaptureState.IDLE


def test_config_rejects_bad_values():
    with pytest.raises(ValueError):
        CaptureConfig(mode="depth-buffer")
    with pytest.raises(ValueError):
        CaptureConfig(resolution_scale=0)
    with pytest.raises(ValueError):
        CaptureConfig(background=300)


def test_config_accepts_mode_strings():
    config = CaptureConfig(mode="raw-luma")
    assert config.mode is EncodingMode.RAW_LUMA
    assert CaptureConfig(width=4, height=3, resolution_scale=2).target_size == (8, 6)


def test_depth_material_shading():
    assert DepthMaterial(EncodingMode.BINARY_MASK).face_colors(np.zeros(2)).tolist() == [[255] * 4] * 2
    assert DepthMaterial("raw-luma").shade_mode != DepthMaterial("binary-mask").shade_mode


def test_substituted_materials_on_basic_scene():
    scene = Scene()
    mesh = make_box(1.0, MeshBasicMaterial(10), cast_shadow=True)
    scene.add(mesh)
    original = mesh.material

    with pytest.raises(KeyError):
        with substituted_materials(scene, DepthMaterial("binary-mask")) as count:
            assert count == 1
            assert mesh.cast_shadow is False
            raise KeyError("boom")
    assert mesh.material is original
    assert mesh.cast_shadow is True


def test_encoding_failure_has_no_artifacts(fake_host, monkeypatch):
    def broken_png(raster):
        raise TypeError("cannot encode raster")

    monkeypatch.setattr(depth_capture, "encode_png", broken_png)
    before = snapshot(fake_host.scene)
    sink = RecordingSink()
    pipeline = DepthCapturePipeline(fake_host, mask(2, 2), sink)

    with pytest.raises(ExportFailure) as excinfo:
        pipeline.capture()

    assert isinstance(excinfo.value.__cause__, TypeError)
    assert excinfo.value.artifacts == ()
    assert sink.saved == []
    assert pipeline.state is CaptureState.IDLE
    assert pipeline.capture_count == 0
    assert_unchanged(fake_host.scene, before)
