import cv2
import numpy as np
import pytest

from fisheye_viewer.camera_params import FisheyeParams
from fisheye_viewer.exceptions import ProjectionNumericError
from fisheye_viewer.map_cache import MapCache
from fisheye_viewer.projection import (MAP_SENTINEL, ParameterDelta, ProjectionEngine,
                                       apply_rectification_map, build_map, default_output_size,
                                       scale_for_display, target_camera_matrix)

from .conftest import make_fisheye_frame


def test_default_output_size(fisheye_params):
  assert default_output_size(fisheye_params) == (160, 96)


def test_target_camera_matrix_centres_principal_point(fisheye_params):
  new_K = target_camera_matrix(fisheye_params, (160, 96), 2.5)

  assert new_K[0, 2] == 80.0
  assert new_K[1, 2] == 48.0
  assert new_K[0, 0] == pytest.approx(75.0)
  assert new_K[1, 1] == pytest.approx(75.0)
  assert fisheye_params.get_camera_matrix()[0, 0] == 30.0


def test_build_map_has_requested_size(fisheye_params):
  rect_map = build_map(fisheye_params, (160, 96), 2.5)

  assert rect_map.output_size == (160, 96)
  assert rect_map.map_x.shape == (96, 160)
  assert rect_map.map_x.dtype == np.float32
  assert rect_map.model == 'fisheye'


def test_optical_axis_maps_to_principal_point(fisheye_params):
  rect_map = build_map(fisheye_params, (160, 96), 2.5)

  assert rect_map.map_x[48, 80] == pytest.approx(32.0, abs=0.5)
  assert rect_map.map_y[48, 80] == pytest.approx(32.0, abs=0.5)


def test_map_is_read_only(fisheye_params):
  rect_map = build_map(fisheye_params, (40, 30), 2.5)

  assert not rect_map.map_x.flags.writeable
  with pytest.raises(ValueError):
    rect_map.map_y[0, 0] = 1.0


def test_invalid_arguments(fisheye_params):
  with pytest.raises(ValueError):
    build_map(fisheye_params, (0, 96), 2.5)
  with pytest.raises(ValueError):
    build_map(fisheye_params, (160, 96), 0.0)


def test_non_finite_coordinates_become_sentinel(fisheye_params, monkeypatch):
  def partly_nan(K, D, R, P, size, m1type):
    width, height = size
    map_x = np.full((height, width), 10.0, dtype=np.float32)
    map_y = np.full((height, width), 10.0, dtype=np.float32)
    map_x[0, :] = np.nan
    map_y[:, 0] = np.inf
    return map_x, map_y

  monkeypatch.setattr(cv2.fisheye, 'initUndistortRectifyMap', partly_nan)

  rect_map = build_map(fisheye_params, (20, 10), 2.5)

  assert rect_map.model == 'fisheye'
  assert rect_map.map_x[0, 5] == MAP_SENTINEL
  assert rect_map.map_y[0, 5] == MAP_SENTINEL
  assert rect_map.map_x[5, 0] == MAP_SENTINEL
  assert rect_map.map_x[5, 5] == 10.0
  assert not rect_map.valid_mask()[0].any()
  assert rect_map.valid_mask()[5, 5]


def test_falls_back_to_pinhole_when_fisheye_fails(fisheye_params, monkeypatch, caplog):
  def broken(*args):
    raise cv2.error("fisheye model rejected")

  monkeypatch.setattr(cv2.fisheye, 'initUndistortRectifyMap', broken)

  rect_map = build_map(fisheye_params, (160, 96), 2.5)

  assert rect_map.model == 'pinhole'
  assert rect_map.output_size == (160, 96)
  assert 'falling back to pinhole' in caplog.text


def test_falls_back_when_fisheye_has_no_valid_pixel(fisheye_params, monkeypatch):
  def all_nan(K, D, R, P, size, m1type):
    width, height = size
    return (np.full((height, width), np.nan, dtype=np.float32),
            np.full((height, width), np.nan, dtype=np.float32))

  monkeypatch.setattr(cv2.fisheye, 'initUndistortRectifyMap', all_nan)

  assert build_map(fisheye_params, (40, 30), 2.5).model == 'pinhole'


def test_both_models_failing_raises(fisheye_params, monkeypatch):
  def broken(*args):
    raise cv2.error("no")

  monkeypatch.setattr(cv2.fisheye, 'initUndistortRectifyMap', broken)
  monkeypatch.setattr(cv2, 'initUndistortRectifyMap', broken)

  with pytest.raises(ProjectionNumericError):
    build_map(fisheye_params, (40, 30), 2.5)


def test_apply_output_size_independent_of_frame_size(fisheye_params):
  rect_map = build_map(fisheye_params, (160, 96), 2.5)

  full = apply_rectification_map(rect_map, make_fisheye_frame(64, 64))
  small = apply_rectification_map(rect_map, make_fisheye_frame(32, 32))

  assert full.shape == (96, 160, 3)
  assert small.shape == (96, 160, 3)
  assert full.dtype == np.uint8


def test_sentinel_pixels_are_black(fisheye_params, monkeypatch):
  def half_nan(K, D, R, P, size, m1type):
    width, height = size
    map_x = np.full((height, width), 32.0, dtype=np.float32)
    map_y = np.full((height, width), 32.0, dtype=np.float32)
    map_x[:, :width // 2] = np.nan
    return map_x, map_y

  monkeypatch.setattr(cv2.fisheye, 'initUndistortRectifyMap', half_nan)
  rect_map = build_map(fisheye_params, (20, 10), 2.5)

  result = apply_rectification_map(rect_map, np.full((64, 64, 3), 255, dtype=np.uint8))

  assert (result[:, :10] == 0).all()
  assert (result[:, 10:] == 255).all()


def test_scale_for_display_keeps_small_frames():
  frame = np.zeros((50, 100, 3), dtype=np.uint8)

  assert scale_for_display(frame, 1800) is frame


def test_scale_for_display_shrinks_large_frames():
  frame = np.zeros((2000, 4000), dtype=np.uint8)

  scaled = scale_for_display(frame, 1800)

  assert scaled.shape == (900, 1800)


def test_scale_for_display_rejects_zero_budget():
  with pytest.raises(ValueError):
    scale_for_display(np.zeros((10, 10), dtype=np.uint8), 0)


def test_engine_caches_its_map(fisheye_params):
  engine = ProjectionEngine(fisheye_params)

  first = engine.get_map()
  second = engine.get_map()

  assert first is second
  assert len(engine.map_cache) == 1
  assert engine.output_size == (160, 96)


def test_engines_share_a_map_cache(fisheye_params):
  shared = MapCache()
  left = ProjectionEngine(fisheye_params, map_cache=shared)
  right = ProjectionEngine(fisheye_params, map_cache=shared)

  assert left.get_map() is right.get_map()
  assert shared.get_info()['total_hits'] >= 1


def test_engine_apply(fisheye_params):
  engine = ProjectionEngine(fisheye_params, output_size=(120, 80), focal_expansion=4.0)

  result = engine.apply(make_fisheye_frame())

  assert result.shape == (80, 120, 3)
  assert result[40, 60].tolist() == [200, 180, 160]


def test_apply_delta_rebuilds_map(fisheye_params):
  engine = ProjectionEngine(fisheye_params)
  before = engine.get_map()

  assert engine.apply_delta(ParameterDelta(k1=0.2, focal_expansion=4.0))

  after = engine.get_map()
  assert after is not before
  assert engine.params.distortion[0] == 0.2
  assert engine.focal_expansion == 4.0
  assert after.focal_expansion == 4.0


def test_apply_delta_without_change(fisheye_params):
  engine = ProjectionEngine(fisheye_params)

  assert not engine.apply_delta(ParameterDelta())
  assert not engine.apply_delta(ParameterDelta(k1=0.01, focal_expansion=2.5))


def test_apply_delta_rejects_bad_expansion(fisheye_params):
  engine = ProjectionEngine(fisheye_params)

  with pytest.raises(ValueError):
    engine.apply_delta(ParameterDelta(focal_expansion=-1.0))
  assert engine.focal_expansion == 2.5


def test_poll_tuning_drains_queue(fisheye_params):
  engine = ProjectionEngine(fisheye_params)
  engine.tuning.put(ParameterDelta(k2=0.05))
  engine.tuning.put(ParameterDelta(output_size=(100, 60)))

  assert engine.poll_tuning()
  assert engine.tuning.empty()
  assert engine.params.distortion[1] == 0.05
  assert engine.get_map().output_size == (100, 60)
  assert not engine.poll_tuning()


def test_undistorted_camera_at_unit_expansion_is_identity_near_centre():
  params = FisheyeParams('ideal', 64, 64, 0.0, (0.0, 0.0, 0.0, 0.0), (30.0, 30.0, 32.0, 32.0))

  rect_map = build_map(params, (64, 64), 1.0)

  rows, cols = np.mgrid[29:36, 29:36]
  np.testing.assert_allclose(rect_map.map_x[29:36, 29:36], cols, atol=0.5)
  np.testing.assert_allclose(rect_map.map_y[29:36, 29:36], rows, atol=0.5)

  gradient = np.tile(np.arange(64, dtype=np.uint8) * 4, (64, 1))
  result = apply_rectification_map(rect_map, gradient)
  assert abs(int(result[32, 32]) - int(gradient[32, 32])) <= 2
