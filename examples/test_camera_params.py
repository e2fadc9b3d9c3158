import numpy as np
import pytest

from fisheye_viewer.camera_params import FisheyeParams, parse_fisheye_params
from fisheye_viewer.exceptions import CalibrationError

from .conftest import write_mei_calibration

KITTI_IMAGE_02 = """%YAML:1.0
---
model_type: MEI
camera_name: image_02
image_width: 1400
image_height: 1400
mirror_parameters:
   xi: 2.2134047507854890e+00
distortion_parameters:
   k1: 1.6798235660113681e-02
   k2: 1.6548773243373522e+00
   p1: 4.2223943394772046e-04
   p2: 4.2462134260997584e-04
projection_parameters:
   gamma1: 1.3363220825849971e+03
   gamma2: 1.3357883350012958e+03
   u0: 7.1694323510126321e+02
   v0: 7.0576498308221585e+02
"""


def test_parse_kitti360_mei_file(tmp_path):
  path = tmp_path / 'image_02.yaml'
  path.write_text(KITTI_IMAGE_02)

  params = parse_fisheye_params(str(path))

  assert params.camera_name == 'image_02'
  assert params.get_image_size() == (1400, 1400)
  assert params.xi == pytest.approx(2.2134047507854890)
  assert params.fx == pytest.approx(1336.3220825849971)
  assert params.fy == pytest.approx(1335.7883350012958)
  assert params.cx == pytest.approx(716.94323510126321)
  assert params.cy == pytest.approx(705.76498308221585)


def test_p1_p2_become_k3_k4(tmp_path):
  path = write_mei_calibration(tmp_path / 'cam.yaml', k1=0.1, k2=0.2, p1=0.3, p2=0.4)

  params = parse_fisheye_params(path)

  assert params.distortion == (0.1, 0.2, 0.3, 0.4)
  np.testing.assert_allclose(params.get_distortion_coefficients(), [0.1, 0.2, 0.3, 0.4])


def test_camera_matrix_layout(fisheye_params):
  K = fisheye_params.get_camera_matrix()

  assert K.shape == (3, 3)
  np.testing.assert_allclose(K, [[30.0, 0, 32.0], [0, 30.0, 32.0], [0, 0, 1]])


def test_camera_name_defaults_to_file_stem(tmp_path):
  path = tmp_path / 'image_03.yaml'
  write_mei_calibration(tmp_path / 'tmp.yaml')
  content = (tmp_path / 'tmp.yaml').read_text().replace('camera_name: image_02\n', '')
  path.write_text(content)

  assert parse_fisheye_params(str(path)).camera_name == 'image_03'


def test_opencv_intrinsics_layout(tmp_path):
  path = tmp_path / 'intrinsics.yaml'
  path.write_text(
    "image_width: 640\n"
    "image_height: 480\n"
    "camera_matrix:\n"
    "  data: [300.0, 0.0, 320.0, 0.0, 310.0, 240.0, 0.0, 0.0, 1.0]\n"
    "distortion_coefficients:\n"
    "  data: [0.1, 0.01, 0.001, 0.0001]\n")

  params = parse_fisheye_params(str(path))

  assert params.projection == (300.0, 310.0, 320.0, 240.0)
  assert params.distortion == (0.1, 0.01, 0.001, 0.0001)
  assert params.xi == 0.0


def test_missing_file_raises(tmp_path):
  with pytest.raises(CalibrationError) as excinfo:
    parse_fisheye_params(str(tmp_path / 'nope.yaml'))
  assert excinfo.value.filename == str(tmp_path / 'nope.yaml')


def test_missing_key_raises(tmp_path):
  path = tmp_path / 'cam.yaml'
  path.write_text(KITTI_IMAGE_02.replace('   gamma2: 1.3357883350012958e+03\n', ''))

  with pytest.raises(CalibrationError, match='gamma2'):
    parse_fisheye_params(str(path))


def test_invalid_yaml_raises(tmp_path):
  path = tmp_path / 'cam.yaml'
  path.write_text("camera_matrix: {data: [1, 2\n")

  with pytest.raises(CalibrationError):
    parse_fisheye_params(str(path))


def test_non_mapping_raises(tmp_path):
  path = tmp_path / 'cam.yaml'
  path.write_text("- 1\n- 2\n")

  with pytest.raises(CalibrationError):
    parse_fisheye_params(str(path))


def test_calibration_error_is_value_error(tmp_path):
  path = write_mei_calibration(tmp_path / 'cam.yaml', gamma1=-5.0)

  with pytest.raises(ValueError, match='focal'):
    parse_fisheye_params(path)


def test_validate_rejects_bad_values():
  with pytest.raises(CalibrationError):
    FisheyeParams('cam', 0, 64, 1.0, (0, 0, 0, 0), (30, 30, 32, 32)).validate()
  with pytest.raises(CalibrationError):
    FisheyeParams('cam', 64, 64, 1.0, (float('nan'), 0, 0, 0), (30, 30, 32, 32)).validate()
  with pytest.raises(CalibrationError, match='Principal point'):
    FisheyeParams('cam', 64, 64, 1.0, (0, 0, 0, 0), (30, 30, 100, 32)).validate()


def test_with_distortion_replaces_selected_coefficients(fisheye_params):
  updated = fisheye_params.with_distortion(k2=0.5, k4=-0.25)

  assert updated.distortion == (0.01, 0.5, 0.0, -0.25)
  assert fisheye_params.distortion == (0.01, 0.001, 0.0, 0.0)
  assert updated.projection == fisheye_params.projection


def test_params_are_hashable(fisheye_params):
  same = FisheyeParams('test_cam', 64, 64, 1.0, [0.01, 0.001, 0, 0], [30, 30, 32, 32])

  assert hash(same) == hash(fisheye_params)
  assert same == fisheye_params
