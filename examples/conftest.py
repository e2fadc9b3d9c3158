"""
Shared fixtures: small synthetic fisheye frames and KITTI-360 style
calibration files written to a temporary directory.
"""

import logging

import cv2
import numpy as np
import pytest

from fisheye_viewer.camera_params import FisheyeParams
from fisheye_viewer.dataset import Dataset
from fisheye_viewer.log_utils import ROOT_LOGGER_NAME

MEI_TEMPLATE = """%YAML:1.0
---
model_type: MEI
camera_name: {camera_name}
image_width: {width}
image_height: {height}
mirror_parameters:
   xi: {xi}
distortion_parameters:
   k1: {k1}
   k2: {k2}
   p1: {p1}
   p2: {p2}
projection_parameters:
   gamma1: {gamma1}
   gamma2: {gamma2}
   u0: {u0}
   v0: {v0}
"""


def write_mei_calibration(path, width=64, height=64, **overrides):
  values = dict(camera_name='image_02', width=width, height=height, xi=1.0,
                k1=0.01, k2=0.001, p1=0.0, p2=0.0,
                gamma1=30.0, gamma2=30.0, u0=width / 2.0, v0=height / 2.0)
  values.update(overrides)
  path.write_text(MEI_TEMPLATE.format(**values))
  return str(path)


def make_fisheye_frame(width=64, height=64):
  """Grey frame with a bright disc, like the image circle of a fisheye lens."""
  frame = np.full((height, width, 3), 20, dtype=np.uint8)
  cv2.circle(frame, (width // 2, height // 2), min(width, height) // 2 - 2, (200, 180, 160), -1)
  return frame


def make_dataset(size, eye_count=1):
  base_names = tuple(f"{index:04d}" for index in range(size))
  paths = tuple(tuple(f"eye{eye}/{name}.png" for eye in range(eye_count)) for name in base_names)
  directories = tuple(f"eye{eye}" for eye in range(eye_count))
  return Dataset(base_names, paths, directories)


@pytest.fixture
def calibration_file(tmp_path):
  return write_mei_calibration(tmp_path / 'image_02.yaml')


@pytest.fixture
def fisheye_params():
  return FisheyeParams('test_cam', 64, 64, 1.0, (0.01, 0.001, 0.0, 0.0), (30.0, 30.0, 32.0, 32.0))


@pytest.fixture
def image_file(tmp_path):
  path = tmp_path / 'frame.png'
  cv2.imwrite(str(path), make_fisheye_frame())
  return str(path)


@pytest.fixture(autouse=True)
def reset_package_logger():
  yield
  logger = logging.getLogger(ROOT_LOGGER_NAME)
  for handler in list(logger.handlers):
    if getattr(handler, '_fisheye_viewer_handler', False):
      logger.removeHandler(handler)
  logger.setLevel(logging.NOTSET)
