"""
MIT License

Copyright (c) 2025 Pan Yu

Permission is hereby granted, free of charge, to any person obtaining a copy
of this software and associated documentation files (the "Software"), to deal
in the Software without restriction, including without limitation the rights
to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
copies of the Software, and to permit persons to whom the Software is
furnished to do so, subject to the following conditions:

The above copyright notice and this permission notice shall be included in all
copies or substantial portions of the Software.

THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
SOFTWARE.

Author: Pan Yu
"""

import math
import os
from dataclasses import dataclass, replace
from typing import Optional, Tuple

import numpy as np
import yaml

from .exceptions import CalibrationError


@dataclass(frozen=True)
class FisheyeParams:
  """
  Calibration of one fisheye camera.

  The record follows the MEI omnidirectional calibration files shipped with
  KITTI-360 (image_02.yaml, image_03.yaml). The four MEI distortion values
  (k1, k2, p1, p2) are consumed as the four coefficients (k1, k2, k3, k4) of
  the OpenCV fisheye model, i.e. p1 -> k3 and p2 -> k4.

  Attributes:
  - camera_name: camera identifier (e.g. 'image_02')
  - image_width, image_height: calibrated image size in pixels
  - xi: mirror parameter of the unified camera model
  - distortion: (k1, k2, k3, k4)
  - projection: (fx, fy, cx, cy), i.e. (gamma1, gamma2, u0, v0)
  """

  camera_name: str
  image_width: int
  image_height: int
  xi: float
  distortion: Tuple[float, float, float, float]
  projection: Tuple[float, float, float, float]

  def __post_init__(self) -> None:
    # Normalise sequences to float tuples so the record stays hashable
    object.__setattr__(self, 'distortion', tuple(float(v) for v in self.distortion))
    object.__setattr__(self, 'projection', tuple(float(v) for v in self.projection))

  @property
  def fx(self) -> float:
    return self.projection[0]

  @property
  def fy(self) -> float:
    return self.projection[1]

  @property
  def cx(self) -> float:
    return self.projection[2]

  @property
  def cy(self) -> float:
    return self.projection[3]

  def get_camera_matrix(self) -> np.ndarray:
    """
    Get OpenCV camera matrix K.

    Returns:
    3x3 numpy array representing the camera intrinsic matrix.
    """
    return np.array([
      [self.fx, 0, self.cx],
      [0, self.fy, self.cy],
      [0, 0, 1]
    ], dtype=np.float64)

  def get_distortion_coefficients(self) -> np.ndarray:
    """
    Get fisheye distortion coefficients.

    Returns:
    4-element numpy array [k1, k2, k3, k4]. All four calibration values are
    used, nothing is zeroed.
    """
    return np.array(self.distortion, dtype=np.float64)

  def get_image_size(self) -> Tuple[int, int]:
    """Get image dimensions as (width, height)."""
    return (self.image_width, self.image_height)

  def with_distortion(self, k1: Optional[float] = None, k2: Optional[float] = None,
                      k3: Optional[float] = None, k4: Optional[float] = None) -> 'FisheyeParams':
    """Return a copy with some distortion coefficients replaced."""
    current = self.distortion
    updated = tuple(current[i] if value is None else float(value)
                    for i, value in enumerate((k1, k2, k3, k4)))
    return replace(self, distortion=updated)

  def validate(self) -> None:
    """
    Validate camera parameters for reasonable ranges.

    Raises:
    CalibrationError if any parameter is invalid or out of reasonable range.
    """
    if self.image_width <= 0 or self.image_height <= 0:
      raise CalibrationError(f"Invalid image dimensions: {self.image_width}x{self.image_height}")

    if len(self.distortion) != 4 or len(self.projection) != 4:
      raise CalibrationError("Distortion and projection parameters must have 4 elements each")

    if not all(math.isfinite(v) for v in self.distortion + self.projection + (self.xi,)):
      raise CalibrationError(f"Non-finite calibration values in {self}")

    if self.fx <= 0 or self.fy <= 0:
      raise CalibrationError(f"Invalid focal lengths: fx={self.fx}, fy={self.fy}")

    if not (0 <= self.cx <= self.image_width) or not (0 <= self.cy <= self.image_height):
      raise CalibrationError(f"Principal point outside image bounds: cx={self.cx}, cy={self.cy}")

  def __str__(self) -> str:
    k1, k2, k3, k4 = self.distortion
    return (f"FisheyeParams(name={self.camera_name}, "
            f"size={self.image_width}x{self.image_height}, xi={self.xi:.6f}, "
            f"fx={self.fx:.1f}, fy={self.fy:.1f}, "
            f"cx={self.cx:.1f}, cy={self.cy:.1f}, "
            f"k1={k1:.6f}, k2={k2:.6f}, k3={k3:.6f}, k4={k4:.6f})")


def _strip_opencv_directive(text: str) -> str:
  # OpenCV FileStorage writes '%YAML:1.0', which is not a valid YAML directive
  lines = text.splitlines()
  while lines and (lines[0].startswith('%YAML') or lines[0].strip() == '---'):
    lines.pop(0)
  return '\n'.join(lines)


def _params_from_mei(data: dict, default_name: str) -> FisheyeParams:
  distortion = data['distortion_parameters']
  projection = data['projection_parameters']
  return FisheyeParams(
    camera_name=str(data.get('camera_name', default_name)),
    image_width=int(data['image_width']),
    image_height=int(data['image_height']),
    xi=float(data['mirror_parameters']['xi']),
    distortion=(distortion['k1'], distortion['k2'], distortion['p1'], distortion['p2']),
    projection=(projection['gamma1'], projection['gamma2'], projection['u0'], projection['v0'])
  )


def _params_from_opencv_intrinsics(data: dict, default_name: str) -> FisheyeParams:
  # Camera matrix is stored row-wise: [fx, 0, cx, 0, fy, cy, 0, 0, 1]
  camera_matrix_data = data['camera_matrix']['data']
  if len(camera_matrix_data) != 9:
    raise ValueError("Camera matrix must have 9 elements")

  distortion_data = data['distortion_coefficients']['data']
  if len(distortion_data) != 4:
    raise ValueError("Fisheye distortion coefficients must have 4 elements")

  return FisheyeParams(
    camera_name=str(data.get('camera_name', default_name)),
    image_width=int(data['image_width']),
    image_height=int(data['image_height']),
    xi=float(data.get('xi', 0.0)),
    distortion=tuple(distortion_data),
    projection=(camera_matrix_data[0], camera_matrix_data[4],
                camera_matrix_data[2], camera_matrix_data[5])
  )


def parse_fisheye_params(filename: str) -> FisheyeParams:
  """
  Parse fisheye calibration from a YAML file.

  Two layouts are accepted:
  - MEI model files (KITTI-360 image_0x.yaml) with mirror_parameters,
    distortion_parameters (k1, k2, p1, p2) and projection_parameters
    (gamma1, gamma2, u0, v0)
  - OpenCV intrinsics files with camera_matrix.data and
    distortion_coefficients.data (xi defaults to 0)

  Parameters:
  - filename: path to the YAML calibration file

  Returns:
  FisheyeParams with validated values.

  Raises:
  CalibrationError if the file is missing, not valid YAML, or parameters are
  missing or invalid.
  """
  try:
    with open(filename, 'r') as f:
      text = f.read()
  except FileNotFoundError:
    raise CalibrationError(f"Calibration file not found: {filename}", filename)
  except OSError as e:
    raise CalibrationError(f"Cannot read calibration file '{filename}': {e}", filename)

  try:
    data = yaml.safe_load(_strip_opencv_directive(text))
  except yaml.YAMLError as e:
    raise CalibrationError(f"Invalid YAML format in file '{filename}': {e}", filename)

  if not isinstance(data, dict):
    raise CalibrationError(f"Calibration file '{filename}' does not contain a mapping", filename)

  default_name = os.path.splitext(os.path.basename(filename))[0]
  try:
    if 'projection_parameters' in data:
      params = _params_from_mei(data, default_name)
    else:
      params = _params_from_opencv_intrinsics(data, default_name)
  except KeyError as e:
    raise CalibrationError(f"Missing required parameter in '{filename}': {e}", filename)
  except (TypeError, ValueError) as e:
    raise CalibrationError(f"Invalid parameter format in '{filename}': {e}", filename)

  params.validate()
  return params
