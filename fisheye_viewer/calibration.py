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

import os
from typing import Dict, List, Optional

import numpy as np

from .exceptions import CalibrationError

CAMERA_NAMES = ['image_00', 'image_01', 'image_02', 'image_03']
PERSPECTIVE_PARAMS = ['P_rect_00', 'R_rect_00', 'P_rect_01', 'R_rect_01']


def check_file(filename: str) -> None:
  """
  Check that a calibration file exists and is readable.

  Raises:
  CalibrationError if the file does not exist.
  """
  if not os.path.isfile(filename) or not os.access(filename, os.R_OK):
    raise CalibrationError(f"{filename} does not exist!", filename)


def _to_homogeneous(matrix_3x4: np.ndarray) -> np.ndarray:
  transform = np.eye(4, dtype=np.float64)
  transform[:3, :] = matrix_3x4
  return transform


def read_variable(lines: List[str], name: str, rows: int, cols: int) -> Optional[np.ndarray]:
  """
  Read a named matrix from KITTI-360 style 'name: v1 v2 ...' lines.

  Parameters:
  - lines: file content split into lines
  - name: variable name, matched at the start of a line followed by ':'
  - rows, cols: expected matrix shape

  Returns:
  rows x cols float64 array, or None if the variable is not present.

  Raises:
  CalibrationError if the number of values does not match rows * cols.
  """
  prefix = name + ':'
  for line in lines:
    if not line.startswith(prefix):
      continue
    try:
      values = [float(v) for v in line[len(prefix):].split()]
    except ValueError as e:
      raise CalibrationError(f"Invalid value for {name}: {e}")
    if len(values) != rows * cols:
      raise CalibrationError(f"Expected {rows * cols} values, got {len(values)}")
    return np.array(values, dtype=np.float64).reshape(rows, cols)
  return None


def _read_lines(filename: str) -> List[str]:
  check_file(filename)
  with open(filename, 'r') as f:
    return f.read().splitlines()


def load_calibration_camera_to_pose(filename: str) -> Dict[str, np.ndarray]:
  """
  Load camera to pose transformations (calib_cam_to_pose.txt).

  Returns:
  Dictionary mapping camera names (image_00 .. image_03) to 4x4 homogeneous
  transforms. Cameras missing from the file are left out.
  """
  lines = _read_lines(filename)
  transforms = {}
  for camera in CAMERA_NAMES:
    matrix = read_variable(lines, camera, 3, 4)
    if matrix is not None:
      transforms[camera] = _to_homogeneous(matrix)
  return transforms


def load_calibration_rigid(filename: str) -> np.ndarray:
  """
  Load a rigid body transformation stored as 12 whitespace separated values
  (e.g. calib_cam_to_velo.txt).

  Returns:
  4x4 homogeneous transformation matrix.
  """
  check_file(filename)
  with open(filename, 'r') as f:
    tokens = f.read().split()

  try:
    values = [float(v) for v in tokens]
  except ValueError as e:
    raise CalibrationError(f"Invalid value in '{filename}': {e}", filename)

  if len(values) != 12:
    raise CalibrationError(f"Expected 12 values for rigid transformation, got {len(values)}", filename)

  return _to_homogeneous(np.array(values, dtype=np.float64).reshape(3, 4))


def load_perspective_intrinsic(filename: str) -> Dict[str, np.ndarray]:
  """
  Load rectified perspective camera intrinsics (perspective.txt).

  Returns:
  Dictionary with P_rect_0x as 4x4 homogeneous matrices and R_rect_0x as 3x3
  rotation matrices, for the entries present in the file.
  """
  lines = _read_lines(filename)
  intrinsics = {}
  for param in PERSPECTIVE_PARAMS:
    if param.startswith('P_rect'):
      matrix = read_variable(lines, param, 3, 4)
      if matrix is not None:
        intrinsics[param] = _to_homogeneous(matrix)
    else:
      matrix = read_variable(lines, param, 3, 3)
      if matrix is not None:
        intrinsics[param] = matrix
  return intrinsics
