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

from typing import Optional, Tuple

import cv2
import numpy as np

from .camera_params import FisheyeParams, parse_fisheye_params
from .load_scheduler import decode_image
from .log_utils import get_logger
from .projection import DEFAULT_FOCAL_EXPANSION, ProjectionEngine

logger = get_logger(__name__)

ORIGINAL_LABEL = "ORIGINAL FISHEYE"
UNDISTORTED_LABEL = "UNDISTORTED (UNWRAPPED)"
ORIGINAL_COLOR = (0, 255, 255)
UNDISTORTED_COLOR = (0, 255, 0)


def label_image(img: np.ndarray, text: str, color: Tuple[int, int, int],
                origin: Tuple[int, int] = (30, 40)) -> np.ndarray:
  """Copy of img with a caption drawn at origin."""
  labeled = img.copy()
  cv2.putText(labeled, text, origin, cv2.FONT_HERSHEY_SIMPLEX, 1.0, color, 2)
  return labeled


def build_comparison(original: np.ndarray, undistorted: np.ndarray) -> np.ndarray:
  """
  Stack the original (top) and undistorted (bottom) images at a common width,
  captioned and separated by a white line.
  """
  width = max(original.shape[1], undistorted.shape[1])

  def to_width(img: np.ndarray) -> np.ndarray:
    height = max(1, img.shape[0] * width // img.shape[1])
    return cv2.resize(img, (width, height))

  top = to_width(original)
  bottom = to_width(undistorted)
  if top.ndim != bottom.ndim:
    top = cv2.cvtColor(top, cv2.COLOR_GRAY2BGR) if top.ndim == 2 else top
    bottom = cv2.cvtColor(bottom, cv2.COLOR_GRAY2BGR) if bottom.ndim == 2 else bottom

  comparison = np.vstack([top, bottom])
  cv2.putText(comparison, ORIGINAL_LABEL, (30, 40),
              cv2.FONT_HERSHEY_SIMPLEX, 1.0, ORIGINAL_COLOR, 2)
  cv2.putText(comparison, UNDISTORTED_LABEL, (30, top.shape[0] + 40),
              cv2.FONT_HERSHEY_SIMPLEX, 1.0, UNDISTORTED_COLOR, 2)
  cv2.line(comparison, (0, top.shape[0]), (width, top.shape[0]), (255, 255, 255), 3)
  return comparison


def log_calibration(params: FisheyeParams) -> None:
  k1, k2, k3, k4 = params.distortion
  logger.info("Camera: %s", params.camera_name)
  logger.info("Image size: %dx%d", params.image_width, params.image_height)
  logger.info("Xi parameter (mirror): %s", params.xi)
  logger.info("Distortion (k1, k2, k3<-p1, k4<-p2): %s, %s, %s, %s", k1, k2, k3, k4)
  logger.info("Projection: fx=%s fy=%s cx=%s cy=%s", params.fx, params.fy, params.cx, params.cy)


def undistort_file(image_path: str, calibration_path: str,
                   focal_expansion: float = DEFAULT_FOCAL_EXPANSION,
                   output_size: Optional[Tuple[int, int]] = None
                   ) -> Tuple[np.ndarray, np.ndarray, ProjectionEngine]:
  """
  Load a calibration and an image and rectify the image.

  Unlike the dataset viewer there is no raw fallback: calibration and decode
  errors propagate to the caller.

  Returns:
  - (original, undistorted, engine)

  Raises:
  - CalibrationError, DecodeError, ProjectionNumericError
  """
  params = parse_fisheye_params(calibration_path)
  logger.info("Loaded calibration file: %s", calibration_path)
  log_calibration(params)

  engine = ProjectionEngine(params, output_size=output_size, focal_expansion=focal_expansion)
  rect_map = engine.get_map()
  logger.info("Input image size %dx%d, output size %dx%d (%s model)",
              params.image_width, params.image_height,
              rect_map.output_size[0], rect_map.output_size[1], rect_map.model)

  original = decode_image(image_path)
  height, width = original.shape[:2]
  if (width, height) != params.get_image_size():
    logger.warning("Image size (%dx%d) doesn't match calibration size (%dx%d)",
                   width, height, params.image_width, params.image_height)

  undistorted = engine.apply(original)
  return original, undistorted, engine
