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

import queue
import threading
import time
from dataclasses import dataclass
from typing import Optional, Tuple

import cv2
import numpy as np

from .camera_params import FisheyeParams
from .exceptions import ProjectionNumericError
from .log_utils import get_logger
from .map_cache import MapCache

logger = get_logger(__name__)

# Map value for output pixels without a source coordinate
MAP_SENTINEL = -1.0

DEFAULT_FOCAL_EXPANSION = 2.5

# A ~180 degree fisheye needs a wider than tall canvas once flattened
OUTPUT_WIDTH_SCALE = 2.5
OUTPUT_HEIGHT_SCALE = 1.5


class RectificationMap:
  """
  Per-output-pixel source coordinates for resampling a raw fisheye frame.

  map_x[v, u] and map_y[v, u] hold the sub-pixel source position of output
  pixel (u, v), or MAP_SENTINEL where the inverse projection is undefined.
  The arrays are read-only once built.
  """

  def __init__(self, map_x: np.ndarray, map_y: np.ndarray, focal_expansion: float, model: str):
    if map_x.shape != map_y.shape:
      raise ValueError(f"map_x {map_x.shape} and map_y {map_y.shape} differ in shape")
    map_x.setflags(write=False)
    map_y.setflags(write=False)
    self.map_x = map_x
    self.map_y = map_y
    self.focal_expansion = focal_expansion
    self.model = model

  @property
  def output_size(self) -> Tuple[int, int]:
    """(width, height) of the rectified output."""
    height, width = self.map_x.shape
    return (width, height)

  @property
  def nbytes(self) -> int:
    return self.map_x.nbytes + self.map_y.nbytes

  def valid_mask(self) -> np.ndarray:
    """Boolean mask of output pixels that have a source coordinate."""
    return (self.map_x != MAP_SENTINEL) & (self.map_y != MAP_SENTINEL)

  def __repr__(self) -> str:
    width, height = self.output_size
    return (f"RectificationMap({width}x{height}, model={self.model}, "
            f"focal_expansion={self.focal_expansion})")


@dataclass(frozen=True)
class ParameterDelta:
  """
  Tuning message posted from a UI to a ProjectionEngine.

  Values are absolute; None leaves the current value unchanged.
  """
  k1: Optional[float] = None
  k2: Optional[float] = None
  k3: Optional[float] = None
  k4: Optional[float] = None
  focal_expansion: Optional[float] = None
  output_size: Optional[Tuple[int, int]] = None

  def is_empty(self) -> bool:
    return all(value is None for value in (self.k1, self.k2, self.k3, self.k4,
                                           self.focal_expansion, self.output_size))


def default_output_size(params: FisheyeParams) -> Tuple[int, int]:
  """Unwrapped panorama size for a calibrated camera: 2.5x wider, 1.5x taller."""
  return (int(params.image_width * OUTPUT_WIDTH_SCALE),
          int(params.image_height * OUTPUT_HEIGHT_SCALE))


def target_camera_matrix(params: FisheyeParams, output_size: Tuple[int, int],
                         focal_expansion: float) -> np.ndarray:
  """
  Intrinsics of the flat output view: principal point at the centre of the
  output, focal lengths expanded to stretch the compressed fisheye periphery.
  """
  output_width, output_height = output_size
  new_K = params.get_camera_matrix()
  new_K[0, 2] = output_width / 2.0
  new_K[1, 2] = output_height / 2.0
  new_K[0, 0] *= focal_expansion
  new_K[1, 1] *= focal_expansion
  return new_K


def _finalize_maps(map_x: np.ndarray, map_y: np.ndarray) -> Tuple[np.ndarray, np.ndarray, int]:
  finite = np.isfinite(map_x) & np.isfinite(map_y)
  map_x = np.where(finite, map_x, MAP_SENTINEL).astype(np.float32)
  map_y = np.where(finite, map_y, MAP_SENTINEL).astype(np.float32)
  return map_x, map_y, int(np.count_nonzero(finite))


def build_map(params: FisheyeParams, output_size: Tuple[int, int],
              focal_expansion: float = DEFAULT_FOCAL_EXPANSION) -> RectificationMap:
  """
  Build the rectification map turning a fisheye frame into a flat panorama.

  The fisheye (equidistant) model is inverted first. If OpenCV rejects the
  coefficients, or the result holds no usable coordinate, the generic
  pinhole undistortion is used with the same matrices instead.

  Parameters:
  - params: camera calibration
  - output_size: (width, height) of the rectified image
  - focal_expansion: multiplier on the calibrated focal lengths; 2.5-8 turns
    a ~180 degree fisheye into a usable panorama, larger is flatter but crops
    more of the periphery

  Returns:
  - RectificationMap of exactly output_size

  Raises:
  - ValueError for a non-positive output size or expansion
  - ProjectionNumericError if both models fail
  """
  output_width, output_height = int(output_size[0]), int(output_size[1])
  if output_width <= 0 or output_height <= 0:
    raise ValueError(f"Invalid output size: {output_width}x{output_height}")
  if focal_expansion <= 0:
    raise ValueError(f"focal_expansion must be positive, got {focal_expansion}")

  start_time = time.time()

  K = params.get_camera_matrix()
  D = params.get_distortion_coefficients().reshape(4, 1)
  R = np.eye(3, dtype=np.float64)
  new_K = target_camera_matrix(params, (output_width, output_height), focal_expansion)
  size = (output_width, output_height)

  logger.debug("Building %dx%d map for %s (focal expansion %.2f)",
               output_width, output_height, params.camera_name, focal_expansion)

  model = 'fisheye'
  try:
    map_x, map_y = cv2.fisheye.initUndistortRectifyMap(K, D, R, new_K, size, cv2.CV_32FC1)
    map_x, map_y, valid = _finalize_maps(map_x, map_y)
    if valid == 0:
      raise ProjectionNumericError("fisheye inverse mapping produced no finite coordinates")
  except (cv2.error, ProjectionNumericError) as e:
    logger.warning("Fisheye map failed for %s (%s); falling back to pinhole undistortion",
                   params.camera_name, e)
    model = 'pinhole'
    try:
      map_x, map_y = cv2.initUndistortRectifyMap(K, D, R, new_K, size, cv2.CV_32FC1)
    except cv2.error as fallback_error:
      raise ProjectionNumericError(
        f"Could not build rectification map for {params.camera_name}: {fallback_error}")
    map_x, map_y, valid = _finalize_maps(map_x, map_y)
    if valid == 0:
      raise ProjectionNumericError(
        f"Pinhole fallback produced no finite coordinates for {params.camera_name}")

  elapsed = time.time() - start_time
  logger.debug("Map generation (%s) took %.4f seconds", model, elapsed)

  return RectificationMap(map_x, map_y, focal_expansion, model)


def apply_rectification_map(rect_map: RectificationMap, frame: np.ndarray) -> np.ndarray:
  """
  Resample a frame through a rectification map.

  Bilinear interpolation; output pixels whose source lies outside the frame
  are black. The result always has the map's output size, whatever the
  frame size.
  """
  if frame is None:
    raise ValueError("Input image is None")

  start_time = time.time()
  result = cv2.remap(frame, rect_map.map_x, rect_map.map_y, cv2.INTER_LINEAR,
                     borderMode=cv2.BORDER_CONSTANT, borderValue=0)
  logger.debug("Remap to %dx%d took %.4f seconds",
               rect_map.output_size[0], rect_map.output_size[1], time.time() - start_time)
  return result


def scale_for_display(frame: np.ndarray, target_max_size: int) -> np.ndarray:
  """
  Shrink a frame so its largest dimension fits target_max_size.

  Aspect ratio is preserved and frames are never enlarged: a frame already
  within budget is returned unchanged.
  """
  if target_max_size <= 0:
    raise ValueError(f"target_max_size must be positive, got {target_max_size}")

  height, width = frame.shape[:2]
  scale = min(1.0, target_max_size / float(max(width, height)))
  if scale >= 1.0:
    return frame

  new_width = max(1, int(round(width * scale)))
  new_height = max(1, int(round(height * scale)))
  return cv2.resize(frame, (new_width, new_height), interpolation=cv2.INTER_AREA)


class ProjectionEngine:
  """
  Fisheye-to-flat projection for one camera.

  Owns the current calibration, output size and focal expansion, looks maps
  up in a (possibly shared) MapCache, and applies them to raw frames. Frames
  may be projected from any thread; tuning messages are applied by whichever
  thread calls poll_tuning().
  """

  def __init__(self, params: FisheyeParams, output_size: Optional[Tuple[int, int]] = None,
               focal_expansion: float = DEFAULT_FOCAL_EXPANSION,
               map_cache: Optional[MapCache] = None):
    """
    Parameters:
    - params: calibration of the camera
    - output_size: (width, height) of rectified frames, defaults to default_output_size(params)
    - focal_expansion: focal length multiplier of the flat view
    - map_cache: optional shared cache. If None, creates a new one.
    """
    self._params = params
    self._output_size = tuple(output_size) if output_size is not None else default_output_size(params)
    self._focal_expansion = float(focal_expansion)
    self.map_cache = map_cache if map_cache is not None else MapCache()
    self.tuning: 'queue.Queue[ParameterDelta]' = queue.Queue()
    self._lock = threading.Lock()

  @property
  def params(self) -> FisheyeParams:
    return self._params

  @property
  def output_size(self) -> Tuple[int, int]:
    return self._output_size

  @property
  def focal_expansion(self) -> float:
    return self._focal_expansion

  def _cache_key(self):
    return (self._params, self._output_size, self._focal_expansion)

  def get_map(self) -> RectificationMap:
    """Current rectification map, built on first use and cached."""
    with self._lock:
      key = self._cache_key()
      rect_map = self.map_cache.get(key)
      if rect_map is None:
        rect_map = build_map(self._params, self._output_size, self._focal_expansion)
        self.map_cache.put(key, rect_map)
        logger.info("Built %r for %s", rect_map, self._params.camera_name)
      return rect_map

  def build_map(self, params: FisheyeParams, output_size: Tuple[int, int],
                focal_expansion: float) -> RectificationMap:
    """Build (or fetch from the cache) a map for arbitrary inputs."""
    key = (params, tuple(output_size), float(focal_expansion))
    rect_map = self.map_cache.get(key)
    if rect_map is None:
      rect_map = build_map(params, output_size, focal_expansion)
      self.map_cache.put(key, rect_map)
    return rect_map

  def apply(self, frame: np.ndarray) -> np.ndarray:
    """Rectify a raw frame with the current map."""
    if frame is None:
      raise ValueError("Input image is None")
    height, width = frame.shape[:2]
    if (width, height) != self._params.get_image_size():
      logger.debug("Frame size %dx%d differs from calibration size %dx%d",
                   width, height, self._params.image_width, self._params.image_height)
    return apply_rectification_map(self.get_map(), frame)

  def apply_delta(self, delta: ParameterDelta) -> bool:
    """
    Apply one tuning message and rebuild the map synchronously.

    Returns:
    - True if any input of the map changed
    """
    if delta.is_empty():
      return False

    with self._lock:
      params = self._params.with_distortion(delta.k1, delta.k2, delta.k3, delta.k4)
      focal_expansion = self._focal_expansion
      if delta.focal_expansion is not None:
        if delta.focal_expansion <= 0:
          raise ValueError(f"focal_expansion must be positive, got {delta.focal_expansion}")
        focal_expansion = float(delta.focal_expansion)
      output_size = tuple(delta.output_size) if delta.output_size is not None else self._output_size

      changed = (params, output_size, focal_expansion) != self._cache_key()
      self._params = params
      self._output_size = output_size
      self._focal_expansion = focal_expansion

    if changed:
      logger.info("Projection retuned for %s: %s", params.camera_name, delta)
      self.get_map()
    return changed

  def poll_tuning(self) -> bool:
    """
    Drain pending tuning messages and rebuild the map if anything changed.

    Returns:
    - True if the map inputs changed
    """
    changed = False
    while True:
      try:
        delta = self.tuning.get_nowait()
      except queue.Empty:
        break
      changed = self.apply_delta(delta) or changed
    return changed
