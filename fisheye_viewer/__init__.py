"""
Fisheye Dataset Viewer Core Modules

This package contains the core of the fisheye dataset viewer:
- Calibration parsing and validation, KITTI-360 calibration text files
- Fisheye-to-flat projection (rectification maps, remap, display scaling)
- Thread-safe image cache and background loading scheduler
- Dataset scanning and stereo matching
"""

from .calibration import (load_calibration_camera_to_pose, load_calibration_rigid,
                          load_perspective_intrinsic)
from .camera_params import FisheyeParams, parse_fisheye_params
from .config import ViewerConfig, load_config
from .dataset import Dataset, load_dataset
from .exceptions import (CalibrationError, DecodeError, FisheyeViewerError,
                         IndexOutOfRangeError, ProjectionNumericError, SetupError)
from .image_cache import DecodeState, ImageCache
from .load_scheduler import FramePipeline, LoadScheduler
from .map_cache import MapCache
from .projection import (ParameterDelta, ProjectionEngine, RectificationMap,
                         apply_rectification_map, build_map, scale_for_display)

__version__ = '0.1.0'

__all__ = [
  'FisheyeParams',
  'parse_fisheye_params',
  'load_calibration_camera_to_pose',
  'load_calibration_rigid',
  'load_perspective_intrinsic',
  'ViewerConfig',
  'load_config',
  'Dataset',
  'load_dataset',
  'FisheyeViewerError',
  'SetupError',
  'CalibrationError',
  'DecodeError',
  'ProjectionNumericError',
  'IndexOutOfRangeError',
  'DecodeState',
  'ImageCache',
  'FramePipeline',
  'LoadScheduler',
  'MapCache',
  'ParameterDelta',
  'ProjectionEngine',
  'RectificationMap',
  'apply_rectification_map',
  'build_map',
  'scale_for_display'
]
