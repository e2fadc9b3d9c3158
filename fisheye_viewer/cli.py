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

import argparse
import sys
from typing import List, Optional, Sequence

import cv2

from .camera_params import parse_fisheye_params
from .config import ViewerConfig, load_config
from .dataset import Dataset, load_dataset
from .exceptions import (CalibrationError, DecodeError, FisheyeViewerError,
                         ProjectionNumericError, SetupError)
from .load_scheduler import FramePipeline
from .log_utils import get_logger, setup_logging
from .map_cache import MapCache
from .projection import ProjectionEngine

logger = get_logger(__name__)


def build_viewer_parser() -> argparse.ArgumentParser:
  parser = argparse.ArgumentParser(
    prog='fisheye-viewer',
    description="Browse a directory of fisheye images, or two directories of "
                "stereo pairs matched by file name, optionally rectified.",
    epilog="Example: fisheye-viewer data/image_02 data/image_03 "
           "--calib calib/image_02.yaml --calib calib/image_03.yaml",
  )
  parser.add_argument('directories', nargs='+', metavar='DIR',
                      help="image directory, or left and right directories for stereo")
  parser.add_argument('--calib', action='append', default=[], metavar='FILE',
                      help="calibration YAML, once per eye in directory order; "
                           "frames are rectified when given")
  parser.add_argument('--config', metavar='FILE', help="YAML file with viewer settings")
  parser.add_argument('--workers', type=int, help="number of background loading threads")
  parser.add_argument('--initial-load', type=int, help="positions loaded before the window opens")
  parser.add_argument('--focal-expansion', type=float, help="focal length multiplier of the flat view")
  parser.add_argument('--retries', type=int, help="extra decode attempts for failing images")
  parser.add_argument('--yes', action='store_true',
                      help="load large datasets completely without asking")
  parser.add_argument('--log-level', default='INFO', help="logging level (default: INFO)")
  return parser


def build_undistort_parser() -> argparse.ArgumentParser:
  parser = argparse.ArgumentParser(
    prog='fisheye-undistort',
    description="Unwrap a single fisheye image into a flat panorama.",
    epilog="Example: fisheye-undistort frame.png --calib calib/image_02.yaml",
  )
  parser.add_argument('image', metavar='IMAGE', help="fisheye image to undistort")
  parser.add_argument('--calib', required=True, metavar='FILE', help="calibration YAML file")
  parser.add_argument('--focal-expansion', type=float, default=2.5,
                      help="focal length multiplier of the flat view (default: 2.5)")
  parser.add_argument('--output-size', type=int, nargs=2, metavar=('WIDTH', 'HEIGHT'),
                      help="output size, default 2.5x width and 1.5x height of the input")
  parser.add_argument('--output', metavar='PATH', help="write the undistorted image here")
  parser.add_argument('--no-display', action='store_true', help="do not open a window")
  parser.add_argument('--log-level', default='INFO', help="logging level (default: INFO)")
  return parser


def build_engines(calibration_paths: Sequence[str], eye_count: int, config: ViewerConfig,
                  map_cache: Optional[MapCache] = None) -> List[Optional[ProjectionEngine]]:
  """
  Create one ProjectionEngine per eye from calibration files.

  An eye whose calibration is missing, malformed, or whose map cannot be
  built gets None and is shown raw.
  """
  if len(calibration_paths) > eye_count:
    logger.warning("Got %d calibration files for %d eye(s); ignoring the extra ones",
                   len(calibration_paths), eye_count)

  map_cache = map_cache if map_cache is not None else MapCache(config.map_cache_mb)
  engines: List[Optional[ProjectionEngine]] = []
  for eye in range(eye_count):
    if eye >= len(calibration_paths):
      engines.append(None)
      continue
    path = calibration_paths[eye]
    try:
      params = parse_fisheye_params(path)
      engine = ProjectionEngine(params, focal_expansion=config.focal_expansion, map_cache=map_cache)
      engine.get_map()
    except (CalibrationError, ProjectionNumericError) as e:
      logger.warning("Calibration unusable for eye %d, showing raw frames: %s", eye, e)
      engines.append(None)
      continue
    logger.info("Rectifying eye %d with %s", eye, params)
    engines.append(engine)
  return engines


def _viewer_config(args: argparse.Namespace) -> ViewerConfig:
  config = load_config(args.config) if args.config else ViewerConfig()
  return config.replace(num_workers=args.workers,
                        initial_load_count=args.initial_load,
                        focal_expansion=args.focal_expansion,
                        max_decode_retries=args.retries)


def viewer_main(argv: Optional[Sequence[str]] = None) -> int:
  """Entry point of fisheye-viewer. Returns the process exit status."""
  args = build_viewer_parser().parse_args(argv)

  try:
    setup_logging(args.log_level)
    config = _viewer_config(args)
  except (ValueError, FileNotFoundError) as e:
    print(f"Error: {e}", file=sys.stderr)
    return 1

  if len(args.directories) > 2:
    print("Error: expected one image directory or a left and a right directory", file=sys.stderr)
    return 1

  try:
    threshold = (config.stereo_prompt_threshold if len(args.directories) == 2
                 else config.mono_prompt_threshold)
    dataset: Dataset = load_dataset(args.directories, threshold, ask=None if args.yes else input)

    engines = build_engines(args.calib, dataset.eye_count, config)
    pipeline = FramePipeline(engines, display_max_size=config.display_max_size)

    from .gui.viewer import run_viewer
    run_viewer(dataset, pipeline, config)
  except SetupError as e:
    print(f"Error: {e}", file=sys.stderr)
    return 1

  return 0


def undistort_main(argv: Optional[Sequence[str]] = None) -> int:
  """Entry point of fisheye-undistort. Returns the process exit status."""
  args = build_undistort_parser().parse_args(argv)

  try:
    setup_logging(args.log_level)
  except ValueError as e:
    print(f"Error: {e}", file=sys.stderr)
    return 1

  from .undistort import undistort_file

  try:
    original, undistorted, engine = undistort_file(
      args.image, args.calib, args.focal_expansion,
      tuple(args.output_size) if args.output_size else None)
  except CalibrationError as e:
    print(f"ERROR: Failed to load calibration data! Cannot proceed without calibration: {e}",
          file=sys.stderr)
    return 1
  except (DecodeError, ProjectionNumericError, ValueError) as e:
    print(f"Error: {e}", file=sys.stderr)
    return 1

  if args.output:
    if not cv2.imwrite(args.output, undistorted):
      print(f"Error: could not write {args.output}", file=sys.stderr)
      return 1
    logger.info("Undistorted image saved to: %s", args.output)

  if args.no_display:
    return 0

  try:
    from .gui.undistort_tool import run_undistort_tool
    run_undistort_tool(args.image, original, undistorted, engine, args.output)
  except FisheyeViewerError as e:
    print(f"Error: {e}", file=sys.stderr)
    return 1

  return 0


def main() -> None:
  sys.exit(viewer_main())


def undistort() -> None:
  sys.exit(undistort_main())


if __name__ == "__main__":
  main()
