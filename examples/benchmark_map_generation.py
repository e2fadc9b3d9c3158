"""
Benchmark script for rectification map generation and frame remapping.

Measures how long building a fisheye-to-flat map takes for several output
sizes and focal expansions, how fast a cached map is returned, and the
throughput of remapping frames through it.

Usage:
  python -m examples.benchmark_map_generation [--calib calib/image_02.yaml]
"""

import argparse
import time

import numpy as np

from fisheye_viewer.camera_params import FisheyeParams, parse_fisheye_params
from fisheye_viewer.exceptions import CalibrationError, ProjectionNumericError
from fisheye_viewer.map_cache import MapCache
from fisheye_viewer.projection import ProjectionEngine, build_map, default_output_size

# Values of the KITTI-360 left fisheye camera (image_02)
KITTI_IMAGE_02 = FisheyeParams(
  camera_name='image_02', image_width=1400, image_height=1400, xi=2.2134047507854890,
  distortion=(1.6798235660113681e-02, 1.6548773243373522, 4.2223943394772046e-04, 4.2462134260997584e-04),
  projection=(1.3363220825849971e+03, 1.3357883350012958e+03, 7.1694323510126321e+02, 7.0576498308221585e+02)
)


def benchmark_map_generation(params: FisheyeParams) -> None:
  print("=" * 60)
  print("RECTIFICATION MAP GENERATION BENCHMARK")
  print("=" * 60)
  print(f"Camera: {params}")

  default_width, default_height = default_output_size(params)
  test_sizes = [
    (default_width // 4, default_height // 4, "Quarter"),
    (default_width // 2, default_height // 2, "Half"),
    (default_width, default_height, "Default"),
  ]

  for width, height, size_name in test_sizes:
    for focal_expansion in (2.5, 4.0, 8.0):
      print(f"\n{size_name} output {width}x{height}, focal expansion {focal_expansion}")
      print("-" * 40)
      try:
        start_time = time.time()
        rect_map = build_map(params, (width, height), focal_expansion)
        total_time = time.time() - start_time
      except ProjectionNumericError as e:
        print(f"✗ Error building map: {e}")
        continue

      total_pixels = width * height
      pixels_per_second = total_pixels / total_time if total_time > 0 else 0
      valid = int(np.count_nonzero(rect_map.valid_mask()))
      print(f"✓ Model: {rect_map.model}")
      print(f"✓ Total processing time: {total_time:.4f} seconds")
      print(f"✓ Performance: {pixels_per_second:,.0f} pixels/second")
      print(f"✓ Valid pixels: {valid:,} of {total_pixels:,}")
      print(f"✓ Memory usage: {rect_map.nbytes / 1024 / 1024:.1f} MB")


def benchmark_cache_and_remap(params: FisheyeParams, frame_count: int = 20) -> None:
  print("\n" + "=" * 60)
  print("CACHE AND REMAP PERFORMANCE")
  print("=" * 60)

  cache = MapCache(max_memory_mb=512.0)
  engine = ProjectionEngine(params, map_cache=cache)

  start_time = time.time()
  engine.get_map()
  print(f"✓ First map build: {time.time() - start_time:.4f} seconds")

  start_time = time.time()
  engine.get_map()
  print(f"✓ Cache hit time: {time.time() - start_time:.6f} seconds")

  frame = np.random.randint(0, 255, (params.image_height, params.image_width, 3), dtype=np.uint8)
  start_time = time.time()
  for _ in range(frame_count):
    engine.apply(frame)
  total_time = time.time() - start_time
  print(f"✓ Remapped {frame_count} frames in {total_time:.4f} seconds "
        f"({frame_count / total_time:.1f} frames/second)")

  info = cache.get_info()
  print(f"✓ Cached maps: {info['cached_maps']}")
  print(f"✓ Memory usage: {info['memory_usage_mb']:.1f} MB")


def main() -> None:
  parser = argparse.ArgumentParser(description="Benchmark rectification map generation")
  parser.add_argument('--calib', help="calibration YAML file (default: KITTI-360 image_02 values)")
  parser.add_argument('--frames', type=int, default=20, help="number of frames to remap")
  args = parser.parse_args()

  params = KITTI_IMAGE_02
  if args.calib:
    try:
      params = parse_fisheye_params(args.calib)
    except CalibrationError as e:
      print(f"✗ Error loading camera parameters: {e}")
      return

  benchmark_map_generation(params)
  benchmark_cache_and_remap(params, args.frames)


if __name__ == "__main__":
  main()
