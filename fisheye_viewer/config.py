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

import dataclasses
from dataclasses import dataclass
from typing import Any, Dict, Optional

import yaml

INTEGER_FIELDS = ('initial_load_count', 'num_workers', 'max_decode_retries', 'progress_log_every',
                  'display_max_size', 'stereo_prompt_threshold', 'mono_prompt_threshold',
                  'window_width', 'window_height', 'render_interval_ms')
FLOAT_FIELDS = ('worker_delay', 'focal_expansion', 'map_cache_mb')
OPTIONAL_FIELDS = ('display_max_size', 'map_cache_mb')


@dataclass(frozen=True)
class ViewerConfig:
  """
  Tunables for the loading pipeline, the projection engine and the viewer.

  All values have working defaults; a YAML file may override any subset of
  them (see load_config).
  """

  # Loading pipeline
  initial_load_count: int = 10
  num_workers: int = 4
  worker_delay: float = 0.005  # seconds between worker iterations
  max_decode_retries: int = 0  # extra attempts after a failed decode
  progress_log_every: int = 50

  # Projection
  focal_expansion: float = 2.5
  display_max_size: Optional[int] = 1800  # None keeps full resolution frames
  map_cache_mb: Optional[float] = 512.0

  # Dataset size guard
  stereo_prompt_threshold: int = 1000
  mono_prompt_threshold: int = 2000

  # Window
  window_width: int = 1600
  window_height: int = 800
  render_interval_ms: int = 16

  def __post_init__(self) -> None:
    self.validate()

  def validate(self) -> None:
    """
    Check values for reasonable ranges.

    Raises:
    ValueError if any value is invalid.
    """
    for name in INTEGER_FIELDS:
      value = getattr(self, name)
      if value is None and name in OPTIONAL_FIELDS:
        continue
      if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    for name in FLOAT_FIELDS:
      value = getattr(self, name)
      if value is None and name in OPTIONAL_FIELDS:
        continue
      if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number, got {value!r}")

    if self.initial_load_count < 0:
      raise ValueError(f"initial_load_count must be >= 0, got {self.initial_load_count}")
    if self.num_workers < 1:
      raise ValueError(f"num_workers must be >= 1, got {self.num_workers}")
    if self.worker_delay < 0:
      raise ValueError(f"worker_delay must be >= 0, got {self.worker_delay}")
    if self.max_decode_retries < 0:
      raise ValueError(f"max_decode_retries must be >= 0, got {self.max_decode_retries}")
    if self.progress_log_every < 1:
      raise ValueError(f"progress_log_every must be >= 1, got {self.progress_log_every}")
    if self.focal_expansion <= 0:
      raise ValueError(f"focal_expansion must be > 0, got {self.focal_expansion}")
    if self.display_max_size is not None and self.display_max_size < 1:
      raise ValueError(f"display_max_size must be >= 1 or None, got {self.display_max_size}")
    if self.map_cache_mb is not None and self.map_cache_mb <= 0:
      raise ValueError(f"map_cache_mb must be > 0 or None, got {self.map_cache_mb}")
    if self.stereo_prompt_threshold < 1 or self.mono_prompt_threshold < 1:
      raise ValueError("Dataset prompt thresholds must be >= 1")
    if self.window_width < 1 or self.window_height < 1:
      raise ValueError(f"Invalid window size: {self.window_width}x{self.window_height}")
    if self.render_interval_ms < 1:
      raise ValueError(f"render_interval_ms must be >= 1, got {self.render_interval_ms}")

  def replace(self, **changes: Any) -> 'ViewerConfig':
    """Return a copy with the given fields changed; None values are ignored."""
    changes = {key: value for key, value in changes.items() if value is not None}
    return dataclasses.replace(self, **changes)

  def to_dict(self) -> Dict[str, Any]:
    return dataclasses.asdict(self)


def config_from_dict(data: Dict[str, Any], base: Optional[ViewerConfig] = None) -> ViewerConfig:
  """
  Build a ViewerConfig from a mapping of overrides.

  Raises:
  ValueError on unknown keys or invalid values.
  """
  base = base if base is not None else ViewerConfig()
  known = {field.name for field in dataclasses.fields(ViewerConfig)}
  unknown = sorted(set(data) - known)
  if unknown:
    raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")
  try:
    return dataclasses.replace(base, **data)
  except TypeError as e:
    raise ValueError(f"Invalid configuration value: {e}")


def load_config(filename: str, base: Optional[ViewerConfig] = None) -> ViewerConfig:
  """
  Load configuration overrides from a YAML file.

  Expected format is a flat mapping, e.g.:

    num_workers: 8
    focal_expansion: 4.0
    display_max_size: null

  Parameters:
  - filename: path to the YAML file
  - base: configuration to start from, defaults to ViewerConfig()

  Returns:
  ViewerConfig with the overrides applied.

  Raises:
  FileNotFoundError if the file doesn't exist.
  ValueError if the file is not valid YAML or contains invalid settings.
  """
  try:
    with open(filename, 'r') as f:
      data = yaml.safe_load(f)
  except FileNotFoundError:
    raise FileNotFoundError(f"Configuration file not found: {filename}")
  except yaml.YAMLError as e:
    raise ValueError(f"Invalid YAML format in file '{filename}': {e}")

  if data is None:
    data = {}
  if not isinstance(data, dict):
    raise ValueError(f"Configuration file '{filename}' must contain a mapping")

  return config_from_dict(data, base)
