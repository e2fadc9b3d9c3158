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

from typing import Tuple

PLACEHOLDER_WIDTH = 200
PLACEHOLDER_HEIGHT = 50


class NavigationState:
  """
  Current dataset position and viewport size of a viewer, independent of
  any UI toolkit.
  """

  def __init__(self, size: int, viewport: Tuple[int, int] = (1600, 800)):
    if size < 1:
      raise ValueError(f"Dataset must not be empty, got size {size}")
    self.size = size
    self.current_index = 0
    self.viewport = viewport

  def next(self) -> bool:
    """Move forward one position. Returns True if the index changed."""
    if self.current_index < self.size - 1:
      self.current_index += 1
      return True
    return False

  def previous(self) -> bool:
    """Move back one position. Returns True if the index changed."""
    if self.current_index > 0:
      self.current_index -= 1
      return True
    return False

  def jump_to(self, index: int) -> int:
    """Go to an index, clamped to [0, size - 1]."""
    self.current_index = max(0, min(self.size - 1, index))
    return self.current_index

  def resize(self, width: int, height: int) -> None:
    self.viewport = (max(1, width), max(1, height))

  def eye_areas(self, eye_count: int) -> Tuple[Tuple[int, int, int, int], ...]:
    """(x, y, width, height) of each eye's drawing area, side by side."""
    width, height = self.viewport
    area_width = width // eye_count
    return tuple((eye * area_width, 0, area_width, height) for eye in range(eye_count))


def fit_rect(image_size: Tuple[int, int], area: Tuple[int, int, int, int]) -> Tuple[int, int, int, int]:
  """
  Scale an image to fit an area keeping its aspect ratio, centred.

  Parameters:
  - image_size: (width, height) of the image
  - area: (x, y, width, height) to fit into

  Returns:
  - (x, y, width, height) of the destination rectangle
  """
  image_width, image_height = image_size
  x, y, area_width, area_height = area
  scale = min(area_width / float(image_width), area_height / float(image_height))
  scaled_width = max(1, int(image_width * scale))
  scaled_height = max(1, int(image_height * scale))
  return (x + (area_width - scaled_width) // 2,
          y + (area_height - scaled_height) // 2,
          scaled_width, scaled_height)


def placeholder_rect(area: Tuple[int, int, int, int]) -> Tuple[int, int, int, int]:
  """Centred 'loading' rectangle for an area, as (x, y, width, height)."""
  x, y, area_width, area_height = area
  return (x + area_width // 2 - PLACEHOLDER_WIDTH // 2,
          y + area_height // 2 - PLACEHOLDER_HEIGHT // 2,
          PLACEHOLDER_WIDTH, PLACEHOLDER_HEIGHT)
