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

class FisheyeViewerError(Exception):
  """Base class for all errors raised by the fisheye viewer."""
  pass


class SetupError(FisheyeViewerError):
  """
  Fatal startup failure: missing or invalid directory, display context
  initialisation failure, or no images found. The command line front end
  reports it on stderr and exits with status 1.
  """
  pass


class CalibrationError(FisheyeViewerError, ValueError):
  """
  Calibration file is missing or malformed.

  Recoverable in the dataset viewer (raw frames are shown instead), fatal in
  the single image undistortion tool.
  """

  def __init__(self, message: str, filename: str = None):
    self.filename = filename
    super().__init__(message)


class DecodeError(FisheyeViewerError):
  """An image file could not be read or decoded."""

  def __init__(self, path: str, reason: str = "unreadable or corrupt image"):
    self.path = path
    self.reason = reason
    super().__init__(f"Could not decode image '{path}': {reason}")


class ProjectionNumericError(FisheyeViewerError):
  """Neither the fisheye nor the pinhole inverse mapping could be built."""
  pass


class IndexOutOfRangeError(FisheyeViewerError, IndexError):
  """Dataset index outside [0, size)."""

  def __init__(self, index: int, size: int):
    self.index = index
    self.size = size
    super().__init__(f"Index {index} out of range for dataset of size {size}")
