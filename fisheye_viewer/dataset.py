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
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .exceptions import SetupError
from .log_utils import get_logger

logger = get_logger(__name__)

IMAGE_EXTENSIONS = ('.png', '.jpg', '.jpeg')  # also the priority order for duplicate stems


@dataclass(frozen=True)
class Dataset:
  """
  Ordered, immutable list of dataset positions.

  base_names[i] is the file stem shown at index i; paths[i][eye] is the file
  to decode for that eye. Mono datasets have one eye, stereo datasets two
  (left, right).
  """
  base_names: Tuple[str, ...]
  paths: Tuple[Tuple[str, ...], ...]
  directories: Tuple[str, ...]

  @property
  def eye_count(self) -> int:
    return len(self.directories)

  @property
  def is_stereo(self) -> bool:
    return self.eye_count == 2

  def __len__(self) -> int:
    return len(self.base_names)

  def path(self, index: int, eye: int = 0) -> str:
    return self.paths[index][eye]


def _check_directory(directory: str) -> None:
  if not os.path.isdir(directory):
    raise SetupError(f"{directory} is not a valid directory")


def scan_image_directory(directory: str) -> Dict[str, str]:
  """
  Scan one directory (non-recursively) for images.

  Parameters:
  - directory: directory to scan

  Returns:
  - Dictionary mapping base name (file stem) to file path. If one stem exists
    with several extensions, .png wins over .jpg over .jpeg.

  Raises:
  - SetupError if the directory is missing or unreadable
  """
  _check_directory(directory)

  found: Dict[str, Tuple[int, str]] = {}
  try:
    entries = sorted(os.scandir(directory), key=lambda entry: entry.name)
  except OSError as e:
    raise SetupError(f"Error reading directory {directory}: {e}")

  for entry in entries:
    if not entry.is_file():
      continue
    stem, extension = os.path.splitext(entry.name)
    extension = extension.lower()
    if extension not in IMAGE_EXTENSIONS:
      continue
    priority = IMAGE_EXTENSIONS.index(extension)
    if stem not in found or priority < found[stem][0]:
      found[stem] = (priority, entry.path)

  return {stem: path for stem, (_, path) in found.items()}


def match_base_names(*name_sets: Sequence[str]) -> List[str]:
  """Base names present in every set, sorted lexicographically ascending."""
  if not name_sets:
    return []
  common = set(name_sets[0])
  for names in name_sets[1:]:
    common &= set(names)
  return sorted(common)


def limit_dataset_size(base_names: List[str], threshold: int, kind: str,
                       ask: Optional[Callable[[str], str]] = input) -> List[str]:
  """
  Ask whether to load a large dataset completely or only its first entries.

  Parameters:
  - base_names: ordered base names
  - threshold: size above which the user is asked
  - kind: 'stereo pairs' or 'images', used in the prompt
  - ask: prompt function returning the answer; None loads everything

  Returns:
  - base_names, or its first `threshold` entries if the user answered '2'
  """
  if len(base_names) <= threshold or ask is None:
    return base_names

  print(f"\nFound {len(base_names)} {kind}. This is a large dataset.")
  print("Loading all of them may use significant memory and time.")
  print("Do you want to:")
  print(f"  1. Load all {len(base_names)} {kind}")
  print(f"  2. Load only the first {threshold} {kind}")
  try:
    choice = ask("Enter your choice (1 or 2): ").strip()
  except EOFError:
    choice = ''

  if choice == '2':
    logger.info("Limiting to first %d %s", threshold, kind)
    return base_names[:threshold]

  logger.info("Loading all %d %s", len(base_names), kind)
  return base_names


def load_dataset(directories: Sequence[str], threshold: Optional[int] = None,
                 ask: Optional[Callable[[str], str]] = input) -> Dataset:
  """
  Build the ordered dataset for one (mono) or two (stereo) directories.

  Parameters:
  - directories: [image_dir] or [left_dir, right_dir]
  - threshold: dataset size above which to prompt (see limit_dataset_size);
    None disables the prompt
  - ask: prompt function

  Returns:
  - Dataset ordered by base name

  Raises:
  - SetupError for invalid directories or when nothing matches
  """
  directories = tuple(directories)
  if len(directories) not in (1, 2):
    raise SetupError(f"Expected one or two directories, got {len(directories)}")

  scans = [scan_image_directory(directory) for directory in directories]
  base_names = match_base_names(*[scan.keys() for scan in scans])

  if not base_names:
    if len(directories) == 2:
      raise SetupError("No matching stereo pairs found between directories")
    raise SetupError(f"No image files found in directory: {directories[0]}")

  kind = 'stereo pairs' if len(directories) == 2 else 'images'
  if threshold is not None:
    base_names = limit_dataset_size(base_names, threshold, kind, ask)

  paths = tuple(tuple(scan[name] for scan in scans) for name in base_names)
  logger.info("Found %d %s", len(base_names), kind)
  return Dataset(tuple(base_names), paths, directories)
