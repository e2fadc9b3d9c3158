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

import threading
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Optional, Tuple

import numpy as np

from .dataset import Dataset
from .exceptions import IndexOutOfRangeError
from .log_utils import get_logger

logger = get_logger(__name__)


class DecodeState(IntEnum):
  """Lifecycle of one slot. Only ever moves forward."""
  EMPTY = 0
  DECODED = 1
  READY = 2


class DatasetEntry:
  """
  Mutable state of one eye at one dataset position.

  Owned by ImageCache: fields are only written under the cache lock.
  """

  __slots__ = ('index', 'eye', 'source_path', 'decode_state', 'raw_frame',
               'renderable', 'failures', 'handle_failed')

  def __init__(self, index: int, eye: int, source_path: str):
    self.index = index
    self.eye = eye
    self.source_path = source_path
    self.decode_state = DecodeState.EMPTY
    self.raw_frame: Optional[np.ndarray] = None
    self.renderable: Any = None
    self.failures = 0
    self.handle_failed = False


@dataclass(frozen=True)
class SlotView:
  """Snapshot of one slot taken under the cache lock."""
  source_path: str
  decode_state: DecodeState
  raw_frame: Optional[np.ndarray]
  renderable: Any
  failures: int
  handle_failed: bool = False

  @property
  def is_ready(self) -> bool:
    return self.decode_state == DecodeState.READY


@dataclass(frozen=True)
class EntryView:
  """
  Borrowed view of a dataset position. The frames and handles it references
  stay owned by the cache; hold it no longer than one render call.
  """
  index: int
  base_name: str
  slots: Tuple[SlotView, ...]

  def slot(self, eye: int = 0) -> SlotView:
    return self.slots[eye]


class ImageCache:
  """
  Decode and render state of every dataset position.

  All writes go through a single lock. Readiness checks read one attribute
  without locking, so the render loop can poll cheaply while workers store
  frames. Renderable handles are created only on the privileged thread (the
  one owning the display context); any thread may store decoded frames.
  """

  def __init__(self, dataset: Dataset, renderable_factory: Callable[[np.ndarray], Any],
               privileged_thread: Optional[threading.Thread] = None):
    """
    Parameters:
    - dataset: ordered dataset; the cache size is fixed to len(dataset)
    - renderable_factory: turns a decoded frame into a display handle, returning
      None on failure
    - privileged_thread: thread allowed to create handles, defaults to the
      constructing thread
    """
    self._dataset = dataset
    self._renderable_factory = renderable_factory
    self._privileged_thread = privileged_thread or threading.current_thread()
    self._lock = threading.Lock()
    self._released = False
    self._entries = tuple(
      tuple(DatasetEntry(index, eye, dataset.path(index, eye)) for eye in range(dataset.eye_count))
      for index in range(len(dataset))
    )

  @property
  def dataset(self) -> Dataset:
    return self._dataset

  @property
  def eye_count(self) -> int:
    return self._dataset.eye_count

  def __len__(self) -> int:
    return len(self._entries)

  def _check_index(self, index: int) -> None:
    if not 0 <= index < len(self._entries):
      raise IndexOutOfRangeError(index, len(self._entries))

  def _slot(self, index: int, eye: int) -> DatasetEntry:
    self._check_index(index)
    if not 0 <= eye < self.eye_count:
      raise ValueError(f"Eye {eye} out of range for {self.eye_count}-eye dataset")
    return self._entries[index][eye]

  def get_entry(self, index: int) -> EntryView:
    """
    Snapshot the slots of one dataset position.

    Raises:
    - IndexOutOfRangeError if index is not in [0, size)
    """
    self._check_index(index)
    with self._lock:
      slots = tuple(
        SlotView(slot.source_path, slot.decode_state, slot.raw_frame, slot.renderable, slot.failures,
                 slot.handle_failed)
        for slot in self._entries[index]
      )
    return EntryView(index, self._dataset.base_names[index], slots)

  def store_decoded(self, index: int, eye: int, raw_frame: np.ndarray) -> None:
    """
    Install a decoded frame; the last write wins. A slot that is already
    READY keeps its frame and handle. Ignored after release().
    """
    slot = self._slot(index, eye)
    with self._lock:
      if self._released or slot.decode_state == DecodeState.READY:
        return
      slot.raw_frame = raw_frame
      slot.handle_failed = False
      slot.decode_state = DecodeState.DECODED

  def promote_to_ready(self, index: int, eye: int) -> bool:
    """
    Create the renderable handle of a decoded slot.

    Must be called from the privileged thread. No-op when the slot is already
    READY, not decoded yet, or the cache was released. If the factory fails
    the slot stays DECODED and is not tried again until a new frame is
    stored.

    Returns:
    - True if the slot is READY afterwards

    Raises:
    - RuntimeError when called from another thread
    """
    if threading.current_thread() is not self._privileged_thread:
      raise RuntimeError(
        f"promote_to_ready must run on {self._privileged_thread.name}, "
        f"not {threading.current_thread().name}")

    slot = self._slot(index, eye)
    with self._lock:
      if slot.decode_state == DecodeState.READY:
        return True
      if self._released or slot.decode_state != DecodeState.DECODED or slot.handle_failed:
        return False

      renderable = self._renderable_factory(slot.raw_frame)
      if renderable is None:
        slot.handle_failed = True
        logger.warning("Could not create display handle for %s", slot.source_path)
        return False

      slot.renderable = renderable
      slot.decode_state = DecodeState.READY
      return True

  def record_failure(self, index: int, eye: int) -> int:
    """Count a failed decode of a slot. Returns the new failure count."""
    slot = self._slot(index, eye)
    with self._lock:
      slot.failures += 1
      return slot.failures

  def failures(self, index: int, eye: int) -> int:
    return self._slot(index, eye).failures

  def decode_state(self, index: int, eye: int) -> DecodeState:
    return self._slot(index, eye).decode_state

  def is_decoded(self, index: int, eye: int) -> bool:
    """True once a frame is stored (DECODED or READY). Lock-free."""
    return self._slot(index, eye).decode_state >= DecodeState.DECODED

  def is_ready(self, index: int, eye: int) -> bool:
    """True once the renderable handle exists. Lock-free."""
    return self._slot(index, eye).decode_state == DecodeState.READY

  def decoded_count(self) -> int:
    """Number of slots decoded so far (DECODED or READY)."""
    return sum(1 for slots in self._entries for slot in slots
               if slot.decode_state >= DecodeState.DECODED)

  def ready_count(self) -> int:
    return sum(1 for slots in self._entries for slot in slots
               if slot.decode_state == DecodeState.READY)

  def release(self) -> None:
    """
    Drop every frame and handle at teardown. Decode states are kept as they
    are; later stores and promotions are ignored.
    """
    with self._lock:
      self._released = True
      for slots in self._entries:
        for slot in slots:
          slot.raw_frame = None
          slot.renderable = None
    logger.debug("Image cache released")

  @property
  def released(self) -> bool:
    return self._released
