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
import time
from collections import Counter
from typing import Callable, Dict, Optional, Sequence, Tuple

import cv2
import numpy as np

from .config import ViewerConfig
from .exceptions import DecodeError, ProjectionNumericError
from .image_cache import ImageCache
from .log_utils import get_logger
from .projection import ProjectionEngine, scale_for_display

logger = get_logger(__name__)


def decode_image(path: str) -> np.ndarray:
  """
  Read an image file into a BGR array.

  Raises:
  - DecodeError if the file is missing, unreadable or corrupt
  """
  try:
    frame = cv2.imread(path, cv2.IMREAD_COLOR)
  except cv2.error as e:
    raise DecodeError(path, str(e))
  if frame is None:
    raise DecodeError(path)
  return frame


class FramePipeline:
  """
  Turns a file path into a frame ready for the cache: decode, then optionally
  rectify with the eye's ProjectionEngine, then optionally shrink to the
  on-screen budget.
  """

  def __init__(self, engines: Optional[Sequence[Optional[ProjectionEngine]]] = None,
               display_max_size: Optional[int] = None,
               decoder: Callable[[str], np.ndarray] = decode_image):
    """
    Parameters:
    - engines: one optional engine per eye; None (or a None entry) passes frames through
    - display_max_size: largest frame dimension kept in memory, None for no limit
    - decoder: function reading a path into a frame
    """
    self.engines = tuple(engines) if engines is not None else ()
    self.display_max_size = display_max_size
    self.decoder = decoder

  def engine_for(self, eye: int) -> Optional[ProjectionEngine]:
    if eye < len(self.engines):
      return self.engines[eye]
    return None

  @property
  def rectifies(self) -> bool:
    return any(engine is not None for engine in self.engines)

  def load(self, path: str, eye: int = 0) -> np.ndarray:
    frame = self.decoder(path)
    engine = self.engine_for(eye)
    if engine is not None:
      frame = engine.apply(frame)
    if self.display_max_size is not None:
      frame = scale_for_display(frame, self.display_max_size)
    return frame


class AtomicCounter:
  """Integer shared between threads with an atomic fetch-and-add."""

  def __init__(self, value: int = 0):
    self._value = value
    self._lock = threading.Lock()

  def fetch_add(self, amount: int = 1) -> int:
    """Add amount and return the value before the addition."""
    with self._lock:
      previous = self._value
      self._value += amount
      return previous

  def set(self, value: int) -> None:
    with self._lock:
      self._value = value

  @property
  def value(self) -> int:
    return self._value


class LoadScheduler:
  """
  Fills an ImageCache from disk.

  The first initial_load_count positions are loaded synchronously on the
  privileged thread so the first frames show immediately. The rest is loaded
  by num_workers background threads that claim indices from one shared
  cursor, so every index is claimed by exactly one worker. Workers only store
  decoded frames; handles are created later by the render path via
  ensure_loaded().
  """

  def __init__(self, cache: ImageCache, pipeline: FramePipeline,
               config: Optional[ViewerConfig] = None):
    self.cache = cache
    self.pipeline = pipeline
    self.config = config if config is not None else ViewerConfig()

    self._cursor = AtomicCounter(0)
    self._completed_workers = AtomicCounter(0)
    self._running = threading.Event()
    self._running.set()
    self._stop_event = threading.Event()
    self._loading_complete = threading.Event()
    self._workers = []

    # (index, eye) slots being decoded right now, by a worker or the render path
    self._in_flight = set()
    self._in_flight_lock = threading.Lock()

    self._counts_lock = threading.Lock()
    self._background_decode_counts: Counter = Counter()
    self._initial_decode_counts: Counter = Counter()
    self._render_path_decode_counts: Counter = Counter()

  # Status

  @property
  def is_running(self) -> bool:
    return self._running.is_set()

  @property
  def is_complete(self) -> bool:
    """Set once every background worker has exited."""
    return self._loading_complete.is_set()

  @property
  def cursor(self) -> int:
    return self._cursor.value

  @property
  def background_decode_counts(self) -> Dict[int, int]:
    """Per-index number of loads performed by background workers."""
    with self._counts_lock:
      return dict(self._background_decode_counts)

  @property
  def initial_decode_counts(self) -> Dict[int, int]:
    with self._counts_lock:
      return dict(self._initial_decode_counts)

  @property
  def render_path_decode_counts(self) -> Dict[int, int]:
    with self._counts_lock:
      return dict(self._render_path_decode_counts)

  def progress(self) -> Tuple[int, int]:
    """(decoded slots, total slots)."""
    return self.cache.decoded_count(), len(self.cache) * self.cache.eye_count

  def wait_until_complete(self, timeout: Optional[float] = None) -> bool:
    return self._loading_complete.wait(timeout)

  # Loading

  def start(self) -> None:
    """Load the initial prefix synchronously, then start the workers."""
    self.load_initial()
    self.start_background()

  def load_initial(self) -> int:
    """
    Load and promote the first initial_load_count positions. Must run on the
    cache's privileged thread.

    Returns:
    - number of positions loaded
    """
    total = len(self.cache)
    initial_count = min(self.config.initial_load_count, total)
    logger.info("Loading first %d of %d positions for instant access...", initial_count, total)

    for index in range(initial_count):
      logger.debug("Loading %d/%d: %s", index + 1, initial_count,
                   self.cache.dataset.base_names[index])
      self._load_index(index, self._initial_decode_counts)
      for eye in range(self.cache.eye_count):
        self.cache.promote_to_ready(index, eye)

    self._cursor.set(initial_count)
    logger.info("Initial %d positions loaded", initial_count)
    return initial_count

  def start_background(self) -> None:
    """Spawn the worker pool, or mark loading complete if nothing is left."""
    total = len(self.cache)
    if self._cursor.value >= total:
      self._loading_complete.set()
      logger.info("All %d positions loaded, no background loading needed", total)
      return

    num_workers = self.config.num_workers
    logger.info("Starting %d background loading threads", num_workers)
    for worker_id in range(num_workers):
      worker = threading.Thread(target=self._worker_loop, args=(worker_id,),
                                name=f"loader-{worker_id}", daemon=True)
      self._workers.append(worker)
    for worker in self._workers:
      worker.start()

  def _worker_loop(self, worker_id: int) -> None:
    total = len(self.cache)
    try:
      while self._running.is_set():
        index = self._cursor.fetch_add(1)
        if index >= total:
          break

        if index % self.config.progress_log_every == 0 and index >= self.config.initial_load_count:
          logger.info("Background loading: %d/%d positions claimed", index, total)

        self._load_index(index, self._background_decode_counts)

        # Throttle; wakes immediately on stop()
        if self._stop_event.wait(self.config.worker_delay):
          break
    finally:
      completed = self._completed_workers.fetch_add(1) + 1
      if completed == len(self._workers):
        self._loading_complete.set()
        if self._running.is_set():
          logger.info("Background loading complete! All %d positions processed", total)
        else:
          logger.info("Background loading stopped at cursor %d/%d",
                      min(self._cursor.value, total), total)

  def _claim(self, index: int, eye: int) -> bool:
    with self._in_flight_lock:
      if (index, eye) in self._in_flight:
        return False
      self._in_flight.add((index, eye))
      return True

  def _unclaim(self, index: int, eye: int) -> None:
    with self._in_flight_lock:
      self._in_flight.discard((index, eye))

  def _can_attempt(self, index: int, eye: int, retry: bool) -> bool:
    if self.cache.is_decoded(index, eye):
      return False
    failures = self.cache.failures(index, eye)
    # The render path makes at most one attempt per slot, ever
    if not retry:
      return failures == 0
    return failures <= self.config.max_decode_retries

  def _load_slot(self, index: int, eye: int, retry: bool) -> bool:
    """
    Decode one slot into the cache unless it is already decoded, being
    decoded elsewhere, or out of attempts.

    Returns:
    - True if a decode was attempted
    """
    if not self._can_attempt(index, eye, retry):
      return False
    if not self._claim(index, eye):
      return False

    attempted = False
    try:
      while self._can_attempt(index, eye, retry):
        attempted = True
        path = self.cache.dataset.path(index, eye)
        try:
          frame = self.pipeline.load(path, eye)
        except (DecodeError, ProjectionNumericError) as e:
          failures = self.cache.record_failure(index, eye)
          logger.error("Failed to load %s (attempt %d): %s", path, failures, e)
          if not retry:
            break
          continue
        self.cache.store_decoded(index, eye, frame)
        break
    finally:
      self._unclaim(index, eye)
    return attempted

  def _load_index(self, index: int, counts: Counter) -> bool:
    attempted = False
    for eye in range(self.cache.eye_count):
      attempted = self._load_slot(index, eye, retry=True) or attempted
    if attempted:
      with self._counts_lock:
        counts[index] += 1
    return attempted

  def ensure_loaded(self, index: int) -> bool:
    """
    Render path: make the slots of `index` displayable.

    Slots not reached by the workers yet are decoded synchronously on the
    calling (privileged) thread; slots currently being decoded by a worker
    are left alone and show up on a later call. A slot that has failed once
    is not decoded again here; only the workers spend the retry budget.
    Decoded slots are promoted.

    Returns:
    - True if every eye of the position is READY
    """
    self.cache.get_entry(index)  # range check

    attempted = False
    for eye in range(self.cache.eye_count):
      attempted = self._load_slot(index, eye, retry=False) or attempted
    if attempted:
      with self._counts_lock:
        self._render_path_decode_counts[index] += 1

    ready = True
    for eye in range(self.cache.eye_count):
      ready = self.cache.promote_to_ready(index, eye) and ready
    return ready

  # Shutdown

  def stop(self, timeout: Optional[float] = None) -> bool:
    """
    Ask the workers to exit and join them. A decode in progress completes
    before its worker notices.

    Returns:
    - True if every worker has exited
    """
    self._running.clear()
    self._stop_event.set()

    deadline = None if timeout is None else time.monotonic() + timeout
    for worker in self._workers:
      remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
      worker.join(remaining)

    alive = [worker.name for worker in self._workers if worker.is_alive()]
    if alive:
      logger.warning("Loader threads still running after stop: %s", ', '.join(alive))
      return False
    return True

  def shutdown(self, timeout: Optional[float] = None) -> None:
    """Stop the workers, then release the cache."""
    if self.stop(timeout):
      self.cache.release()
