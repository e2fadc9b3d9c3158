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
from collections import OrderedDict
from typing import Any, Dict, Hashable, List, Optional, Tuple

from .log_utils import get_logger

logger = get_logger(__name__)


class MapCache:
  """
  Thread-safe LRU cache for rectification maps.

  Maps are expensive to build (one inverse projection per output pixel) and
  are shared between every frame of a camera, so engines look them up here
  before rebuilding. Memory usage can be bounded, in which case the least
  recently used maps are evicted first.
  """

  def __init__(self, max_memory_mb: Optional[float] = None):
    """
    Parameters:
    - max_memory_mb: Optional maximum memory usage in MB. If None, no limit is enforced.
    """
    # OrderedDict keeps access order for LRU: oldest first
    self._cache: 'OrderedDict[Hashable, Tuple[Any, float]]' = OrderedDict()
    self._max_memory_mb = max_memory_mb
    self._lock = threading.RLock()
    self._access_count = 0
    self._hit_count = 0
    self._eviction_count = 0

  @staticmethod
  def _memory_mb(rect_map) -> float:
    return rect_map.nbytes / (1024 * 1024)

  def get(self, key: Hashable):
    """
    Retrieve a cached map and mark it as most recently used.

    Returns:
    - the cached RectificationMap, or None
    """
    with self._lock:
      self._access_count += 1
      entry = self._cache.get(key)
      if entry is None:
        return None
      rect_map, _ = entry
      self._cache[key] = (rect_map, time.time())
      self._cache.move_to_end(key)
      self._hit_count += 1
      return rect_map

  def put(self, key: Hashable, rect_map) -> bool:
    """
    Store a map, evicting least recently used maps when over the memory limit.

    Returns:
    - True if the map was stored, False if it alone exceeds the limit
    """
    with self._lock:
      now = time.time()

      if key in self._cache:
        self._cache[key] = (rect_map, now)
        self._cache.move_to_end(key)
        return True

      if self._max_memory_mb is not None:
        new_memory = self._memory_mb(rect_map)
        current_memory = self._calculate_total_memory_mb()

        while current_memory + new_memory > self._max_memory_mb and self._cache:
          lru_key, (lru_map, _) = self._cache.popitem(last=False)
          freed = self._memory_mb(lru_map)
          current_memory -= freed
          self._eviction_count += 1
          logger.debug("LRU evicted map %s (freed %.1f MB)", lru_key, freed)

        if current_memory + new_memory > self._max_memory_mb:
          logger.warning("Cannot cache map: %.1f MB exceeds the %.1f MB limit",
                         new_memory, self._max_memory_mb)
          return False

      self._cache[key] = (rect_map, now)
      return True

  def remove(self, key: Hashable) -> bool:
    with self._lock:
      if key in self._cache:
        del self._cache[key]
        return True
      return False

  def clear(self) -> None:
    """Clear all cached maps."""
    with self._lock:
      self._cache.clear()

  def contains(self, key: Hashable) -> bool:
    with self._lock:
      return key in self._cache

  def __len__(self) -> int:
    with self._lock:
      return len(self._cache)

  def get_lru_order(self) -> List[Hashable]:
    """Keys ordered from least to most recently used."""
    with self._lock:
      return list(self._cache.keys())

  def get_info(self) -> Dict[str, Any]:
    """
    Get cache statistics.

    Returns:
    - Dictionary with entry count, memory usage and LRU counters
    """
    with self._lock:
      memory_mb = self._calculate_total_memory_mb()
      return {
        'cached_maps': len(self._cache),
        'memory_usage_mb': memory_mb,
        'max_memory_mb': self._max_memory_mb,
        'memory_limit_enabled': self._max_memory_mb is not None,
        'total_accesses': self._access_count,
        'total_hits': self._hit_count,
        'total_evictions': self._eviction_count
      }

  def log_status(self) -> None:
    info = self.get_info()
    logger.info("Map cache: %d maps, %.1f MB", info['cached_maps'], info['memory_usage_mb'])
    if info['memory_limit_enabled']:
      usage_percent = (info['memory_usage_mb'] / info['max_memory_mb']) * 100
      logger.info("Map cache usage: %.1f%% of %.1f MB limit", usage_percent, info['max_memory_mb'])

  def _calculate_total_memory_mb(self) -> float:
    return sum(self._memory_mb(rect_map) for rect_map, _ in self._cache.values())
