"""
Background loading tests. Frames come from a counting fake decoder so every
decode can be attributed to the initial load, a worker or the render path.
"""

import logging
import threading
import time
from collections import Counter

import numpy as np
import pytest

from fisheye_viewer.config import ViewerConfig
from fisheye_viewer.exceptions import DecodeError, IndexOutOfRangeError
from fisheye_viewer.image_cache import DecodeState, ImageCache
from fisheye_viewer.load_scheduler import AtomicCounter, FramePipeline, LoadScheduler, decode_image
from fisheye_viewer.projection import ProjectionEngine

from .conftest import make_dataset, make_fisheye_frame


class CountingDecoder:

  def __init__(self, failing=(), fail_times=None, delay=0.0):
    self.calls = Counter()
    self.failing = set(failing)
    self.fail_times = fail_times
    self.delay = delay
    self._lock = threading.Lock()

  def __call__(self, path):
    with self._lock:
      self.calls[path] += 1
      attempt = self.calls[path]
    if self.delay:
      time.sleep(self.delay)
    if path in self.failing and (self.fail_times is None or attempt <= self.fail_times):
      raise DecodeError(path)
    return np.zeros((8, 8, 3), dtype=np.uint8)


def make_scheduler(size, decoder, eye_count=1, **config):
  config.setdefault('worker_delay', 0.0)
  cache = ImageCache(make_dataset(size, eye_count), lambda frame: ('handle', frame.shape))
  pipeline = FramePipeline(decoder=decoder)
  return LoadScheduler(cache, pipeline, ViewerConfig(**config))


def test_every_slot_decoded_exactly_once():
  decoder = CountingDecoder()
  scheduler = make_scheduler(200, decoder, initial_load_count=10, num_workers=4)

  scheduler.start()
  assert scheduler.wait_until_complete(10.0)

  assert scheduler.is_complete
  assert scheduler.cache.decoded_count() == 200
  assert len(decoder.calls) == 200
  assert set(decoder.calls.values()) == {1}

  background = scheduler.background_decode_counts
  initial = scheduler.initial_decode_counts
  assert set(initial) == set(range(10))
  assert set(background) == set(range(10, 200))
  assert set(background.values()) == {1}
  scheduler.stop(1.0)


def test_initial_slots_ready_background_slots_decoded():
  scheduler = make_scheduler(30, CountingDecoder(), initial_load_count=5, num_workers=2)

  scheduler.start()
  assert scheduler.wait_until_complete(10.0)

  for index in range(5):
    assert scheduler.cache.decode_state(index, 0) == DecodeState.READY
  for index in range(5, 30):
    assert scheduler.cache.decode_state(index, 0) == DecodeState.DECODED

  assert scheduler.ensure_loaded(12)
  assert scheduler.cache.is_ready(12, 0)
  assert scheduler.render_path_decode_counts == {}
  scheduler.stop(1.0)


def test_initial_load_sets_cursor():
  scheduler = make_scheduler(50, CountingDecoder(), initial_load_count=10)

  assert scheduler.load_initial() == 10
  assert scheduler.cursor == 10
  assert scheduler.progress() == (10, 50)


def test_small_dataset_needs_no_workers():
  scheduler = make_scheduler(3, CountingDecoder(), initial_load_count=10)

  scheduler.start()

  assert scheduler.is_complete
  assert scheduler.cache.ready_count() == 3
  assert scheduler.stop(1.0)


def test_stereo_loads_both_eyes():
  decoder = CountingDecoder()
  scheduler = make_scheduler(40, decoder, eye_count=2, initial_load_count=4, num_workers=3)

  scheduler.start()
  assert scheduler.wait_until_complete(10.0)

  assert scheduler.cache.decoded_count() == 80
  assert len(decoder.calls) == 80
  assert set(decoder.calls.values()) == {1}
  scheduler.stop(1.0)


def test_decode_failure_is_logged_once(caplog):
  decoder = CountingDecoder(failing={'eye0/0003.png'})
  scheduler = make_scheduler(8, decoder, initial_load_count=2, num_workers=2)

  with caplog.at_level(logging.ERROR, logger='fisheye_viewer'):
    scheduler.start()
    assert scheduler.wait_until_complete(10.0)
    assert not scheduler.ensure_loaded(3)
    assert not scheduler.ensure_loaded(3)

  errors = [record for record in caplog.records if 'Failed to load' in record.getMessage()]
  assert len(errors) == 1
  assert decoder.calls['eye0/0003.png'] == 1
  assert scheduler.cache.decode_state(3, 0) == DecodeState.EMPTY
  assert scheduler.cache.decoded_count() == 7
  scheduler.stop(1.0)


def test_decode_retries_when_configured():
  decoder = CountingDecoder(failing={'eye0/0000.png'}, fail_times=2)
  scheduler = make_scheduler(1, decoder, initial_load_count=1, max_decode_retries=2)

  scheduler.load_initial()

  assert decoder.calls['eye0/0000.png'] == 3
  assert scheduler.cache.is_ready(0, 0)
  assert scheduler.cache.failures(0, 0) == 2


def test_retries_are_bounded():
  decoder = CountingDecoder(failing={'eye0/0000.png'})
  scheduler = make_scheduler(1, decoder, initial_load_count=1, max_decode_retries=1)

  scheduler.load_initial()

  assert decoder.calls['eye0/0000.png'] == 2
  assert scheduler.cache.decode_state(0, 0) == DecodeState.EMPTY


def test_ensure_loaded_far_ahead_of_workers():
  decoder = CountingDecoder()
  scheduler = make_scheduler(60, decoder, initial_load_count=2, num_workers=2)
  scheduler.load_initial()

  assert scheduler.ensure_loaded(45)
  assert scheduler.cache.is_ready(45, 0)
  assert scheduler.render_path_decode_counts == {45: 1}

  scheduler.start_background()
  assert scheduler.wait_until_complete(10.0)

  assert decoder.calls['eye0/0045.png'] == 1
  assert 45 not in scheduler.background_decode_counts
  assert scheduler.cache.decoded_count() == 60
  scheduler.stop(1.0)


def test_ensure_loaded_out_of_range():
  scheduler = make_scheduler(5, CountingDecoder())

  with pytest.raises(IndexOutOfRangeError):
    scheduler.ensure_loaded(5)


def test_stop_is_prompt():
  decoder = CountingDecoder(delay=0.01)
  scheduler = make_scheduler(2000, decoder, initial_load_count=0, num_workers=4,
                             worker_delay=0.005)

  scheduler.start()
  time.sleep(0.1)
  started = time.monotonic()
  assert scheduler.stop(timeout=2.0)
  elapsed = time.monotonic() - started

  assert elapsed < 1.0
  assert scheduler.is_complete
  assert not scheduler.is_running
  decoded = sum(decoder.calls.values())
  assert decoded < 2000

  time.sleep(0.05)
  assert sum(decoder.calls.values()) == decoded


def test_shutdown_releases_cache():
  scheduler = make_scheduler(20, CountingDecoder(), initial_load_count=5, num_workers=2)
  scheduler.start()
  scheduler.wait_until_complete(10.0)

  scheduler.shutdown(1.0)

  assert scheduler.cache.released
  assert scheduler.cache.decoded_count() == 20
  assert all(scheduler.cache.get_entry(index).slot().raw_frame is None for index in range(20))


def test_atomic_counter_hands_out_unique_values():
  counter = AtomicCounter()
  results = []
  lock = threading.Lock()

  def claim():
    values = [counter.fetch_add(1) for _ in range(1000)]
    with lock:
      results.extend(values)

  threads = [threading.Thread(target=claim) for _ in range(8)]
  for thread in threads:
    thread.start()
  for thread in threads:
    thread.join()

  assert sorted(results) == list(range(8000))
  assert counter.value == 8000


def test_decode_image(image_file, tmp_path):
  assert decode_image(image_file).shape == (64, 64, 3)

  corrupt = tmp_path / 'corrupt.png'
  corrupt.write_bytes(b'not a png')
  with pytest.raises(DecodeError):
    decode_image(str(corrupt))
  with pytest.raises(DecodeError):
    decode_image(str(tmp_path / 'missing.png'))


def test_pipeline_rectifies_and_scales(fisheye_params):
  engine = ProjectionEngine(fisheye_params)
  pipeline = FramePipeline([engine, None], display_max_size=80,
                           decoder=lambda path: make_fisheye_frame())

  assert pipeline.rectifies
  assert pipeline.load('left.png', 0).shape == (48, 80, 3)
  assert pipeline.load('right.png', 1).shape == (64, 64, 3)
  assert FramePipeline(decoder=lambda path: make_fisheye_frame()).load('x.png').shape == (64, 64, 3)
  assert not FramePipeline().rectifies


def test_render_path_does_not_retry_failed_slot(caplog):
  decoder = CountingDecoder(failing={'eye0/0003.png'})
  scheduler = make_scheduler(8, decoder, initial_load_count=0, max_decode_retries=3)

  with caplog.at_level(logging.ERROR, logger='fisheye_viewer'):
    for _ in range(10):
      assert not scheduler.ensure_loaded(3)

  errors = [record for record in caplog.records if 'Failed to load' in record.getMessage()]
  assert len(errors) == 1
  assert decoder.calls['eye0/0003.png'] == 1
  assert scheduler.cache.failures(3, 0) == 1
  assert scheduler.render_path_decode_counts == {3: 1}


def test_workers_spend_retry_budget_after_render_path_failure():
  decoder = CountingDecoder(failing={'eye0/0003.png'}, fail_times=1)
  scheduler = make_scheduler(8, decoder, initial_load_count=0, num_workers=2,
                             max_decode_retries=1)

  assert not scheduler.ensure_loaded(3)
  scheduler.start_background()
  assert scheduler.wait_until_complete(10.0)

  assert decoder.calls['eye0/0003.png'] == 2
  assert scheduler.cache.is_decoded(3, 0)
  scheduler.stop(1.0)
