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

import tkinter as tk
from typing import Optional, Tuple

import cv2
import numpy as np
from PIL import Image, ImageTk

from ..config import ViewerConfig
from ..dataset import Dataset
from ..exceptions import SetupError
from ..image_cache import ImageCache
from ..load_scheduler import FramePipeline, LoadScheduler
from ..log_utils import get_logger
from ..navigation import NavigationState, fit_rect, placeholder_rect

logger = get_logger(__name__)


class TkRenderable:
  """
  Display handle of one decoded frame.

  Holds the RGB image and lazily creates an ImageTk.PhotoImage for the size
  it is drawn at. Must be created and used on the Tk thread.
  """

  def __init__(self, frame: np.ndarray):
    if frame.ndim == 2:
      rgb = cv2.cvtColor(frame, cv2.COLOR_GRAY2RGB)
    elif frame.shape[2] == 4:
      rgb = cv2.cvtColor(frame, cv2.COLOR_BGRA2RGB)
    else:
      rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
    self.image = Image.fromarray(rgb)
    self._photo: Optional[ImageTk.PhotoImage] = None
    self._photo_size: Optional[Tuple[int, int]] = None

  @property
  def size(self) -> Tuple[int, int]:
    return self.image.size

  def photo(self, size: Tuple[int, int]) -> ImageTk.PhotoImage:
    if self._photo is None or self._photo_size != size:
      resized = self.image if size == self.image.size else self.image.resize(size, Image.BILINEAR)
      self._photo = ImageTk.PhotoImage(resized)
      self._photo_size = size
    return self._photo


def make_tk_renderable(frame: np.ndarray) -> Optional[TkRenderable]:
  try:
    return TkRenderable(frame)
  except (cv2.error, ValueError, tk.TclError) as e:
    logger.error("Unable to create display image: %s", e)
    return None


class FisheyeViewer:
  """
  Keyboard driven viewer for mono or stereo fisheye datasets.

  Whether frames are shown raw or rectified depends only on the FramePipeline
  handed in. The Tk thread is the privileged thread of the image cache: it
  runs the render loop and is the only one creating display handles.

  Controls: Left/Right arrows step through the dataset, Escape or q quits.
  """

  def __init__(self, root: tk.Tk, dataset: Dataset, pipeline: FramePipeline,
               config: Optional[ViewerConfig] = None) -> None:
    self.root = root
    self.config = config if config is not None else ViewerConfig()
    self.dataset = dataset
    self.pipeline = pipeline

    self.cache = ImageCache(dataset, make_tk_renderable)
    self.scheduler = LoadScheduler(self.cache, pipeline, self.config)
    self.navigation = NavigationState(
      len(dataset), (self.config.window_width, self.config.window_height))

    self._render_job = None
    self._running = False
    self._title = None

    self.setup_ui()
    self.setup_keyboard_controls()

  def setup_ui(self) -> None:
    mode = "Stereo" if self.dataset.is_stereo else "Mono"
    if self.pipeline.rectifies:
      mode += ", rectified"
    self.base_title = f"Fisheye Camera Viewer - {mode}"
    self.root.title(self.base_title)
    self.root.geometry(f"{self.config.window_width}x{self.config.window_height}")

    self.canvas = tk.Canvas(self.root, width=self.config.window_width,
                            height=self.config.window_height, bg='black',
                            highlightthickness=0)
    self.canvas.pack(fill=tk.BOTH, expand=True)
    self.canvas.bind('<Configure>', self.on_resize)
    self.root.protocol("WM_DELETE_WINDOW", self.quit)

  def setup_keyboard_controls(self) -> None:
    self.root.bind('<Key>', self.on_key_press)
    self.root.focus_set()

  def start(self) -> None:
    """Load the first frames, start background loading and the render loop."""
    self.scheduler.start()
    self._running = True
    self.render_tick()

  def render_tick(self) -> None:
    if not self._running:
      return
    self.render()
    self._render_job = self.root.after(self.config.render_interval_ms, self.render_tick)

  def render(self) -> None:
    index = self.navigation.current_index
    self.scheduler.ensure_loaded(index)
    entry = self.cache.get_entry(index)

    self.canvas.delete('all')
    areas = self.navigation.eye_areas(self.dataset.eye_count)
    for eye, area in enumerate(areas):
      slot = entry.slot(eye)
      if slot.is_ready:
        x, y, width, height = fit_rect(slot.renderable.size, area)
        self.canvas.create_image(x, y, image=slot.renderable.photo((width, height)), anchor=tk.NW)
      else:
        self.draw_loading_placeholder(area)

    if self.dataset.is_stereo:
      divider_x = areas[1][0]
      self.canvas.create_line(divider_x, 0, divider_x, self.navigation.viewport[1], fill='#808080')

    self.update_title(entry.base_name)

  def draw_loading_placeholder(self, area) -> None:
    x, y, width, height = placeholder_rect(area)
    self.canvas.create_rectangle(x, y, x + width, y + height, fill='white', outline='black')

  def update_title(self, base_name: str) -> None:
    index = self.navigation.current_index
    title = f"{self.base_title} - {index + 1}/{len(self.dataset)}: {base_name}"
    if not self.scheduler.is_complete:
      decoded, total = self.scheduler.progress()
      title += f" (loading {decoded}/{total})"
    if title != self._title:
      self.root.title(title)
      self._title = title

  def on_key_press(self, event) -> None:
    if event.keysym == 'Right':
      self.navigation.next()
    elif event.keysym == 'Left':
      self.navigation.previous()
    elif event.keysym in ('Escape', 'q', 'Q'):
      self.quit()

  def on_resize(self, event) -> None:
    self.navigation.resize(event.width, event.height)

  def quit(self) -> None:
    """Stop rendering, join the loader threads and close the window."""
    if self._render_job is not None:
      self.root.after_cancel(self._render_job)
      self._render_job = None
    self._running = False
    self.scheduler.shutdown()
    self.root.destroy()


def run_viewer(dataset: Dataset, pipeline: FramePipeline,
               config: Optional[ViewerConfig] = None) -> None:
  """
  Open the viewer window and block until it is closed.

  Raises:
  - SetupError if no display is available
  """
  try:
    root = tk.Tk()
  except tk.TclError as e:
    raise SetupError(f"Could not initialize display: {e}")

  viewer = FisheyeViewer(root, dataset, pipeline, config)
  print("Use left/right arrow keys to navigate, ESC to quit")
  try:
    viewer.start()
    root.mainloop()
  finally:
    if viewer.scheduler.is_running:
      viewer.scheduler.shutdown()
