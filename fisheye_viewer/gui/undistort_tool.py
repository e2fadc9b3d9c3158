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
from tkinter import ttk, messagebox
import os
from typing import Dict, Optional

import cv2
import numpy as np
from PIL import Image, ImageTk

from ..exceptions import FisheyeViewerError, SetupError
from ..log_utils import get_logger
from ..projection import ParameterDelta, ProjectionEngine, scale_for_display
from ..undistort import (ORIGINAL_COLOR, ORIGINAL_LABEL, UNDISTORTED_COLOR,
                         UNDISTORTED_LABEL, build_comparison, label_image)

logger = get_logger(__name__)

# Largest on-screen dimension per view mode
VIEW_SIZES = {
  'original': 1000,
  'undistorted': 1800,
  'comparison': 1000,
}


class UndistortTool:
  """
  Single image undistortion viewer with live tuning.

  Keys: '1' original, '2' undistorted, 'c' stacked comparison, 's' save the
  undistorted image, Escape or 'q' quit. The sliders post ParameterDelta
  messages to the engine's tuning queue; the engine rebuilds its map when the
  Tk loop polls it.
  """

  def __init__(self, root: tk.Tk, image_path: str, original: np.ndarray,
               undistorted: np.ndarray, engine: ProjectionEngine,
               output_path: Optional[str] = None) -> None:
    self.root = root
    self.image_path = image_path
    self.original = original
    self.undistorted = undistorted
    self.engine = engine
    self.output_path = output_path
    self.mode = 'undistorted'
    self._pending_update_id = None
    self._photo = None

    self.root.title(f"Fisheye Undistortion - {os.path.basename(image_path)}")
    self.root.geometry("1600x1000")

    self.init_parameters()
    self.setup_ui()
    self.setup_keyboard_controls()
    self.show()

    self.root.after(100, self.check_tuning)

  def init_parameters(self) -> None:
    k1, k2, k3, k4 = self.engine.params.distortion
    self.params: Dict[str, tk.DoubleVar] = {
      'k1': tk.DoubleVar(value=k1),
      'k2': tk.DoubleVar(value=k2),
      'k3': tk.DoubleVar(value=k3),
      'k4': tk.DoubleVar(value=k4),
      'focal_expansion': tk.DoubleVar(value=self.engine.focal_expansion),
    }
    self.initial_values = {name: var.get() for name, var in self.params.items()}

  def setup_ui(self) -> None:
    main_frame = ttk.Frame(self.root, padding="10")
    main_frame.grid(row=0, column=0, sticky=(tk.W, tk.E, tk.N, tk.S))
    self.root.columnconfigure(0, weight=1)
    self.root.rowconfigure(0, weight=1)
    main_frame.columnconfigure(1, weight=1)
    main_frame.rowconfigure(0, weight=1)

    control_frame = ttk.LabelFrame(main_frame, text="Projection Parameters", padding="10")
    control_frame.grid(row=0, column=0, sticky=(tk.W, tk.E, tk.N, tk.S), padx=(0, 10))
    self.setup_controls(control_frame)

    self.image_label = ttk.Label(main_frame)
    self.image_label.grid(row=0, column=1, sticky=(tk.W, tk.E, tk.N, tk.S))

    self.status_label = ttk.Label(main_frame, text="Ready")
    self.status_label.grid(row=1, column=0, columnspan=2, sticky=tk.W, pady=(5, 0))

  def setup_controls(self, parent: ttk.Widget) -> None:
    row = 0
    for name in ('k1', 'k2', 'k3', 'k4'):
      value = self.params[name].get()
      span = max(1.0, 2.0 * abs(value))
      ttk.Label(parent, text=f"{name}:").grid(row=row, column=0, sticky=tk.W, padx=(0, 5))
      scale = ttk.Scale(parent, from_=value - span, to=value + span, variable=self.params[name],
                        orient=tk.HORIZONTAL, length=220, command=self.on_param_change)
      scale.grid(row=row, column=1, sticky=(tk.W, tk.E), pady=2)
      row += 1

    ttk.Label(parent, text="Focal expansion:").grid(row=row, column=0, sticky=tk.W, padx=(0, 5))
    ttk.Scale(parent, from_=1.0, to=8.0, variable=self.params['focal_expansion'],
              orient=tk.HORIZONTAL, length=220,
              command=self.on_param_change).grid(row=row, column=1, sticky=(tk.W, tk.E), pady=2)
    row += 1

    ttk.Button(parent, text="Reset", command=self.reset_params).grid(
      row=row, column=0, columnspan=2, sticky=(tk.W, tk.E), pady=(10, 2))
    row += 1
    ttk.Button(parent, text="Save Undistorted", command=self.save_image).grid(
      row=row, column=0, columnspan=2, sticky=(tk.W, tk.E), pady=2)

  def setup_keyboard_controls(self) -> None:
    self.root.bind('<Key>', self.on_key_press)
    self.root.focus_set()

  def on_key_press(self, event) -> None:
    if event.keysym in ('Escape', 'q', 'Q'):
      self.root.destroy()
    elif event.char == '1':
      self.set_mode('original')
    elif event.char == '2':
      self.set_mode('undistorted')
    elif event.char in ('c', 'C'):
      self.set_mode('comparison')
    elif event.char in ('s', 'S'):
      self.save_image()

  def set_mode(self, mode: str) -> None:
    self.mode = mode
    logger.info("Showing %s view", mode)
    self.show()

  def current_view(self) -> np.ndarray:
    if self.mode == 'original':
      return label_image(self.original, ORIGINAL_LABEL, ORIGINAL_COLOR)
    if self.mode == 'comparison':
      return build_comparison(self.original, self.undistorted)
    return label_image(self.undistorted, UNDISTORTED_LABEL, UNDISTORTED_COLOR)

  def show(self) -> None:
    view = scale_for_display(self.current_view(), VIEW_SIZES[self.mode])
    if view.ndim == 2:
      view = cv2.cvtColor(view, cv2.COLOR_GRAY2BGR)
    img_rgb = cv2.cvtColor(view, cv2.COLOR_BGR2RGB)
    self._photo = ImageTk.PhotoImage(Image.fromarray(img_rgb))
    self.image_label.configure(image=self._photo)

  def on_param_change(self, _value=None) -> None:
    # Debounce slider motion
    if self._pending_update_id is not None:
      self.root.after_cancel(self._pending_update_id)
    self._pending_update_id = self.root.after(100, self.post_tuning)

  def post_tuning(self) -> None:
    self._pending_update_id = None
    self.engine.tuning.put(ParameterDelta(
      k1=self.params['k1'].get(),
      k2=self.params['k2'].get(),
      k3=self.params['k3'].get(),
      k4=self.params['k4'].get(),
      focal_expansion=self.params['focal_expansion'].get(),
    ))

  def check_tuning(self) -> None:
    try:
      if self.engine.poll_tuning():
        self.undistorted = self.engine.apply(self.original)
        self.status_label.configure(text=f"Map rebuilt: {self.engine.get_map()!r}")
        self.show()
    except (FisheyeViewerError, ValueError) as e:
      logger.error("Retuning failed: %s", e)
      self.status_label.configure(text=f"Error: {e}")

    self.root.after(100, self.check_tuning)

  def reset_params(self) -> None:
    for name, value in self.initial_values.items():
      self.params[name].set(value)
    self.post_tuning()

  def save_image(self) -> None:
    if self.output_path is None:
      base_name = os.path.splitext(self.image_path)[0]
      self.output_path = f"{base_name}_undistorted.png"
    if cv2.imwrite(self.output_path, self.undistorted):
      logger.info("Undistorted image saved to: %s", self.output_path)
      messagebox.showinfo("Success", f"Image saved as {self.output_path}")
    else:
      messagebox.showwarning("Warning", f"Could not save {self.output_path}")


def run_undistort_tool(image_path: str, original: np.ndarray, undistorted: np.ndarray,
                       engine: ProjectionEngine, output_path: Optional[str] = None) -> None:
  """
  Open the undistortion window and block until it is closed.

  Raises:
  - SetupError if no display is available
  """
  try:
    root = tk.Tk()
  except tk.TclError as e:
    raise SetupError(f"Could not initialize display: {e}")

  UndistortTool(root, image_path, original, undistorted, engine, output_path)
  print("Controls: '1' original, '2' unwrapped, 'c' comparison, 's' save, ESC or 'q' quit")
  root.mainloop()
