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

import logging
import sys
from typing import Optional, Union

ROOT_LOGGER_NAME = 'fisheye_viewer'

DEFAULT_FORMAT = '%(asctime)s %(levelname)s [%(name)s] %(message)s'
DEFAULT_DATE_FORMAT = '%H:%M:%S'


class ColoredFormatter(logging.Formatter):
  """Console formatter that colours the level name with ANSI escapes."""

  COLORS = {
    'DEBUG': '\033[36m',
    'INFO': '\033[32m',
    'WARNING': '\033[33m',
    'ERROR': '\033[31m',
    'CRITICAL': '\033[35m',
  }
  RESET = '\033[0m'

  def format(self, record: logging.LogRecord) -> str:
    # Format a copy so other handlers see the plain level name
    record = logging.makeLogRecord(record.__dict__)
    color = self.COLORS.get(record.levelname, self.RESET)
    record.levelname = f"{color}{record.levelname}{self.RESET}"
    return super().format(record)


def get_logger(name: str) -> logging.Logger:
  """
  Get a logger placed under the package root logger.

  Parameters:
  - name: usually the caller's __name__

  Returns:
  - logging.Logger named 'fisheye_viewer.<module>'
  """
  if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + '.'):
    return logging.getLogger(name)
  if name == '__main__':
    name = 'main'
  return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def setup_logging(level: Union[int, str] = logging.INFO, stream=None,
                  use_color: Optional[bool] = None) -> logging.Logger:
  """
  Configure the package root logger with a single console handler.

  Calling it again replaces the previously installed handler, so the command
  line tools can re-apply the level chosen by the user.

  Parameters:
  - level: logging level or level name (e.g. 'DEBUG')
  - stream: output stream, defaults to stderr
  - use_color: force coloured output on/off; by default only for terminals

  Returns:
  - the configured root logger
  """
  if isinstance(level, str):
    level_value = logging.getLevelName(level.upper())
    if not isinstance(level_value, int):
      raise ValueError(f"Unknown log level: {level}")
    level = level_value

  stream = stream if stream is not None else sys.stderr
  if use_color is None:
    use_color = hasattr(stream, 'isatty') and stream.isatty()

  logger = logging.getLogger(ROOT_LOGGER_NAME)
  for handler in list(logger.handlers):
    if getattr(handler, '_fisheye_viewer_handler', False):
      logger.removeHandler(handler)

  handler = logging.StreamHandler(stream)
  formatter_cls = ColoredFormatter if use_color else logging.Formatter
  handler.setFormatter(formatter_cls(DEFAULT_FORMAT, DEFAULT_DATE_FORMAT))
  handler._fisheye_viewer_handler = True

  logger.addHandler(handler)
  logger.setLevel(level)
  return logger
