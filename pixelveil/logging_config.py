"""
Logging setup for the pixelveil package.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional, Union

_config_logger = logging.getLogger(__name__)

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(
	level: Union[int, str] = logging.INFO,
	log_file: Optional[str] = None,
	format_string: Optional[str] = None,
) -> logging.Logger:
	"""
	Attach a console handler (and optionally a file handler) to the package logger.

	Calling it again is a no-op once handlers are present.
	"""
	package_logger = logging.getLogger("pixelveil")
	package_logger.setLevel(level)
	if package_logger.handlers:
		_config_logger.debug("Logging already configured for 'pixelveil'. Skipping.")
		return package_logger

	formatter = logging.Formatter(format_string or DEFAULT_FORMAT)

	console_handler = logging.StreamHandler(sys.stdout)
	console_handler.setFormatter(formatter)
	package_logger.addHandler(console_handler)

	if log_file:
		try:
			file_handler = logging.FileHandler(log_file)
			file_handler.setFormatter(formatter)
			package_logger.addHandler(file_handler)
		except OSError as e:
			_config_logger.error(f"Failed to create file handler for '{log_file}': {e}")

	_config_logger.info("Logging configured for the 'pixelveil' package.")
	return package_logger
