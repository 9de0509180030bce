"""
PixelVeil configuration.

Settings come from a YAML file (``PIXELVEIL_CONFIG`` or ``pixelveil.yaml`` in the
working directory) layered over ``DEFAULT_CONFIG``.
"""

from __future__ import annotations

import copy
import importlib
import logging
import os
from typing import Any, Callable, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "PIXELVEIL_CONFIG"
DEFAULT_CONFIG_PATH = "pixelveil.yaml"
DEFAULT_CONFIG: Dict[str, Any] = {
	"pixelveil": {
		"auto_action": "none",
		"jpeg_quality": 95,
		"transforms": {
			"encrypt": None,
			"decrypt": None,
		},
		"logging": {
			"level": "INFO",
			"file": None,
		},
	}
}


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
	"""
	Load configuration from a YAML file, falling back to the defaults.

	Args:
		config_path: Path to the YAML file. Defaults to ``$PIXELVEIL_CONFIG`` and
			then ``pixelveil.yaml``.

	Returns:
		The ``pixelveil`` section with every default key present.
	"""
	config = copy.deepcopy(DEFAULT_CONFIG["pixelveil"])
	path = config_path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH
	if not os.path.exists(path):
		if config_path:
			logger.warning(f"Config file '{path}' not found, using defaults")
		return config
	try:
		with open(path, "r", encoding="utf-8") as f:
			loaded = yaml.safe_load(f) or {}
	except (OSError, yaml.YAMLError) as e:
		logger.error(f"Failed to read config '{path}': {e}. Using defaults")
		return config
	section = loaded.get("pixelveil") if isinstance(loaded, dict) else None
	if not isinstance(section, dict):
		logger.warning(f"Config '{path}' has no 'pixelveil' section, using defaults")
		return config
	for key, value in section.items():
		if isinstance(value, dict) and isinstance(config.get(key), dict):
			config[key].update(value)
		else:
			config[key] = value
	validate_config(config)
	logger.info(f"Loaded configuration from '{path}'")
	return config


def validate_config(config: Dict[str, Any]) -> None:
	if config.get("auto_action") not in ("none", "encrypt", "decrypt"):
		raise ValueError(f"auto_action must be none, encrypt or decrypt, got {config.get('auto_action')!r}")
	quality = config.get("jpeg_quality")
	if not isinstance(quality, int) or not 1 <= quality <= 100:
		raise ValueError(f"jpeg_quality must be an integer in 1..100, got {quality!r}")


def resolve_callable(path: str) -> Callable[..., Any]:
	"""Import ``package.module:attribute``."""
	module_name, sep, attr = path.partition(":")
	if not sep or not attr:
		raise ValueError(f"Expected 'module:callable', got {path!r}")
	target = getattr(importlib.import_module(module_name), attr)
	if not callable(target):
		raise TypeError(f"{path} is not callable")
	return target


def load_transforms(config: Dict[str, Any]) -> Dict[str, Callable[..., Any]]:
	transforms = {}
	for kind, path in (config.get("transforms") or {}).items():
		if path:
			transforms[kind] = resolve_callable(path)
	return transforms
