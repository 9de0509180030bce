from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ImageFormat(str, Enum):
	JPEG = "jpeg"
	PNG = "png"


@dataclass
class MetadataSnapshot:
	format: ImageFormat = ImageFormat.JPEG
	exif_tags: Optional[Dict[str, Any]] = None
	png_text: Optional[Dict[str, str]] = None

	def is_empty(self) -> bool:
		return not self.exif_tags and not self.png_text

	def to_dict(self) -> Dict[str, Any]:
		exif = None
		if self.exif_tags is not None:
			exif = {str(k): _jsonable(v) for k, v in self.exif_tags.items()}
		return {
			"format": self.format.value,
			"exif_tags": exif,
			"png_text": dict(self.png_text) if self.png_text is not None else None,
		}


def _jsonable(v: Any) -> Any:
	if v is None or isinstance(v, (bool, int, str)):
		return v
	if isinstance(v, bytes):
		return v.decode("utf-8", errors="replace").rstrip("\x00")
	if isinstance(v, (list, tuple)):
		return [_jsonable(x) for x in v]
	try:
		f = float(v)
	except Exception:
		return str(v)
	# NaN/inf (e.g. a zero-denominator rational) is not valid JSON
	return f if math.isfinite(f) else None


class OperationToken:
	"""Identifies one load or transform; invalidated as soon as a newer one starts."""

	def __init__(self, serial: int) -> None:
		self.serial = serial
		self._valid = True

	@property
	def valid(self) -> bool:
		return self._valid

	def invalidate(self) -> None:
		self._valid = False

	def __repr__(self) -> str:
		return f"OperationToken({self.serial}, valid={self._valid})"


class MetadataStore:
	"""Single slot holding the snapshot of the image currently on display."""

	def __init__(self) -> None:
		self._current = MetadataSnapshot()

	@property
	def current(self) -> MetadataSnapshot:
		return self._current

	def reset(self) -> MetadataSnapshot:
		self._current = MetadataSnapshot()
		return self._current

	def commit(self, snapshot: MetadataSnapshot, token: OperationToken) -> bool:
		if not token.valid:
			logger.debug("Dropping snapshot from superseded %r", token)
			return False
		self._current = snapshot
		return True
