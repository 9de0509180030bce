from __future__ import annotations

import logging
import uuid
from collections import Counter
from typing import Dict, Tuple

logger = logging.getLogger(__name__)

BLOB_SCHEME = "blob:"


class ResourceStore:
	"""Process-local blob URLs: in-memory bytes addressed by a revocable ``blob:`` URL."""

	def __init__(self) -> None:
		self._blobs: Dict[str, Tuple[bytes, str]] = {}
		self.revocations: Counter = Counter()

	def create_object_url(self, data: bytes, media_type: str) -> str:
		url = f"{BLOB_SCHEME}{uuid.uuid4()}"
		self._blobs[url] = (data, media_type)
		logger.debug("Created %s (%s, %d bytes)", url, media_type, len(data))
		return url

	def revoke_object_url(self, url: str) -> None:
		if self._blobs.pop(url, None) is None:
			return
		self.revocations[url] += 1
		logger.debug("Revoked %s", url)

	def is_live(self, url: str) -> bool:
		return url in self._blobs

	def read(self, url: str) -> bytes:
		if url not in self._blobs:
			raise KeyError(f"{url} is not a live blob URL")
		return self._blobs[url][0]

	def media_type(self, url: str) -> str:
		if url not in self._blobs:
			raise KeyError(f"{url} is not a live blob URL")
		return self._blobs[url][1]

	def live_count(self) -> int:
		return len(self._blobs)
