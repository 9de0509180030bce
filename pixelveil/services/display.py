from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

from PIL import Image

from pixelveil.services.image_utils import decode_image
from pixelveil.services.resource_store import BLOB_SCHEME, ResourceStore

logger = logging.getLogger(__name__)


class OneShot:
	"""Callable wrapper that runs its callback at most once."""

	def __init__(self, callback: Callable[..., Any]) -> None:
		self._callback: Optional[Callable[..., Any]] = callback
		self.fired = False

	@property
	def pending(self) -> bool:
		return self._callback is not None

	def cancel(self) -> None:
		self._callback = None

	def __call__(self, *args: Any, **kwargs: Any) -> Any:
		if self._callback is None:
			return None
		callback, self._callback = self._callback, None
		self.fired = True
		return callback(*args, **kwargs)


async def _invoke(handler: Optional[OneShot], *args: Any) -> None:
	if handler is None:
		return
	result = handler(*args)
	if inspect.isawaitable(result):
		await result


class DisplaySurface:
	"""The visible image slot: one bound blob URL, its decoded pixels and the processing indicator."""

	def __init__(self, resources: ResourceStore) -> None:
		self.resources = resources
		self.src: Optional[str] = None
		self.image: Optional[Image.Image] = None
		self.visible = False
		self.processing = False
		self._on_load: Optional[OneShot] = None
		self._on_error: Optional[OneShot] = None

	def bind_handlers(self, on_load: OneShot, on_error: Optional[OneShot] = None) -> None:
		for old in (self._on_load, self._on_error):
			if old is not None:
				old.cancel()
		self._on_load = on_load
		self._on_error = on_error

	def show(self) -> None:
		self.processing = False
		self.visible = True

	def show_processing(self) -> None:
		self.visible = False
		self.processing = True

	def assign(self, url: str) -> "asyncio.Task[None]":
		"""Point the surface at ``url``, revoke the URL it replaces and start decoding."""
		previous = self.src
		self.src = url
		self.image = None
		if previous and previous != url and previous.startswith(BLOB_SCHEME):
			self.resources.revoke_object_url(previous)
		on_load, on_error = self._on_load, self._on_error
		return asyncio.get_running_loop().create_task(self._decode(url, on_load, on_error))

	async def _decode(self, url: str, on_load: Optional[OneShot], on_error: Optional[OneShot]) -> None:
		await asyncio.sleep(0)
		if self.src != url:
			logger.debug("Decode of %s superseded", url)
			return
		try:
			image = decode_image(self.resources.read(url))
		except Exception as e:
			logger.error("Image load failed for %s: %s", url, e)
			await _invoke(on_error, e)
			return
		if self.src != url:
			return
		self.image = image
		await _invoke(on_load, image)
