from __future__ import annotations

import asyncio
import functools
import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

import piexif
from PIL import Image

from pixelveil.services.display import DisplaySurface, OneShot
from pixelveil.services.errors import NoImageLoadedError, TransformError
from pixelveil.services.exif_bridge import ExifReader, extract_exif, inject_exif_to_data_url, read_exif_tags
from pixelveil.services.image_utils import (
	MEDIA_TYPES,
	bytes_to_data_url,
	data_url_to_bytes,
	encode_surface,
	to_canvas,
)
from pixelveil.services.png_chunks import decode_text_chunks, inject_text_chunks, is_png
from pixelveil.services.resource_store import ResourceStore
from pixelveil.services.snapshot import ImageFormat, MetadataSnapshot, MetadataStore, OperationToken

logger = logging.getLogger(__name__)

Transform = Callable[[Image.Image], Union[Image.Image, Awaitable[Image.Image]]]


class PipelineState(str, Enum):
	IDLE = "idle"
	LOADING = "loading"
	EXTRACTING_METADATA = "extracting_metadata"
	AUTO_TRANSFORMING = "auto_transforming"
	READY = "ready"
	ERROR = "error"


class TransformKind(str, Enum):
	ENCRYPT = "encrypt"
	DECRYPT = "decrypt"


AUTO_ACTIONS = ("none", "encrypt", "decrypt")


@dataclass
class LoadContext:
	token: OperationToken
	preserve_metadata: bool
	skip_auto_action: bool
	snapshot: MetadataSnapshot = field(default_factory=MetadataSnapshot)


class PipelineOrchestrator:
	"""Load -> extract -> (auto-)transform -> re-encode -> display, one image at a time."""

	def __init__(
		self,
		transforms: Optional[Mapping[str, Transform]] = None,
		auto_action: str = "none",
		jpeg_quality: int = 95,
		exif_reader: Optional[ExifReader] = read_exif_tags,
		exif_encoder: Any = piexif,
		resources: Optional[ResourceStore] = None,
		on_error: Optional[Callable[[str], None]] = None,
	) -> None:
		if auto_action not in AUTO_ACTIONS:
			raise ValueError(f"auto_action must be one of {AUTO_ACTIONS}, got {auto_action!r}")
		self.transforms: Dict[str, Transform] = dict(transforms or {})
		self.auto_action = auto_action
		self.jpeg_quality = jpeg_quality
		self.exif_reader = exif_reader
		self.exif_encoder = exif_encoder
		self.resources = resources or ResourceStore()
		self.surface = DisplaySurface(self.resources)
		self.store = MetadataStore()
		self.on_error = on_error
		self.state = PipelineState.IDLE
		self.status: Dict[str, Any] = {"status": self.state.value, "step": "Idle"}
		self.last_error: Optional[str] = None
		self._serial = 0
		self._token: Optional[OperationToken] = None

	# collaborator-facing surface

	@property
	def current_format(self) -> ImageFormat:
		return self.store.current.format

	@property
	def current_metadata(self) -> MetadataSnapshot:
		return self.store.current

	@property
	def current_resource(self) -> Optional[str]:
		return self.surface.src

	async def load_source(self, data: bytes, preserve_metadata: bool = True, skip_auto_action: bool = False) -> PipelineState:
		token = self._begin()
		self.store.reset()
		self.last_error = None
		self._write_status(PipelineState.LOADING, "Load Image")
		ctx = LoadContext(token=token, preserve_metadata=preserve_metadata, skip_auto_action=skip_auto_action)
		ctx.snapshot.format = ImageFormat.PNG if is_png(data) else ImageFormat.JPEG
		if self._extracts(ctx):
			# text chunks come from the raw bytes, before decode
			ctx.snapshot.png_text = decode_text_chunks(data)
		url = self.resources.create_object_url(data, MEDIA_TYPES[ctx.snapshot.format.value])
		self.surface.bind_handlers(
			OneShot(functools.partial(self._on_source_loaded, ctx)),
			OneShot(functools.partial(self._on_load_failed, token)),
		)
		await self.surface.assign(url)
		return self.state

	async def apply_transform(self, kind: Union[str, TransformKind]) -> PipelineState:
		kind = TransformKind(kind)
		image = self.surface.image
		if image is None:
			raise NoImageLoadedError("No image loaded")
		token = self._begin()
		try:
			await self._run_transform(token, kind, image, auto=False)
		except Exception as e:
			self._fail(token, e)
			raise TransformError(self.last_error or str(e)) from e
		return self.state

	# internals

	def _begin(self) -> OperationToken:
		if self._token is not None:
			self._token.invalidate()
		self._serial += 1
		self._token = OperationToken(self._serial)
		return self._token

	def _extracts(self, ctx: LoadContext) -> bool:
		return ctx.preserve_metadata and not ctx.skip_auto_action

	def _write_status(self, state: PipelineState, step: str, **extra: Any) -> None:
		self.state = state
		self.status = {
			"status": state.value,
			"step": step,
			"format": self.store.current.format.value,
			"resource": self.surface.src,
			**extra,
		}
		logger.debug("Pipeline %s: %s", state.value, step)

	async def _on_source_loaded(self, ctx: LoadContext, image: Image.Image) -> None:
		if not ctx.token.valid:
			return
		try:
			if self._extracts(ctx):
				self._write_status(PipelineState.EXTRACTING_METADATA, "Extract Metadata")
				ctx.snapshot.exif_tags = await extract_exif(image, self.exif_reader)
			if not self.store.commit(ctx.snapshot, ctx.token):
				return
			if ctx.skip_auto_action or self.auto_action == "none":
				self.surface.show()
				self._write_status(PipelineState.READY, "Done")
				return
			await self._run_transform(ctx.token, TransformKind(self.auto_action), image, auto=True)
		except Exception as e:
			self._fail(ctx.token, e)

	async def _on_load_failed(self, token: OperationToken, exc: Exception) -> None:
		self._fail(token, exc)

	async def _run_transform(self, token: OperationToken, kind: TransformKind, image: Image.Image, auto: bool) -> None:
		transform = self.transforms.get(kind.value)
		if transform is None:
			raise TransformError(f"No {kind.value} transform configured")
		self.surface.show_processing()
		step = kind.value.capitalize() if auto else f"{kind.value.capitalize()} (manual)"
		self._write_status(PipelineState.AUTO_TRANSFORMING, step)
		# yield once so the processing indicator is observable before the transform runs
		await asyncio.sleep(0)
		if not token.valid:
			return
		try:
			result = transform(to_canvas(image))
			if inspect.isawaitable(result):
				result = await result
		except Exception as e:
			raise TransformError(f"{kind.value} failed: {e}") from e
		if not token.valid:
			logger.info("Dropping %s output from superseded operation", kind.value)
			return
		data = self._reencode(result, self.store.current)
		url = self.resources.create_object_url(data, MEDIA_TYPES[self.store.current.format.value])
		self.surface.bind_handlers(
			OneShot(functools.partial(self._on_output_loaded, token)),
			OneShot(functools.partial(self._on_load_failed, token)),
		)
		await self.surface.assign(url)

	def _reencode(self, surface: Image.Image, snapshot: MetadataSnapshot) -> bytes:
		if snapshot.format is ImageFormat.PNG:
			return inject_text_chunks(encode_surface(surface, "png"), snapshot.png_text)
		data_url = bytes_to_data_url(encode_surface(surface, "jpeg", self.jpeg_quality), MEDIA_TYPES["jpeg"])
		data_url = inject_exif_to_data_url(data_url, snapshot.exif_tags, self.exif_encoder)
		return data_url_to_bytes(data_url)[1]

	async def _on_output_loaded(self, token: OperationToken, image: Image.Image) -> None:
		if not token.valid:
			return
		self.surface.show()
		self._write_status(PipelineState.READY, "Done")

	def _fail(self, token: OperationToken, exc: Exception) -> None:
		if not token.valid:
			logger.debug("Ignoring failure from superseded %r: %s", token, exc)
			return
		message = f"Error while processing image: {exc}"
		logger.error(message)
		self.surface.processing = False
		self.last_error = message
		self._write_status(PipelineState.ERROR, "Error", error=message)
		if self.on_error is not None:
			self.on_error(message)
