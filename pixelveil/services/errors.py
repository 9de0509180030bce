from __future__ import annotations


class PixelVeilError(Exception):
	pass


class TransformError(PixelVeilError):
	"""The pixel transform rejected the image or is not configured."""


class NoImageLoadedError(PixelVeilError):
	pass
