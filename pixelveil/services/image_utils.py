from __future__ import annotations

import base64
from io import BytesIO
from typing import Tuple

from PIL import ExifTags, Image

MEDIA_TYPES = {"png": "image/png", "jpeg": "image/jpeg"}


def apply_exif_orientation(img: Image.Image, exif) -> Image.Image:
	orientation = None
	if exif:
		tmp = {}
		for tag_id, value in exif.items():
			tag = ExifTags.TAGS.get(tag_id, tag_id)
			tmp[str(tag)] = value
		orientation = tmp.get("Orientation")
	if orientation is None:
		return img
	try:
		o = int(orientation)
	except Exception:
		return img
	if o == 1:
		return img
	if o == 2:
		return img.transpose(Image.FLIP_LEFT_RIGHT)
	if o == 3:
		return img.rotate(180, expand=True)
	if o == 4:
		return img.transpose(Image.FLIP_TOP_BOTTOM)
	if o == 5:
		return img.transpose(Image.FLIP_LEFT_RIGHT).rotate(90, expand=True)
	if o == 6:
		return img.rotate(270, expand=True)
	if o == 7:
		return img.transpose(Image.FLIP_LEFT_RIGHT).rotate(270, expand=True)
	if o == 8:
		return img.rotate(90, expand=True)
	return img


def decode_image(data: bytes) -> Image.Image:
	img = Image.open(BytesIO(data))
	img.load()
	return img


def to_canvas(img: Image.Image) -> Image.Image:
	"""Pixels as a browser canvas draws them: EXIF orientation applied."""
	return apply_exif_orientation(img, img.getexif())


def encode_surface(surface: Image.Image, fmt: str, jpeg_quality: int = 95) -> bytes:
	buf = BytesIO()
	if fmt == "png":
		surface.save(buf, format="PNG")
	else:
		if surface.mode != "RGB":
			surface = surface.convert("RGB")
		surface.save(buf, format="JPEG", quality=jpeg_quality)
	return buf.getvalue()


def bytes_to_data_url(data: bytes, media_type: str) -> str:
	return "data:{};base64,{}".format(media_type, base64.b64encode(data).decode("ascii"))


def data_url_to_bytes(data_url: str) -> Tuple[str, bytes]:
	header, _, payload = data_url.partition(",")
	if not header.startswith("data:") or ";base64" not in header:
		raise ValueError("not a base64 data URL")
	media_type = header[len("data:"):].split(";", 1)[0] or "application/octet-stream"
	return media_type, base64.b64decode(payload)
