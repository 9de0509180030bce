from __future__ import annotations

import asyncio
import io
import logging
from fractions import Fraction
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import piexif
from PIL import ExifTags, Image

from pixelveil.services.image_utils import bytes_to_data_url, data_url_to_bytes

logger = logging.getLogger(__name__)

EXIF_IFD_POINTER = 0x8769
GPS_IFD_POINTER = 0x8825

ExifReader = Callable[[Image.Image], Optional[Dict[str, Any]]]


def _rational_to_float(x: Any) -> Optional[float]:
	if x is None:
		return None
	if isinstance(x, tuple) and len(x) == 2:
		num, den = x
		if not den:
			return None
		return float(num) / float(den)
	try:
		return float(x)
	except Exception:
		return None


def _bytes_to_str(v: Any) -> Optional[str]:
	if v is None:
		return None
	if isinstance(v, bytes):
		try:
			return v.decode("utf-8", errors="ignore")
		except Exception:
			return None
	if isinstance(v, str):
		return v
	return str(v)


def _to_int_safe(v: Any) -> Optional[int]:
	if v is None:
		return None
	if isinstance(v, (int,)):
		return v
	if isinstance(v, (list, tuple)) and v:
		try:
			return int(v[0])
		except Exception:
			return None
	if isinstance(v, bytes):
		try:
			s = v.decode("utf-8", errors="ignore").strip()
			return int(s) if s else None
		except Exception:
			return None
	try:
		return int(v)
	except Exception:
		return None


def _to_ascii(v: Any) -> Optional[bytes]:
	s = _bytes_to_str(v)
	if s is None:
		return None
	s = s.rstrip("\x00")
	return s.encode("utf-8") if s else None


def _to_rational(x: Any) -> Optional[Tuple[int, int]]:
	if x is None:
		return None
	if isinstance(x, tuple) and len(x) == 2:
		num, den = x
		if not den:
			return None
		return (int(num), int(den))
	num = getattr(x, "numerator", None)
	den = getattr(x, "denominator", None)
	if isinstance(num, int) and isinstance(den, int):
		return (num, den) if den else None
	f = _rational_to_float(x)
	if f is None or f != f:
		return None
	frac = Fraction(f).limit_denominator(1000000)
	return (frac.numerator, frac.denominator)


def _to_gps_coordinate(v: Any) -> Optional[Tuple[Tuple[int, int], ...]]:
	if isinstance(v, (list, tuple)) and len(v) == 3:
		parts = tuple(_to_rational(p) for p in v)
		return None if any(p is None for p in parts) else parts
	# decimal degrees
	f = _rational_to_float(v)
	if f is None:
		return None
	f = abs(f)
	degrees = int(f)
	minutes = int((f - degrees) * 60)
	seconds = round((f - degrees - minutes / 60.0) * 3600 * 100)
	return ((degrees, 1), (minutes, 1), (seconds, 100))


# tag name -> (piexif IFD, tag id, value converter)
WHITELIST: Dict[str, Tuple[str, int, Callable[[Any], Any]]] = {
	"Make": ("0th", piexif.ImageIFD.Make, _to_ascii),
	"Model": ("0th", piexif.ImageIFD.Model, _to_ascii),
	"Software": ("0th", piexif.ImageIFD.Software, _to_ascii),
	"DateTime": ("0th", piexif.ImageIFD.DateTime, _to_ascii),
	"Artist": ("0th", piexif.ImageIFD.Artist, _to_ascii),
	"Copyright": ("0th", piexif.ImageIFD.Copyright, _to_ascii),
	"DateTimeOriginal": ("Exif", piexif.ExifIFD.DateTimeOriginal, _to_ascii),
	"DateTimeDigitized": ("Exif", piexif.ExifIFD.DateTimeDigitized, _to_ascii),
	"ExposureTime": ("Exif", piexif.ExifIFD.ExposureTime, _to_rational),
	"FNumber": ("Exif", piexif.ExifIFD.FNumber, _to_rational),
	"ISO": ("Exif", piexif.ExifIFD.ISOSpeedRatings, _to_int_safe),
	"FocalLength": ("Exif", piexif.ExifIFD.FocalLength, _to_rational),
	"LensModel": ("Exif", piexif.ExifIFD.LensModel, _to_ascii),
	"GPSLatitude": ("GPS", piexif.GPSIFD.GPSLatitude, _to_gps_coordinate),
	"GPSLongitude": ("GPS", piexif.GPSIFD.GPSLongitude, _to_gps_coordinate),
}
# Pillow names the ISO tag after the EXIF 2.2 field
TAG_ALIASES = {"ISOSpeedRatings": "ISO"}


def read_exif_tags(image: Image.Image) -> Optional[Dict[str, Any]]:
	"""Flatten the 0th, Exif and GPS IFDs of a decoded image into name -> value."""
	exif = image.getexif()
	tags: Dict[str, Any] = {}
	for tag_id, value in exif.items():
		if tag_id in (EXIF_IFD_POINTER, GPS_IFD_POINTER):
			continue
		tags[str(ExifTags.TAGS.get(tag_id, tag_id))] = value
	for tag_id, value in exif.get_ifd(EXIF_IFD_POINTER).items():
		tags[str(ExifTags.TAGS.get(tag_id, tag_id))] = value
	for tag_id, value in exif.get_ifd(GPS_IFD_POINTER).items():
		tags[str(ExifTags.GPSTAGS.get(tag_id, tag_id))] = value
	return tags or None


async def extract_exif(image: Image.Image, reader: Optional[ExifReader] = read_exif_tags) -> Optional[Dict[str, Any]]:
	if reader is None:
		logger.warning("EXIF reader unavailable, skipping tag extraction")
		return None
	loop = asyncio.get_running_loop()
	done: asyncio.Future = loop.create_future()

	def _on_ready() -> None:
		if done.done():
			return
		try:
			tags = reader(image)
		except Exception as e:
			logger.error("EXIF extraction failed: %s", e)
			done.set_result(None)
			return
		done.set_result(tags or None)

	loop.call_soon(_on_ready)
	tags = await done
	if tags:
		logger.info("Extracted %d EXIF tags", len(tags))
	else:
		logger.info("Image carries no EXIF tags")
	return tags


def build_exif_dict(tags: Mapping[str, Any]) -> Dict[str, Any]:
	exif_dict: Dict[str, Any] = {"0th": {}, "Exif": {}, "GPS": {}, "Interop": {}, "1st": {}, "thumbnail": None}
	for name, value in tags.items():
		entry = WHITELIST.get(TAG_ALIASES.get(name, name))
		if entry is None or value is None:
			continue
		ifd, tag_id, convert = entry
		converted = convert(value)
		if converted is None:
			continue
		exif_dict[ifd][tag_id] = converted
	return exif_dict


def inject_exif(jpeg: bytes, tags: Optional[Mapping[str, Any]], encoder: Any = piexif) -> bytes:
	if encoder is None:
		logger.warning("EXIF encoder unavailable, JPEG left unchanged")
		return jpeg
	if not tags:
		return jpeg
	try:
		exif_bytes = encoder.dump(build_exif_dict(tags))
		out = io.BytesIO()
		encoder.insert(exif_bytes, jpeg, out)
		data = out.getvalue()
	except Exception as e:
		logger.error("Injecting EXIF failed: %s", e)
		return jpeg
	logger.info("EXIF segment injected (%d bytes)", len(exif_bytes))
	return data


def inject_exif_to_data_url(data_url: str, tags: Optional[Mapping[str, Any]], encoder: Any = piexif) -> str:
	if encoder is None or not tags:
		return data_url
	try:
		media_type, jpeg = data_url_to_bytes(data_url)
	except Exception as e:
		logger.error("Unreadable data URL, EXIF not injected: %s", e)
		return data_url
	injected = inject_exif(jpeg, tags, encoder)
	if injected is jpeg:
		return data_url
	return bytes_to_data_url(injected, media_type)
