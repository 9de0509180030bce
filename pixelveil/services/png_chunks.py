from __future__ import annotations

import logging
import struct
import zlib
from dataclasses import dataclass
from typing import Dict, Iterator, Mapping, Optional

logger = logging.getLogger(__name__)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"

# length + type in front of the data, crc behind it
_HEADER = struct.Struct(">L4s")
_CRC = struct.Struct(">L")
CHUNK_OVERHEAD = _HEADER.size + _CRC.size


@dataclass
class ChunkRecord:
	offset: int
	length: int
	type: bytes
	data: bytes
	crc: int


def is_png(data: bytes) -> bool:
	return data[: len(PNG_SIGNATURE)] == PNG_SIGNATURE


def crc32(data: bytes) -> int:
	"""CRC-32 (reflected 0xEDB88320, seed and final xor 0xFFFFFFFF)."""
	return zlib.crc32(data) & 0xFFFFFFFF


def _walk(data: bytes, with_body: bool = True) -> Iterator[ChunkRecord]:
	offset = len(PNG_SIGNATURE)
	size = len(data)
	while offset + _HEADER.size <= size:
		length, ctype = _HEADER.unpack_from(data, offset)
		end = offset + CHUNK_OVERHEAD + length
		if end > size:
			# declared length runs past the buffer: stop instead of reading out of range
			logger.debug("Chunk %r at %d overruns buffer (%d > %d)", ctype, offset, end, size)
			return
		body = data[offset + _HEADER.size: end - _CRC.size] if with_body else b""
		(crc,) = _CRC.unpack_from(data, end - _CRC.size)
		yield ChunkRecord(offset=offset, length=length, type=ctype, data=body, crc=crc)
		if ctype == b"IEND":
			return
		offset = end


def iter_chunks(data: bytes) -> Iterator[ChunkRecord]:
	if not is_png(data):
		return iter(())
	return _walk(data)


def _split_keyword(body: bytes) -> tuple:
	nul = body.find(b"\x00")
	if nul < 0:
		return body.decode("latin-1"), b""
	return body[:nul].decode("latin-1"), body[nul + 1:]


def _skip_cstring(body: bytes, pos: int) -> int:
	nul = body.find(b"\x00", pos)
	return len(body) if nul < 0 else nul + 1


def _parse_itxt(body: bytes) -> tuple:
	keyword, rest = _split_keyword(body)
	if len(rest) < 2:
		return keyword, ""
	compressed, method = rest[0], rest[1]
	pos = _skip_cstring(rest, 2)  # language tag
	pos = _skip_cstring(rest, pos)  # translated keyword
	payload = rest[pos:]
	if compressed and method == 0:
		payload = zlib.decompress(payload)
	return keyword, payload.decode("utf-8", errors="replace")


def decode_text_chunks(data: bytes) -> Optional[Dict[str, str]]:
	"""Collect tEXt/iTXt entries; None for non-PNG input or when nothing is found."""
	if not is_png(data):
		logger.info("Not a PNG stream, skipping text chunk extraction")
		return None
	entries: Dict[str, str] = {}
	try:
		for chunk in _walk(data):
			if chunk.type == b"tEXt":
				keyword, text = _split_keyword(chunk.data)
				entries[keyword] = text.decode("latin-1")
			elif chunk.type == b"iTXt":
				keyword, text = _parse_itxt(chunk.data)
				entries[keyword] = text
	except Exception as e:
		logger.warning("PNG text extraction stopped early: %s", e)
	if not entries:
		logger.info("No tEXt/iTXt metadata in PNG stream")
		return None
	logger.info("Extracted %d PNG text entries", len(entries))
	return entries


def _encode_text(value: str) -> bytes:
	try:
		return value.encode("latin-1")
	except UnicodeEncodeError:
		return value.encode("utf-8")


def build_text_chunk(keyword: str, text: str) -> bytes:
	body = _encode_text(keyword) + b"\x00" + _encode_text(text)
	ctype = b"tEXt"
	return _HEADER.pack(len(body), ctype) + body + _CRC.pack(crc32(ctype + body))


def find_insert_offset(data: bytes) -> Optional[int]:
	"""Offset of the first IDAT chunk (IEND as a fallback), scanning headers only."""
	fallback = None
	for chunk in _walk(data, with_body=False):
		if chunk.type == b"IDAT":
			return chunk.offset
		if chunk.type == b"IEND":
			fallback = chunk.offset
	return fallback


def inject_text_chunks(data: bytes, entries: Optional[Mapping[str, str]]) -> bytes:
	if not entries:
		return data
	if not is_png(data):
		logger.warning("Refusing to inject text chunks into a non-PNG stream")
		return data
	try:
		offset = find_insert_offset(data)
		if offset is None:
			logger.warning("No IDAT/IEND chunk found, PNG left unchanged")
			return data
		new_chunks = b"".join(build_text_chunk(k, v) for k, v in entries.items())
	except Exception as e:
		logger.error("Injecting PNG metadata failed: %s", e)
		return data
	logger.info("Injected %d tEXt chunks at offset %d", len(entries), offset)
	return data[:offset] + new_chunks + data[offset:]
