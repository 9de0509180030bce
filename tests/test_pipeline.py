import asyncio
from io import BytesIO

import numpy as np
import piexif
import pytest
from PIL import Image

import pixelveil.services.display as display
import pixelveil.services.pipeline as pipeline
from pixelveil.services.display import OneShot
from pixelveil.services.errors import NoImageLoadedError, TransformError
from pixelveil.services.exif_bridge import read_exif_tags
from pixelveil.services.pipeline import PipelineOrchestrator, PipelineState
from pixelveil.services.png_chunks import decode_text_chunks
from pixelveil.services.snapshot import ImageFormat
from tests.sample_images import invert, make_jpeg, make_png


def _orchestrator(**kwargs):
    kwargs.setdefault("transforms", {"encrypt": invert, "decrypt": invert})
    return PipelineOrchestrator(**kwargs)


def _displayed(orch):
    return orch.resources.read(orch.current_resource)


def _pixels(data):
    return np.asarray(Image.open(BytesIO(data)).convert("RGB"), dtype=np.int16)


def test_one_shot_fires_once():
    calls = []
    handler = OneShot(calls.append)
    handler(1)
    handler(2)
    assert calls == [1]
    assert handler.fired and not handler.pending


def test_one_shot_cancel():
    calls = []
    handler = OneShot(calls.append)
    handler.cancel()
    handler(1)
    assert calls == [] and not handler.fired


def test_unknown_auto_action_rejected():
    with pytest.raises(ValueError):
        PipelineOrchestrator(auto_action="rot13")


@pytest.mark.asyncio
async def test_png_without_auto_action_is_shown_unchanged(alice_png):
    orch = _orchestrator()
    state = await orch.load_source(alice_png, preserve_metadata=True)
    assert state is PipelineState.READY
    assert orch.current_format is ImageFormat.PNG
    assert orch.current_metadata.png_text == {"Author": "Alice"}
    assert orch.current_metadata.exif_tags is None
    assert _displayed(orch) == alice_png
    assert orch.resources.media_type(orch.current_resource) == "image/png"
    assert decode_text_chunks(_displayed(orch)) == {"Author": "Alice"}
    assert orch.surface.visible and not orch.surface.processing
    assert orch.status["status"] == "ready"


@pytest.mark.asyncio
async def test_jpeg_detected_as_jpeg(camera_jpeg):
    orch = _orchestrator()
    await orch.load_source(camera_jpeg)
    assert orch.current_format is ImageFormat.JPEG
    assert orch.current_metadata.png_text is None
    assert orch.current_metadata.exif_tags["Make"] == "Canon"


@pytest.mark.asyncio
async def test_auto_encrypt_png_reinjects_text(alice_png):
    orch = _orchestrator(auto_action="encrypt")
    state = await orch.load_source(alice_png)
    assert state is PipelineState.READY
    out = _displayed(orch)
    assert out != alice_png
    assert decode_text_chunks(out) == {"Author": "Alice"}
    assert np.array_equal(_pixels(out), 255 - _pixels(alice_png))
    assert orch.resources.live_count() == 1


@pytest.mark.asyncio
async def test_auto_encrypt_jpeg_reinjects_exif(camera_jpeg):
    orch = _orchestrator(auto_action="encrypt")
    await orch.load_source(camera_jpeg)
    out = _displayed(orch)
    assert orch.resources.media_type(orch.current_resource) == "image/jpeg"
    loaded = piexif.load(out)
    assert loaded["0th"][piexif.ImageIFD.Make] == b"Canon"
    assert loaded["Exif"][piexif.ExifIFD.ISOSpeedRatings] == 200
    assert loaded["GPS"][piexif.GPSIFD.GPSLongitude] == ((139, 1), (45, 1), (0, 1))


@pytest.mark.asyncio
async def test_metadata_not_extracted_when_preservation_off(alice_png):
    orch = _orchestrator(auto_action="encrypt")
    await orch.load_source(alice_png, preserve_metadata=False)
    assert orch.current_metadata.png_text is None
    assert decode_text_chunks(_displayed(orch)) is None


@pytest.mark.asyncio
async def test_skip_auto_action_shows_source_directly(alice_png):
    calls = []
    orch = _orchestrator(auto_action="encrypt", transforms={"encrypt": lambda img: calls.append(img) or img})
    state = await orch.load_source(alice_png, skip_auto_action=True)
    assert state is PipelineState.READY
    assert calls == []
    assert orch.current_metadata.png_text is None
    assert _displayed(orch) == alice_png


@pytest.mark.asyncio
async def test_extraction_completes_before_transform(monkeypatch, alice_png):
    events = []
    real_decode_text = pipeline.decode_text_chunks
    real_decode_image = display.decode_image

    def png_text(data):
        events.append("png-text")
        return real_decode_text(data)

    def decode(data):
        events.append("decode")
        return real_decode_image(data)

    def reader(image):
        events.append("exif")
        return read_exif_tags(image)

    async def encrypt(image):
        events.append("transform")
        await asyncio.sleep(0)
        return invert(image)

    monkeypatch.setattr(pipeline, "decode_text_chunks", png_text)
    monkeypatch.setattr(display, "decode_image", decode)
    orch = _orchestrator(auto_action="encrypt", transforms={"encrypt": encrypt}, exif_reader=reader)
    await orch.load_source(alice_png, preserve_metadata=True)
    source_events = events[: events.index("transform") + 1]
    assert source_events == ["png-text", "decode", "exif", "transform"]
    assert events.count("transform") == 1
    assert orch.state is PipelineState.READY


@pytest.mark.asyncio
async def test_loading_b_revokes_a_exactly_once(alice_png, camera_jpeg):
    orch = _orchestrator()
    await orch.load_source(alice_png)
    url_a = orch.current_resource
    await orch.load_source(camera_jpeg)
    url_b = orch.current_resource
    assert url_a != url_b
    assert orch.resources.revocations[url_a] == 1
    assert orch.resources.revocations[url_b] == 0
    assert orch.resources.is_live(url_b)
    assert not orch.resources.is_live(url_a)
    # a snapshot never leaks across images
    assert orch.current_metadata.png_text is None
    assert orch.current_format is ImageFormat.JPEG


@pytest.mark.asyncio
async def test_superseded_load_never_fires_its_handler(alice_png, camera_jpeg):
    transformed = []

    def encrypt(image):
        transformed.append(image.size)
        return invert(image)

    orch = _orchestrator(auto_action="encrypt", transforms={"encrypt": encrypt})
    await asyncio.gather(orch.load_source(alice_png), orch.load_source(camera_jpeg))
    assert transformed == [(64, 48)]
    assert orch.current_format is ImageFormat.JPEG
    assert orch.current_metadata.png_text is None
    assert orch.resources.live_count() == 1
    assert orch.state is PipelineState.READY


@pytest.mark.asyncio
async def test_transform_failure_is_surfaced_and_recoverable(alice_png):
    messages = []

    def broken(image):
        raise RuntimeError("key mismatch")

    orch = _orchestrator(auto_action="decrypt", transforms={"decrypt": broken}, on_error=messages.append)
    state = await orch.load_source(alice_png)
    assert state is PipelineState.ERROR
    assert messages and "key mismatch" in messages[0]
    assert orch.status["error"] == messages[0]
    assert not orch.surface.processing

    orch.auto_action = "none"
    assert await orch.load_source(alice_png) is PipelineState.READY
    assert orch.last_error is None


@pytest.mark.asyncio
async def test_missing_transform_is_an_error(alice_png):
    orch = PipelineOrchestrator(auto_action="encrypt")
    assert await orch.load_source(alice_png) is PipelineState.ERROR
    assert "No encrypt transform configured" in orch.last_error


@pytest.mark.asyncio
async def test_undecodable_source_is_an_error():
    orch = _orchestrator()
    assert await orch.load_source(b"\x89PNG\r\n\x1a\nnot really a png") is PipelineState.ERROR


@pytest.mark.asyncio
async def test_manual_transform_from_ready(alice_png):
    orch = _orchestrator()
    await orch.load_source(alice_png)
    source_url = orch.current_resource
    state = await orch.apply_transform("encrypt")
    assert state is PipelineState.READY
    assert orch.resources.revocations[source_url] == 1
    out = _displayed(orch)
    assert decode_text_chunks(out) == {"Author": "Alice"}

    # decrypting the encrypted surface restores the pixels and keeps the metadata
    await orch.apply_transform("decrypt")
    restored = _displayed(orch)
    assert np.array_equal(_pixels(restored), _pixels(alice_png))
    assert decode_text_chunks(restored) == {"Author": "Alice"}
    assert orch.resources.live_count() == 1


@pytest.mark.asyncio
async def test_manual_transform_without_image():
    orch = _orchestrator()
    with pytest.raises(NoImageLoadedError):
        await orch.apply_transform("encrypt")


@pytest.mark.asyncio
async def test_manual_transform_failure_raises(alice_png):
    def broken(image):
        raise RuntimeError("boom")

    orch = _orchestrator(transforms={"encrypt": broken})
    await orch.load_source(alice_png)
    with pytest.raises(TransformError, match="boom"):
        await orch.apply_transform("encrypt")
    assert orch.state is PipelineState.ERROR


@pytest.mark.asyncio
async def test_jpeg_output_without_encoder_has_no_exif(camera_jpeg):
    orch = _orchestrator(auto_action="encrypt", exif_encoder=None)
    await orch.load_source(camera_jpeg)
    assert piexif.load(_displayed(orch))["0th"] == {}


@pytest.mark.asyncio
async def test_exif_orientation_applied_before_transform():
    exif = {"0th": {piexif.ImageIFD.Orientation: 6}}
    seen = []

    def encrypt(image):
        seen.append(image.size)
        return image

    orch = _orchestrator(auto_action="encrypt", transforms={"encrypt": encrypt})
    await orch.load_source(make_jpeg(64, 48, exif=exif))
    assert seen == [(48, 64)]


@pytest.mark.asyncio
async def test_png_without_text_stays_png_after_transform():
    orch = _orchestrator(auto_action="encrypt")
    await orch.load_source(make_png(16, 16))
    assert orch.current_metadata.png_text is None
    assert _displayed(orch).startswith(b"\x89PNG")
