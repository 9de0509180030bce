import pytest

from tests.sample_images import CAMERA_EXIF, make_jpeg, make_png


@pytest.fixture
def alice_png():
    return make_png(200, 200, {"Author": "Alice"})


@pytest.fixture
def camera_jpeg():
    return make_jpeg(exif=CAMERA_EXIF)
