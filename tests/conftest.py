import os

# Keep the app's import-time table creation away from the real database file.
os.environ.setdefault("IMAGE_PASSWORD_DATABASE_URL", "sqlite://")

import pytest
from PIL import Image, ImageDraw, ImageOps

from tests.helpers import half_image, to_png


@pytest.fixture
def half_png() -> bytes:
    return to_png(half_image())


@pytest.fixture
def inverted_half_png() -> bytes:
    return to_png(ImageOps.invert(half_image()))


@pytest.fixture
def photo_png() -> bytes:
    """A busier picture: gradient background with a few blocks on it."""
    image = Image.new("RGB", (120, 90))
    pixels = image.load()
    for x in range(120):
        for y in range(90):
            pixels[x, y] = (x * 2, y * 2, (x + y) % 256)
    draw = ImageDraw.Draw(image)
    draw.rectangle((10, 10, 40, 30), fill=(250, 240, 10))
    draw.ellipse((60, 40, 110, 85), fill=(20, 30, 200))
    return to_png(image)


@pytest.fixture
def bomb_png(monkeypatch) -> bytes:
    """A PNG whose declared size exceeds Pillow's decompression-bomb limit."""
    data = to_png(Image.new("1", (64, 64)))
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
    return data
