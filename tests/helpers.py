import io

from PIL import Image, ImageDraw


def to_png(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def half_image() -> Image.Image:
    """64x64, white left half, black right half."""
    image = Image.new("RGB", (64, 64), "black")
    ImageDraw.Draw(image).rectangle((0, 0, 31, 63), fill="white")
    return image
