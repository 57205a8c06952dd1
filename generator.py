import hashlib
import io
import logging
from collections import namedtuple
from typing import List, Tuple

from PIL import Image, ImageDraw

from config import CANVAS_WIDTH, CANVAS_HEIGHT
from errors import GenerationError

logger = logging.getLogger(__name__)

# Everything below is a storage format: previously downloaded password
# images must re-render identically, so the shape count, draw order,
# byte indices and color formulas must not change.
DIGEST_SIZE = 32
BASE_SHAPES = 20
EXTRA_SHAPES = 30
NUM_LINES = 5
SHAPE_ALPHA = 178  # 0.7 opacity
MIN_SHAPE_SIZE = 10
SHAPE_SIZE_RANGE = 50

CIRCLE, RECTANGLE, TRIANGLE = 0, 1, 2

Shape = namedtuple("Shape", ["kind", "x", "y", "size", "color"])
Stroke = namedtuple("Stroke", ["start", "end", "color"])


class Layout(namedtuple("Layout", ["background", "shapes", "stroke_width", "strokes"])):
    """Everything drawn for one seed, in draw order."""


def seed_values(seed: str) -> List[int]:
    """The 32 bytes of sha256(seed), as ints in 0..255."""
    if not isinstance(seed, str) or not seed:
        raise GenerationError("Seed must be a non-empty string")
    return list(hashlib.sha256(seed.encode("utf-8")).digest())


def _byte(values: List[int], index: int) -> int:
    return values[index % DIGEST_SIZE]


def _scale(value: int, extent: int) -> int:
    """Map a byte onto [0, extent)."""
    return value * extent // 256


def _color(values: List[int], start: int) -> Tuple[int, int, int, int]:
    return (
        _byte(values, start),
        _byte(values, start + 1),
        _byte(values, start + 2),
        SHAPE_ALPHA,
    )


def layout(seed: str, width: int = CANVAS_WIDTH, height: int = CANVAS_HEIGHT) -> Layout:
    """
    Drawing instructions for a seed.

    1. Background: rgb(values[0], values[1], values[2]).
    2. 20 + values[3] % 30 shapes. Shape i takes its color from bytes
       3i..3i+2, its kind (circle, square, upward triangle) from byte i+4,
       its position from bytes 2i and 2i+1 and its size (10..60) from
       byte i+5, all indices modulo 32, painted at 0.7 opacity.
    3. Five line strokes, width 2 + values[11] % 4. Stroke j takes its
       endpoints from bytes 12+4j..15+4j and its color from bytes j+20..j+22.
    """
    values = seed_values(seed)

    shapes = []
    for i in range(BASE_SHAPES + values[3] % EXTRA_SHAPES):
        shapes.append(Shape(
            kind=_byte(values, i + 4) % 3,
            x=_scale(_byte(values, i * 2), width),
            y=_scale(_byte(values, i * 2 + 1), height),
            size=MIN_SHAPE_SIZE + _byte(values, i + 5) * SHAPE_SIZE_RANGE // 255,
            color=_color(values, i * 3),
        ))

    strokes = []
    for j in range(NUM_LINES):
        offset = 12 + j * 4
        strokes.append(Stroke(
            start=(_scale(_byte(values, offset), width), _scale(_byte(values, offset + 1), height)),
            end=(_scale(_byte(values, offset + 2), width), _scale(_byte(values, offset + 3), height)),
            color=_color(values, 20 + j),
        ))

    return Layout(
        background=tuple(values[:3]),
        shapes=shapes,
        stroke_width=2 + values[11] % 4,
        strokes=strokes,
    )


def _draw_shape(draw, shape):
    x, y, half = shape.x, shape.y, shape.size // 2
    if shape.kind == CIRCLE:
        draw.ellipse((x - half, y - half, x + half, y + half), fill=shape.color)
    elif shape.kind == RECTANGLE:
        draw.rectangle((x, y, x + shape.size, y + shape.size), fill=shape.color)
    else:
        draw.polygon(
            [(x, y - half), (x - half, y + half), (x + half, y + half)],
            fill=shape.color,
        )


def render_synthetic_image(
    seed: str,
    width: int = CANVAS_WIDTH,
    height: int = CANVAS_HEIGHT,
) -> Image.Image:
    """Draw the procedural image for a seed onto a fresh RGB canvas."""
    plan = layout(seed, width, height)

    canvas = Image.new("RGB", (width, height), color=plan.background)
    draw = ImageDraw.Draw(canvas, "RGBA")
    for shape in plan.shapes:
        _draw_shape(draw, shape)
    for stroke in plan.strokes:
        draw.line([stroke.start, stroke.end], fill=stroke.color, width=plan.stroke_width)

    logger.debug("Rendered %dx%d image with %d shapes", width, height, len(plan.shapes))
    return canvas


def encode_png(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG", optimize=False)
    return buffer.getvalue()


def generate_synthetic_image(
    seed: str,
    width: int = CANVAS_WIDTH,
    height: int = CANVAS_HEIGHT,
) -> bytes:
    """PNG bytes of the procedural image for `seed`."""
    return encode_png(render_synthetic_image(seed, width, height))
