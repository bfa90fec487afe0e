"""Pillow helpers for normalising uploads and decoding generated frames."""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO

from PIL import Image, ImageOps, UnidentifiedImageError

from ..errors import ImagePreprocessError
from ..types import FramePayload

MAX_DIMENSION = 512


@dataclass(slots=True, frozen=True)
class PreparedImage:
    """A normalised upload ready to be sent to the image model."""

    payload: FramePayload
    width: int
    height: int
    has_transparency: bool


def scaled_size(width: int, height: int, max_dimension: int = MAX_DIMENSION) -> tuple[int, int]:
    """Fit ``(width, height)`` inside a ``max_dimension`` square, keeping the aspect ratio.

    Images already inside the bound are returned unchanged; nothing is upscaled.
    """
    if width <= max_dimension and height <= max_dimension:
        return width, height
    if width > height:
        return max_dimension, max(1, round(height * max_dimension / width))
    return max(1, round(width * max_dimension / height)), max_dimension


def has_transparent_corners(image: Image.Image) -> bool:
    """True only if all four corner pixels are fully transparent."""
    width, height = image.size
    if width == 0 or height == 0:
        return False
    if "A" not in image.getbands():
        return False
    rgba = image if image.mode == "RGBA" else image.convert("RGBA")
    corners = ((0, 0), (width - 1, 0), (0, height - 1), (width - 1, height - 1))
    return all(rgba.getpixel(point)[3] == 0 for point in corners)


def encode_png(image: Image.Image) -> bytes:
    output = BytesIO()
    image.save(output, format="PNG", optimize=True)
    return output.getvalue()


def preprocess_image(raw_bytes: bytes, max_dimension: int = MAX_DIMENSION) -> PreparedImage:
    """Decode, downscale and re-encode an uploaded character image as PNG.

    Raises ``ImagePreprocessError`` for empty, unreadable or zero-sized input.
    """
    if not raw_bytes:
        raise ImagePreprocessError("Could not read the selected file.")

    try:
        with Image.open(BytesIO(raw_bytes)) as opened:
            if getattr(opened, "n_frames", 1) > 1:
                opened.seek(0)
            opened.load()
            image = ImageOps.exif_transpose(opened)
            if image.width == 0 or image.height == 0:
                raise ImagePreprocessError("Could not process image: it has no pixels.")
            image = image.convert("RGBA")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise ImagePreprocessError("Could not load the selected image file.") from exc

    target = scaled_size(image.width, image.height, max_dimension)
    if target != image.size:
        image = image.resize(target, Image.LANCZOS)

    return PreparedImage(
        payload=FramePayload(data=encode_png(image), mime_type="image/png"),
        width=image.width,
        height=image.height,
        has_transparency=has_transparent_corners(image),
    )


def decode_frame(frame: FramePayload) -> Image.Image:
    """Decode a frame payload into a fully loaded RGBA image."""
    with Image.open(BytesIO(frame.data)) as opened:
        opened.load()
        return opened.convert("RGBA")


def as_png(frame: FramePayload) -> bytes:
    """Return the frame as PNG bytes, re-encoding other formats."""
    if frame.mime_type == "image/png":
        return frame.data
    return encode_png(decode_frame(frame))
