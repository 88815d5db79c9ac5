"""Raster operations on product photos (Pillow)."""

import io
from dataclasses import dataclass

from PIL import Image, ImageOps, UnidentifiedImageError

from vitrine.services.exceptions import NonRetryableError

MAX_DIMENSION = 1024
PORTRAIT_WIDTH = 768
PORTRAIT_HEIGHT = 1024

TARGET_SIZE_KB = 300
MAX_QUALITY = 85
MIN_QUALITY = 65
QUALITY_STEP = 5


@dataclass(frozen=True)
class ExportFormat:
    tag: str
    width: int
    height: int


STORY = ExportFormat("story", 1080, 1920)  # 9:16, WhatsApp status
SQUARE = ExportFormat("square", 1080, 1080)  # 1:1, Instagram feed
EXPORT_FORMATS = (STORY, SQUARE)


@dataclass
class EncodedImage:
    data: bytes
    content_type: str
    width: int
    height: int
    quality: int

    @property
    def size_kb(self) -> float:
        return len(self.data) / 1024


def open_image(data: bytes) -> Image.Image:
    """Decode bytes into an RGB image with EXIF orientation applied.

    Raises:
        NonRetryableError: BAD_IMAGE if the bytes are not a decodable image
    """
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise NonRetryableError(f"Cannot decode image: {e}", "BAD_IMAGE") from e

    image = ImageOps.exif_transpose(image)
    if image.mode != "RGB":
        image = image.convert("RGB")
    return image


def preprocess(data: bytes) -> EncodedImage:
    """Auto-rotate and downscale an input photo before generation. Never upscales.

    Portrait inputs are bounded to 768x1024, everything else to 1024 on the long side.
    """
    image = open_image(data)
    if image.height > image.width:
        bounds = (PORTRAIT_WIDTH, PORTRAIT_HEIGHT)
    else:
        bounds = (MAX_DIMENSION, MAX_DIMENSION)
    image.thumbnail(bounds, Image.Resampling.LANCZOS)

    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=90)
    return EncodedImage(
        data=buffer.getvalue(),
        content_type="image/jpeg",
        width=image.width,
        height=image.height,
        quality=90,
    )


def fit_cover(image: Image.Image, width: int, height: int) -> Image.Image:
    """Resize and center-crop to exactly width x height."""
    return ImageOps.fit(image, (width, height), method=Image.Resampling.LANCZOS)


def make_thumbnail(image: Image.Image, size: int) -> Image.Image:
    """Square center-cropped preview."""
    return ImageOps.fit(image, (size, size), method=Image.Resampling.LANCZOS)


def encode_webp(
    image: Image.Image,
    target_kb: int = TARGET_SIZE_KB,
    max_quality: int = MAX_QUALITY,
    min_quality: int = MIN_QUALITY,
) -> EncodedImage:
    """Encode as WebP, stepping quality down until the target size is met.

    Returns the minimum-quality encoding when no quality reaches the target.
    """
    target_bytes = target_kb * 1024
    data = b""
    quality = max_quality
    for quality in range(max_quality, min_quality - 1, -QUALITY_STEP):
        buffer = io.BytesIO()
        image.save(buffer, format="WEBP", quality=quality, method=4)
        data = buffer.getvalue()
        if len(data) <= target_bytes:
            break

    return EncodedImage(
        data=data,
        content_type="image/webp",
        width=image.width,
        height=image.height,
        quality=quality,
    )


def placeholder_image(color: str, width: int = MAX_DIMENSION, height: int = MAX_DIMENSION) -> bytes:
    """Solid-color PNG used when no model produced an output."""
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()
