# image_normalizer.py
import tempfile
from io import BytesIO

from PIL import Image, ImageOps, UnidentifiedImageError

from errors import ImageDecodeError
from utils import get_logger

log = get_logger("image_normalizer")

START_QUALITY = 60
QUALITY_STEP = 15
MIN_QUALITY = 40


def _mb(size: int) -> float:
    return round(size / 1024.0 / 1024.0, 2)


def _open_image(image_bytes: bytes) -> Image.Image:
    try:
        img = Image.open(BytesIO(image_bytes))
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise ImageDecodeError(f"Cannot decode receipt image: {e}") from e
    img = ImageOps.exif_transpose(img)
    if img.mode != "RGB":
        img = img.convert("RGB")
    return img


def _encode_jpeg(img: Image.Image, quality: int) -> bytes:
    # Encode through a scratch file that is always removed when we're done with it
    with tempfile.TemporaryFile(prefix="compressed_receipt", suffix=".jpg") as scratch:
        img.save(scratch, format="JPEG", quality=quality, optimize=True)
        scratch.seek(0)
        return scratch.read()


def normalize(image_bytes: bytes, max_size_bytes: int, max_dimension: int) -> bytes:
    """
    Make sure an image payload fits under a provider's size limit.

    Small payloads are returned untouched. Larger ones are fit inside
    max_dimension x max_dimension and re-encoded as JPEG at decreasing quality
    until they fit or the quality floor is reached; the last attempt is
    accepted even if it is still too large.
    """
    size = len(image_bytes)
    if size <= max_size_bytes:
        log.info(f"Image size OK: {_mb(size)}MB")
        return image_bytes

    log.info(f"Image too large ({_mb(size)}MB), compressing...")
    img = _open_image(image_bytes)
    img.thumbnail((max_dimension, max_dimension), Image.LANCZOS)

    quality = START_QUALITY
    while True:
        result = _encode_jpeg(img, quality)
        log.info(f"Compressed to {_mb(len(result))}MB at quality {quality}")
        if len(result) <= max_size_bytes or quality <= MIN_QUALITY:
            return result
        quality = max(MIN_QUALITY, quality - QUALITY_STEP)


def normalized_mime_type(original: bytes, normalized: bytes, mime_type: str) -> str:
    """Re-encoded payloads are always JPEG, whatever was uploaded."""
    return mime_type if normalized is original else "image/jpeg"
