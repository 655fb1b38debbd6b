"""Image normalization applied before text extraction."""

import io
import logging

from PIL import Image, ImageOps


logger = logging.getLogger(__name__)

DEFAULT_MAX_DIMENSION = 1800


def preprocess_image(data: bytes, max_dimension: int = DEFAULT_MAX_DIMENSION) -> bytes:
    """Normalize an image for OCR.

    Applies EXIF orientation, converts to grayscale, shrinks the image to fit
    inside ``max_dimension`` x ``max_dimension`` (never enlarges) and stretches
    contrast. The result is PNG encoded.

    Returns the original bytes if the image cannot be decoded or processed,
    including corrupt metadata such as a damaged EXIF block.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            img = ImageOps.exif_transpose(img)
            img = img.convert("L")
            img.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)
            img = ImageOps.autocontrast(img)

            buffer = io.BytesIO()
            img.save(buffer, format="PNG", compress_level=0)
            return buffer.getvalue()
    except Exception as e:
        logger.warning(f"Image preprocessing failed, using original bytes: {e}")
        return data
