"""Image preparation before sending photos to the model.

Phone photos arrive large and often rotated via an EXIF tag. Before
classification they are turned upright, capped to ``AI_MAX_IMAGE_WIDTH`` on
the longest edge (never enlarged) and re-encoded as JPEG at
``AI_JPEG_QUALITY``. If Pillow cannot read the data, the original bytes are
sent unchanged.
"""

import asyncio
import io
import logging

from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)


def prepare_image_sync(data: bytes, max_dim: int = 1024, quality: int = 78) -> bytes:
    """Orient, downscale and JPEG-encode an image.

    Args:
        data: Original image bytes (any format Pillow reads)
        max_dim: Longest edge after resizing
        quality: JPEG quality (1-95)

    Returns:
        JPEG bytes, or ``data`` unchanged if it is not a readable image
    """
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        logger.warning("Image preparation failed; sending original | error=%s", e)
        return data

    # Camera photos often store pixels sideways with a rotation tag
    img = ImageOps.exif_transpose(img) or img

    w, h = img.size
    if max(w, h) > max_dim:
        scale = max_dim / max(w, h)
        new_w, new_h = max(1, int(w * scale)), max(1, int(h * scale))
        img = img.resize((new_w, new_h), Image.LANCZOS)
        logger.debug("Resized image %dx%d -> %dx%d", w, h, new_w, new_h)

    if img.mode != "RGB":
        img = img.convert("RGB")

    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


async def prepare_image(data: bytes, max_dim: int = 1024, quality: int = 78) -> bytes:
    """Async wrapper running ``prepare_image_sync`` in a worker thread."""
    return await asyncio.to_thread(prepare_image_sync, data, max_dim, quality)
