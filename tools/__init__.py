"""I/O helpers used by the pipeline.

fetch_bytes:
    Fetch an attachment by URL or local path (SSL fallback, size cap).

prepare_image:
    EXIF-orient, downscale and JPEG-encode a photo with Pillow.

Transcriber:
    Speech-to-text for voice attachments via an OpenAI-compatible API.

Example:
    >>> from tools import fetch_bytes, prepare_image
    >>> data = await fetch_bytes("https://cdn.example.com/report/123.jpg")
    >>> jpeg = await prepare_image(data, max_dim=1024, quality=78)
"""

from tools.fetch import fetch_bytes, create_ssl_context, USER_AGENT
from tools.images import prepare_image, prepare_image_sync
from tools.transcribe import Transcriber, TranscriptionError

__all__ = [
    "fetch_bytes",
    "create_ssl_context",
    "USER_AGENT",
    "prepare_image",
    "prepare_image_sync",
    "Transcriber",
    "TranscriptionError",
]
