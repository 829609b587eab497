"""Byte fetching for report attachments.

Attachments are referenced by URL (object storage, CDN) or by local file
path. ``fetch_bytes`` resolves either form to raw bytes.

Features:
    - SSL fallback for problematic certificates
    - Size cap so a bad link cannot exhaust memory
    - Failures are logged and reported as None, never raised
"""

import asyncio
import logging
import ssl
from pathlib import Path
from urllib.parse import unquote, urlparse

import aiohttp
import certifi

logger = logging.getLogger(__name__)

USER_AGENT = "civic-triage/0.1 (+attachment-fetcher)"
MAX_ATTACHMENT_BYTES = 25 * 1024 * 1024


def create_ssl_context(verify: bool = True) -> ssl.SSLContext:
    """SSL context using the certifi bundle, or an unverified one."""
    if verify:
        return ssl.create_default_context(cafile=certifi.where())
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


def is_remote(reference: str) -> bool:
    return urlparse(reference).scheme in ("http", "https")


def _local_path(reference: str) -> Path:
    parsed = urlparse(reference)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    return Path(reference)


async def _fetch_http(url: str, timeout: float, max_bytes: int) -> bytes:
    async def fetch_with_ssl(session: aiohttp.ClientSession, verify: bool) -> bytes:
        async with session.get(
            url,
            timeout=aiohttp.ClientTimeout(total=timeout),
            headers={"User-Agent": USER_AGENT},
            ssl=create_ssl_context(verify),
        ) as resp:
            if resp.status != 200:
                raise aiohttp.ClientResponseError(
                    resp.request_info, resp.history, status=resp.status
                )
            if resp.content_length and resp.content_length > max_bytes:
                raise ValueError(f"attachment too large ({resp.content_length} bytes)")
            body = await resp.content.read(max_bytes + 1)
            if len(body) > max_bytes:
                raise ValueError(f"attachment larger than {max_bytes} bytes")
            return body

    async with aiohttp.ClientSession() as session:
        try:
            return await fetch_with_ssl(session, verify=True)
        except aiohttp.ClientSSLError:
            logger.debug("SSL error, retrying without verification: %s", url)
            return await fetch_with_ssl(session, verify=False)


def _read_local(path: Path, max_bytes: int) -> bytes:
    size = path.stat().st_size
    if size > max_bytes:
        raise ValueError(f"attachment too large ({size} bytes)")
    return path.read_bytes()


async def fetch_bytes(
    reference: str | None,
    timeout: float = 30.0,
    max_bytes: int = MAX_ATTACHMENT_BYTES,
) -> bytes | None:
    """Fetch an attachment by URL or local path.

    Args:
        reference: http(s) URL, file:// URL or filesystem path
        timeout: Request timeout in seconds (HTTP only)
        max_bytes: Largest attachment accepted

    Returns:
        Raw bytes, or None if the attachment could not be fetched
    """
    if not reference:
        return None
    try:
        if is_remote(reference):
            data = await _fetch_http(reference, timeout, max_bytes)
        else:
            data = await asyncio.to_thread(_read_local, _local_path(reference), max_bytes)
    except aiohttp.ClientResponseError as e:
        logger.warning("Attachment fetch failed | ref=%s status=%s", reference, e.status)
        return None
    except Exception as e:
        logger.warning("Attachment fetch failed | ref=%s error=%s", reference, e)
        return None

    logger.debug("Attachment fetched | ref=%s bytes=%d", reference, len(data))
    return data or None
