"""Turn image references into raw bytes.

Inline references decode locally. Remote URLs (redirects followed) go through
an ordered list of strategies until one succeeds:

1. ``direct_fetch``: plain GET without credentials; bytes kept verbatim.
2. ``cross_origin_redraw``: GET announcing our Origin; only accepted when
   the server grants cross-origin access, then decoded and re-encoded.
3. ``opaque_redraw``: GET without Origin, time-boxed; decoded and re-encoded.

Strategies 2 and 3 re-encode to JPEG, so the bytes are not the original file.
"""
import asyncio
import base64
import binascii
import logging
import mimetypes
from contextlib import asynccontextmanager
from urllib.parse import urlsplit

import httpx

from studio.domain import ResolvedResource
from studio.errors import RequestCancelledError, ResourceFetchError
from studio.services import image_service

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "image/png"
MEDIA_PREFIXES = ("image/", "video/")


def guess_mime_type(url, declared=None):
    """Declared type first, then the URL suffix, then PNG."""
    if declared:
        declared = declared.split(";", 1)[0].strip().lower()
        if declared.startswith(MEDIA_PREFIXES):
            return declared
    guessed, _ = mimetypes.guess_type(urlsplit(url).path)
    if guessed and guessed.startswith(MEDIA_PREFIXES):
        return guessed
    return DEFAULT_MIME_TYPE


async def first_successful(strategies, value):
    """Try ``(name, coroutine_fn)`` pairs in order and return the first result.

    Raises:
        ResourceFetchError listing every strategy's failure.
    """
    failures = []
    for name, strategy in strategies:
        try:
            return await strategy(value)
        except RequestCancelledError:
            raise
        except Exception as e:
            logger.info("Fetch strategy %s failed for %s: %s", name, value, e)
            failures.append((name, str(e) or e.__class__.__name__))
    raise ResourceFetchError(value, failures)


class ResourceFetcher:
    def __init__(self, http_client=None, origin="http://localhost:5000", timeout=15.0):
        self._http = http_client
        self.origin = origin.rstrip("/")
        self.timeout = timeout

    @property
    def strategies(self):
        return [
            ("direct_fetch", self.direct_fetch),
            ("cross_origin_redraw", self.cross_origin_redraw),
            ("opaque_redraw", self.opaque_redraw),
        ]

    async def resolve_bytes(self, reference):
        """Return the bytes and mime type behind an ImageReference."""
        if reference.is_inline:
            try:
                data = base64.b64decode(reference.data, validate=True)
            except (binascii.Error, ValueError) as e:
                raise ValueError(f"Failed to read image data: {e}")
            return ResolvedResource(
                data=data,
                mime_type=reference.mime_type or DEFAULT_MIME_TYPE,
                strategy="inline",
            )
        resolved = await first_successful(self.strategies, reference.url)
        if reference.mime_type and resolved.strategy == "direct_fetch":
            resolved.mime_type = reference.mime_type
        return resolved

    async def download_blob(self, url):
        """Fetch generated media so it can be saved locally."""
        return await first_successful(self.strategies, url)

    @asynccontextmanager
    async def _session(self):
        if self._http is not None:
            yield self._http
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                yield client

    async def direct_fetch(self, url):
        async with self._session() as client:
            resp = await client.get(url, follow_redirects=True)
        resp.raise_for_status()
        content_type = resp.headers.get("content-type", "")
        if not content_type.lower().startswith(MEDIA_PREFIXES):
            raise ValueError(f"Unexpected content type {content_type or 'none'!r}")
        return ResolvedResource(
            data=resp.content,
            mime_type=guess_mime_type(url, content_type),
            strategy="direct_fetch",
        )

    async def cross_origin_redraw(self, url):
        async with self._session() as client:
            resp = await client.get(
                url, headers={"Origin": self.origin}, follow_redirects=True
            )
        resp.raise_for_status()
        allowed = resp.headers.get("access-control-allow-origin", "")
        if allowed not in ("*", self.origin):
            raise PermissionError("Server did not grant cross-origin access")
        return ResolvedResource(
            data=image_service.reencode_jpeg(resp.content),
            mime_type="image/jpeg",
            strategy="cross_origin_redraw",
        )

    async def opaque_redraw(self, url):
        async def load():
            async with self._session() as client:
                resp = await client.get(url, follow_redirects=True)
            resp.raise_for_status()
            return resp.content

        try:
            raw = await asyncio.wait_for(load(), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(f"Image load timed out after {self.timeout:.0f}s")
        return ResolvedResource(
            data=image_service.reencode_jpeg(raw),
            mime_type="image/jpeg",
            strategy="opaque_redraw",
        )
