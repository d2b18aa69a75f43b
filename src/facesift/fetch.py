"""Image download for URL-based detection requests."""

from __future__ import annotations

import logging

import httpx

from facesift.errors import ImageFetchError, InputError

logger = logging.getLogger(__name__)


def create_http_client(timeout: float) -> httpx.AsyncClient:
    """Create the shared async client used for image downloads."""
    return httpx.AsyncClient(
        timeout=timeout,
        follow_redirects=True,
        limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
    )


async def fetch_image(client: httpx.AsyncClient, url: str, *, max_bytes: int) -> bytes:
    """Download ``url`` and return the raw body.

    Raises:
        ImageFetchError: On network errors, non-2xx responses, or oversized bodies.
        InputError: If ``url`` is not a well-formed URL.
    """
    logger.info("Fetching image %s", url)
    try:
        async with client.stream("GET", url) as response:
            if response.status_code >= 400:
                raise ImageFetchError(url, f"HTTP {response.status_code}")
            chunks: list[bytes] = []
            received = 0
            async for chunk in response.aiter_bytes():
                received += len(chunk)
                if received > max_bytes:
                    raise ImageFetchError(url, f"body exceeds {max_bytes} bytes")
                chunks.append(chunk)
    except httpx.InvalidURL as exc:
        raise InputError(f"Invalid image URL: {exc}") from exc
    except httpx.HTTPError as exc:
        raise ImageFetchError(url, str(exc) or type(exc).__name__) from exc
    return b"".join(chunks)
